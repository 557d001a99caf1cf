import os
import sys
import time
from unittest.mock import MagicMock

import pytest

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from fastapi.testclient import TestClient

from campus_attendance.application.session.wallet_controller import ACCOUNTS_CHANGED
from campus_attendance.config import Settings
from campus_attendance.domain.errors import UserRejected
from campus_attendance.infrastructure.chain import ChainGateway
from campus_attendance.infrastructure.mock_ledger import MockLedger
from campus_attendance.interfaces.http.ratelimit import limiter
from campus_attendance.main import create_app

DEV_WALLET = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
STUDENT_1 = "0x1111111111111111111111111111111111111111"
STUDENT_2 = "0x2222222222222222222222222222222222222222"
STUDENT_3 = "0x3333333333333333333333333333333333333333"
OUTSIDER = "0x4444444444444444444444444444444444444444"


def as_wallet(address: str) -> dict:
    return {"X-Wallet-Address": address}


class FakeWallet:
    """Минимальный EIP-1193 провайдер"""

    def __init__(self, accounts=None, reject=False):
        self.accounts = accounts or []
        self.reject = reject
        self.listeners = {}

    def request_accounts(self):
        if self.reject:
            raise UserRejected("User rejected the request")
        return list(self.accounts)

    def on(self, event, handler):
        self.listeners.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.listeners[event].remove(handler)

    def emit(self, accounts):
        self.accounts = accounts
        for handler in list(self.listeners.get(ACCOUNTS_CHANGED, [])):
            handler(accounts)


def offline_provider(url, timeout):
    """Web3 без узла: is_connected() всегда False"""
    w3 = MagicMock()
    w3.is_connected.return_value = False
    return w3


def make_settings(**overrides) -> Settings:
    values = dict(
        ENVIRONMENT="test",
        ALLOW_MOCK_FALLBACK=True,
        ETHEREUM_RPC_URL="http://chain.example.org:8545",
        ETH_CONNECTION_RETRIES=1,
        ETH_CONNECTION_RETRY_DELAY=0,
        LEDGER_BACKEND="memory",
        SEED_MOCK_DATA=True,
        LOG_LEVEL="WARNING",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_gateway(settings: Settings, provider_factory=offline_provider) -> ChainGateway:
    return ChainGateway(
        settings.ETHEREUM_RPC_URL,
        retries=settings.ETH_CONNECTION_RETRIES,
        retry_delay=settings.ETH_CONNECTION_RETRY_DELAY,
        local_markers=settings.LOCAL_NODE_MARKERS,
        provider_factory=provider_factory,
        sleep=lambda _: None,
    )


def build_client(**overrides) -> TestClient:
    settings = make_settings(**overrides)
    return TestClient(create_app(settings, gateway=make_gateway(settings)))


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Сбрасываем счётчики slowapi между тестами"""
    limiter.reset()
    yield


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def app(settings):
    return create_app(settings, gateway=make_gateway(settings))


@pytest.fixture
def client(app):
    # без `with`: фоновый supervisor не стартует
    return TestClient(app)


@pytest.fixture
def ledger(app) -> MockLedger:
    return app.state.accessor.mock


@pytest.fixture
def open_course(client):
    """Фабрика активных курсов, открытых прямо сейчас"""
    def _create(name="Distributed Systems", start_offset=-60, duration=3600):
        now = int(time.time())
        resp = client.post(
            "/api/courses",
            json={"name": name, "startTime": now + start_offset, "endTime": now + start_offset + duration},
            headers=as_wallet(DEV_WALLET),
        )
        assert resp.status_code == 201, resp.text
        return resp.json()["courseId"]
    return _create
