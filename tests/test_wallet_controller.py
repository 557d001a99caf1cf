from unittest.mock import MagicMock

import pytest

from campus_attendance.application.session.permission_cache import SessionPermissionCache
from campus_attendance.application.session.wallet_controller import (
    ACCOUNTS_CHANGED, SessionState, WalletSessionController, WalletSubscription,
)
from campus_attendance.application.use_cases.resolve_role import RoleResolutionService
from campus_attendance.domain.entities import Role, RoleGrant
from campus_attendance.domain.errors import (
    InsufficientPermission, InvalidKey, ServiceUnavailable, UserRejected,
)
from campus_attendance.infrastructure.mock_ledger import MockLedger
from campus_attendance.infrastructure.storage import InMemoryStorage
from conftest import DEV_WALLET, OUTSIDER, STUDENT_1, STUDENT_2, FakeWallet


@pytest.fixture
def ledger():
    return MockLedger(owner=DEV_WALLET)


@pytest.fixture
def resolver(ledger):
    accessor = MagicMock()
    accessor.get.return_value = ledger
    return RoleResolutionService(accessor, "admin", "xjtuse")


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def cache(storage):
    return SessionPermissionCache(storage)


def make_controller(wallet, resolver, cache, events=None):
    on_change = (lambda state, res: events.append((state, res))) if events is not None else None
    return WalletSessionController(wallet, resolver, cache, on_change=on_change)


def test_connect_student(resolver, cache, storage):
    controller = make_controller(FakeWallet([STUDENT_1]), resolver, cache)
    r = controller.connect()
    assert controller.state == SessionState.CONNECTED
    assert controller.address == STUDENT_1
    assert r.role == Role.STUDENT
    assert r.student_info.name == "Zhang San"
    # свежий ответ с цепочки не сохраняется
    assert storage._data == {}


def test_connect_rejected(resolver, cache):
    controller = make_controller(FakeWallet([STUDENT_1], reject=True), resolver, cache)
    with pytest.raises(UserRejected):
        controller.connect()
    assert controller.state == SessionState.DISCONNECTED
    assert controller.address is None


def test_connect_without_accounts(resolver, cache):
    controller = make_controller(FakeWallet([]), resolver, cache)
    controller.connect()
    assert controller.state == SessionState.DISCONNECTED


def test_connect_with_unavailable_backend(cache):
    resolver = MagicMock()
    resolver.resolve_role.side_effect = ServiceUnavailable()
    controller = make_controller(FakeWallet([STUDENT_1]), resolver, cache)
    r = controller.connect()
    assert controller.state == SessionState.CONNECTED
    assert r.role is None
    assert controller.last_error == ServiceUnavailable.default_message


def test_cached_grant_wins_and_is_not_resaved(resolver, cache, storage):
    """Кэшированная роль важнее, срок жизни при переподключении не продлевается"""
    cache.save(STUDENT_1, RoleGrant(STUDENT_1, Role.ADMIN, is_admin=True))
    raw_before = storage.get("permissions_" + STUDENT_1)

    r = make_controller(FakeWallet([STUDENT_1]), resolver, cache).connect()

    assert r.role == Role.ADMIN
    assert r.is_admin is True
    assert r.is_registered is True
    assert r.student_info.name == "Zhang San"
    assert storage.get("permissions_" + STUDENT_1) == raw_before


def test_emergency_access_persists_grant(resolver, cache):
    controller = make_controller(FakeWallet([OUTSIDER]), resolver, cache)
    controller.connect()
    r = controller.request_emergency_access("xjtuse")
    assert r.role == Role.SYSTEM
    assert r.is_system is True
    assert r.is_registered is False
    assert cache.restore(OUTSIDER).role == Role.SYSTEM


def test_emergency_access_invalid_key(resolver, cache, storage):
    controller = make_controller(FakeWallet([OUTSIDER]), resolver, cache)
    controller.connect()
    with pytest.raises(InvalidKey):
        controller.request_emergency_access("guess")
    assert storage._data == {}
    assert controller.resolution.role is None


def test_emergency_access_requires_connection(resolver, cache):
    controller = make_controller(FakeWallet([OUTSIDER]), resolver, cache)
    with pytest.raises(InsufficientPermission):
        controller.request_emergency_access("admin")


def test_disconnect_clears_session(resolver, cache):
    wallet = FakeWallet([OUTSIDER])
    controller = make_controller(wallet, resolver, cache)
    controller.connect()
    controller.request_emergency_access("admin")

    controller.disconnect()

    assert controller.state == SessionState.DISCONNECTED
    assert controller.address is None
    assert controller.resolution.role is None
    assert cache.restore(OUTSIDER) is None
    assert controller.subscription.active is True
    assert len(wallet.listeners[ACCOUNTS_CHANGED]) == 1


def test_account_switch_has_no_transient_admin(resolver, cache):
    """При смене аккаунта права старого адреса не видны ни в одном промежуточном состоянии"""
    events = []
    wallet = FakeWallet([STUDENT_1])
    controller = make_controller(wallet, resolver, cache, events)
    controller.connect()
    controller.request_emergency_access("xjtuse")
    assert controller.resolution.has_admin_rights is True

    events.clear()
    wallet.emit([STUDENT_2])

    assert events, "state changes must be published"
    assert all(not res.has_admin_rights for _, res in events)
    assert SessionState.SWITCHING in [state for state, _ in events]
    assert controller.state == SessionState.CONNECTED
    assert controller.address == STUDENT_2
    assert controller.resolution.role == Role.STUDENT
    assert controller.resolution.student_info.name == "Li Si"
    assert cache.restore(STUDENT_1) is None


def test_accounts_cleared_disconnects(resolver, cache):
    wallet = FakeWallet([OUTSIDER])
    controller = make_controller(wallet, resolver, cache)
    controller.connect()
    controller.request_emergency_access("admin")

    wallet.emit([])

    assert controller.state == SessionState.DISCONNECTED
    assert cache.restore(OUTSIDER) is None


class SwitchingResolver:
    """Во время резолва первого адреса кошелёк переключается на другой"""

    def __init__(self, inner, wallet, switch_to):
        self.inner = inner
        self.wallet = wallet
        self.switch_to = switch_to

    def resolve_role(self, address):
        result = self.inner.resolve_role(address)
        if self.switch_to:
            target, self.switch_to = self.switch_to, None
            self.wallet.emit([target])
        return result

    def grant_emergency_access(self, address, secret):
        return self.inner.grant_emergency_access(address, secret)


def test_stale_resolution_is_discarded(resolver, cache, ledger):
    ledger.add_admin(STUDENT_1).wait()
    wallet = FakeWallet([STUDENT_1])
    controller = make_controller(wallet, SwitchingResolver(resolver, wallet, STUDENT_2), cache)

    r = controller.connect()

    assert controller.address == STUDENT_2
    assert r.address == STUDENT_2
    assert r.role == Role.STUDENT
    assert r.is_admin is False


def test_subscription_is_idempotent():
    wallet = FakeWallet()
    handler = MagicMock()
    sub = WalletSubscription(wallet, handler)
    sub.subscribe()
    sub.subscribe()
    assert wallet.listeners[ACCOUNTS_CHANGED] == [handler]
    sub.unsubscribe()
    sub.unsubscribe()
    assert wallet.listeners[ACCOUNTS_CHANGED] == []
    assert sub.active is False


def test_same_account_reannounced_keeps_grant(resolver, cache):
    """Повторное событие с тем же адресом не сбрасывает экстренную роль"""
    wallet = FakeWallet([STUDENT_1])
    controller = make_controller(wallet, resolver, cache)
    controller.connect()
    controller.request_emergency_access("admin")

    wallet.emit([STUDENT_1.upper().replace("0X", "0x")])

    assert controller.state == SessionState.CONNECTED
    assert controller.address == STUDENT_1
    assert controller.resolution.role == Role.ADMIN
    assert controller.resolution.student_info.name == "Zhang San"
    assert cache.restore(STUDENT_1).role == Role.ADMIN
