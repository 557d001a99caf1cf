from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

import structlog
from web3 import Web3

from ..domain.entities import utcnow
from ..domain.errors import ChainConnectionError
from . import metrics

logger = structlog.get_logger()

KNOWN_NETWORKS = {
    1: "mainnet",
    5: "goerli",
    11155111: "sepolia",
    1337: "local",
    31337: "hardhat",
}


@dataclass(frozen=True)
class ConnectionState:
    is_connected: bool = False
    is_local_node: bool = False
    is_syncing: bool = False
    sync_progress: int = 0
    current_block: int = 0
    highest_block: int = 0
    last_attempt: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None


def http_provider(url: str, timeout: float) -> Web3:
    return Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout}))


def is_local_url(url: str, markers: Iterable[str]) -> bool:
    return any(marker in url for marker in markers)


class ChainGateway:
    """Подключение к Ethereum узлу: повторы, состояние синхронизации, health check.

    Недоступный узел считается нормальным состоянием: connect() бросает
    ChainConnectionError, а health_check() никогда не бросает.
    """

    def __init__(
        self,
        url: str,
        retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 10.0,
        local_markers: Iterable[str] = ("localhost", "127.0.0.1", "ethereum-node"),
        provider_factory: Callable[[str, float], Web3] = http_provider,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._provider_factory = provider_factory
        self._sleep = sleep
        self._lock = threading.Lock()
        self._web3: Optional[Web3] = None
        self._state = ConnectionState(is_local_node=is_local_url(url, local_markers))

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def web3(self) -> Optional[Web3]:
        with self._lock:
            return self._web3 if self._state.is_connected else None

    @property
    def is_reachable(self) -> bool:
        return self.state.is_connected

    def _update(self, **changes) -> ConnectionState:
        with self._lock:
            self._state = replace(self._state, **changes)
            state = self._state
        metrics.chain_connected.set(1 if state.is_connected else 0)
        metrics.chain_block_height.set(state.current_block)
        return state

    def connect(self) -> Web3:
        last_error = None
        for attempt in range(1, self.retries + 1):
            try:
                w3 = self._attempt()
            except Exception as e:
                last_error = e
                metrics.chain_connect_attempts_total.labels(outcome="failure").inc()
                logger.warning(
                    "chain_connect_failed",
                    url=self.url,
                    attempt=attempt,
                    retries=self.retries,
                    error=str(e),
                )
                if attempt < self.retries:
                    self._sleep(self.retry_delay)
                continue
            metrics.chain_connect_attempts_total.labels(outcome="success").inc()
            return w3

        if self.state.is_local_node:
            logger.warning("chain_local_node_unavailable", hint="node may still be initializing or syncing")
        raise ChainConnectionError(f"Could not connect to {self.url}: {last_error}")

    def _attempt(self) -> Web3:
        self._update(last_attempt=utcnow())
        try:
            w3 = self._provider_factory(self.url, self.timeout)
            if not w3.is_connected():
                raise ChainConnectionError("node did not respond")
            chain_id = w3.eth.chain_id
            block = w3.eth.block_number
        except Exception as e:
            with self._lock:
                self._web3 = None
            self._update(is_connected=False, last_error=str(e))
            raise

        with self._lock:
            self._web3 = w3
        self._update(is_connected=True, current_block=block, last_success=utcnow(), last_error=None)
        if self.state.is_local_node:
            self._refresh_sync(w3)
        logger.info("chain_connected", url=self.url, chain_id=chain_id, block=block,
                    syncing=self.state.is_syncing)
        return w3

    def _refresh_sync(self, w3: Web3) -> None:
        try:
            syncing = w3.eth.syncing
        except Exception as e:
            # статус неизвестен, считаем что узел синхронизируется
            logger.info("chain_sync_status_unknown", error=str(e))
            self._update(is_syncing=True)
            return

        if not syncing:
            self._update(is_syncing=False, sync_progress=100)
            return

        current = int(syncing.get("currentBlock", 0) or 0)
        highest = int(syncing.get("highestBlock", 0) or 0)
        progress = round(current / highest * 100) if highest > 0 else 0
        self._update(is_syncing=True, current_block=current, highest_block=highest, sync_progress=progress)
        logger.info("chain_syncing", progress=progress, current_block=current, highest_block=highest)

    def health_check(self) -> ConnectionState:
        with self._lock:
            w3 = self._web3 if self._state.is_connected else None

        if w3 is None:
            logger.info("chain_reconnecting", url=self.url)
            try:
                self.connect()
            except ChainConnectionError:
                pass
            return self.state

        try:
            block = w3.eth.block_number
            self._update(current_block=block, last_success=utcnow())
            if self.state.is_local_node:
                was_syncing = self.state.is_syncing
                self._refresh_sync(w3)
                if was_syncing and not self.state.is_syncing:
                    logger.info("chain_sync_complete", block=self.state.current_block)
        except Exception as e:
            logger.warning("chain_health_check_failed", error=str(e))
            self._update(is_connected=False, last_error=str(e))
            try:
                self.connect()
            except ChainConnectionError:
                pass
        return self.state

    def test_connection(self) -> dict:
        w3 = self.web3
        if w3 is None:
            try:
                w3 = self.connect()
            except ChainConnectionError as e:
                return self._failure_report(str(e))

        try:
            chain_id = w3.eth.chain_id
            block = w3.eth.block_number
        except Exception as e:
            self._update(is_connected=False, last_error=str(e))
            logger.warning("chain_connection_test_failed", error=str(e))
            return self._failure_report(str(e))

        state = self._update(is_connected=True, current_block=block, last_success=utcnow())
        return {
            "connected": True,
            "network": KNOWN_NETWORKS.get(chain_id, "local" if state.is_local_node else "unknown"),
            "chainId": str(chain_id),
            "blockNumber": str(block),
            "status": "syncing" if state.is_syncing else "success",
            "isLocalNode": state.is_local_node,
            "isSyncing": state.is_syncing,
            "syncProgress": state.sync_progress,
            "message": "Ethereum connection is healthy",
        }

    def _failure_report(self, error: str) -> dict:
        state = self.state
        if state.is_local_node:
            message = "Local node may still be syncing blockchain data, try again later"
        else:
            message = "Unable to connect to the Ethereum network"
        return {
            "connected": False,
            "network": "local" if state.is_local_node else "unknown",
            "chainId": "0",
            "blockNumber": "0",
            "status": "pending" if state.is_local_node else "error",
            "isLocalNode": state.is_local_node,
            "isSyncing": state.is_syncing,
            "syncProgress": state.sync_progress,
            "message": message,
            "error": error,
        }
