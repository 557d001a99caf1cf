import threading
from typing import Callable

import structlog

from ..domain.errors import ChainConnectionError
from .chain import ChainGateway
from .contract import ContractAccessor

logger = structlog.get_logger()


class PeriodicTask:
    """Фоновый daemon-поток, вызывающий func каждые interval секунд."""

    def __init__(self, name: str, interval: float, func: Callable[[], object]):
        self.name = name
        self.interval = interval
        self.func = func
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.func()
            except Exception as e:
                logger.error("periodic_task_failed", task=self.name, error=str(e))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


class ChainSupervisor:
    def __init__(self, gateway: ChainGateway, accessor: ContractAccessor,
                 health_interval: float, poll_interval: float):
        self.gateway = gateway
        self.accessor = accessor
        self.health = PeriodicTask("chain-health-check", health_interval, gateway.health_check)
        self.poll = PeriodicTask("contract-poll", poll_interval, accessor.refresh)
        self._initial: threading.Thread | None = None

    def _initial_connect(self) -> None:
        try:
            self.gateway.connect()
        except ChainConnectionError as e:
            logger.warning("chain_initial_connect_failed", error=str(e), backend=self.accessor.mode)
        self.accessor.refresh()

    def start(self) -> None:
        # первое подключение не блокирует старт приложения
        self._initial = threading.Thread(target=self._initial_connect, name="chain-connect", daemon=True)
        self._initial.start()
        self.health.start()
        self.poll.start()
        logger.info("chain_supervisor_started", url=self.gateway.url)

    def stop(self, timeout: float = 5.0) -> None:
        self.health.stop(timeout)
        self.poll.stop(timeout)
        if self._initial is not None:
            self._initial.join(timeout)
            self._initial = None
        logger.info("chain_supervisor_stopped")
