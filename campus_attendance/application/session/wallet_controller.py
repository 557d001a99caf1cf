from __future__ import annotations

import threading
from enum import Enum
from typing import Callable, Optional

import structlog

from ...domain.entities import RoleGrant, RoleResolution, normalize_address, same_address
from ...domain.errors import AttendanceError, InsufficientPermission, UserRejected
from ..ports import IRoleResolver, IWalletProvider
from .permission_cache import SessionPermissionCache

logger = structlog.get_logger()

ACCOUNTS_CHANGED = "accountsChanged"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SWITCHING = "switching"


class WalletSubscription:
    """Подписка на смену аккаунта; subscribe/unsubscribe идемпотентны."""

    def __init__(self, provider: IWalletProvider, handler: Callable[[list[str]], None],
                 event: str = ACCOUNTS_CHANGED):
        self.provider = provider
        self.handler = handler
        self.event = event
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def subscribe(self) -> None:
        if not self._active:
            self.provider.on(self.event, self.handler)
            self._active = True

    def unsubscribe(self) -> None:
        if self._active:
            self.provider.remove_listener(self.event, self.handler)
            self._active = False


class WalletSessionController:
    def __init__(
        self,
        provider: IWalletProvider,
        resolver: IRoleResolver,
        cache: SessionPermissionCache,
        on_change: Optional[Callable[[SessionState, RoleResolution], None]] = None,
    ):
        self.provider = provider
        self.resolver = resolver
        self.cache = cache
        self.on_change = on_change
        self.last_error: Optional[str] = None
        self._lock = threading.RLock()
        self._state = SessionState.DISCONNECTED
        self._address: Optional[str] = None
        self._resolution = RoleResolution.unregistered()
        self._generation = 0
        self.subscription = WalletSubscription(provider, self.handle_accounts_changed)
        self.subscription.subscribe()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def resolution(self) -> RoleResolution:
        return self._resolution

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self._state, self._resolution)

    def _reset(self, state: SessionState) -> None:
        with self._lock:
            self._generation += 1
            self._state = state
            self._address = None
            self._resolution = RoleResolution.unregistered()
        self._notify()

    def connect(self) -> RoleResolution:
        with self._lock:
            self._state = SessionState.CONNECTING
        self._notify()
        try:
            accounts = self.provider.request_accounts()
        except UserRejected:
            logger.info("wallet_connect_rejected")
            self._reset(SessionState.DISCONNECTED)
            raise
        if not accounts:
            self._reset(SessionState.DISCONNECTED)
            return self._resolution
        return self._establish(accounts[0], SessionState.CONNECTING)

    def _establish(self, address: str, state: SessionState) -> RoleResolution:
        address = normalize_address(address)
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._address = address
            self._state = state
            self._resolution = RoleResolution.unregistered(address)
        self._notify()

        cached = self.cache.restore(address)
        try:
            fresh = self.resolver.resolve_role(address)
            self.last_error = None
        except AttendanceError as e:
            logger.warning("wallet_role_resolution_failed", address=address, error=e.message)
            self.last_error = e.message
            fresh = RoleResolution.unregistered(address)
        merged = self.cache.merge(fresh, cached)

        with self._lock:
            if generation != self._generation or self._address != address:
                logger.info("stale_role_resolution_discarded", address=address,
                            generation=generation, current=self._generation)
                return self._resolution
            self._resolution = merged
            self._state = SessionState.CONNECTED
        logger.info("wallet_connected", address=address,
                    role=merged.role.value if merged.role else None, cached=cached is not None)
        self._notify()
        return merged

    def disconnect(self) -> None:
        previous = self._address
        self._reset(SessionState.DISCONNECTED)
        if previous:
            self.cache.clear(previous)
        self.subscription.unsubscribe()
        self.subscription.subscribe()
        logger.info("wallet_disconnected", address=previous)

    def handle_accounts_changed(self, accounts: list[str]) -> None:
        with self._lock:
            previous = self._address
        if accounts and same_address(previous, accounts[0]):
            # тот же аккаунт: кэш не трогаем, только перечитываем роль
            logger.info("wallet_account_reannounced", address=previous)
            self._establish(accounts[0], SessionState.CONNECTED)
            return

        with self._lock:
            # сначала сбрасываем роли, чтобы не было промежуточного админа
            self._generation += 1
            self._resolution = RoleResolution.unregistered()
        if previous:
            self.cache.clear(previous)

        if not accounts:
            logger.info("wallet_accounts_cleared", previous=previous)
            self._reset(SessionState.DISCONNECTED)
            return

        with self._lock:
            self._state = SessionState.SWITCHING
        logger.info("wallet_account_switched", previous=previous, current=normalize_address(accounts[0]))
        self._establish(accounts[0], SessionState.SWITCHING)

    def request_emergency_access(self, secret: str) -> RoleResolution:
        address = self._address
        if self._state != SessionState.CONNECTED or not address:
            raise InsufficientPermission("Connect a wallet before requesting emergency access")
        grant = self.resolver.grant_emergency_access(address, secret)
        return self.apply_emergency_grant(grant)

    def apply_emergency_grant(self, grant: RoleGrant) -> RoleResolution:
        """Единственный путь, который сохраняет роль в кэш."""
        stamped = self.cache.save(grant.address, grant)
        with self._lock:
            if same_address(stamped.address, self._address):
                self._resolution = self.cache.merge(self._resolution, stamped)
        self._notify()
        return self._resolution
