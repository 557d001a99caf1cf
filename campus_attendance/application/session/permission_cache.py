from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from pydantic import AwareDatetime, BaseModel, ValidationError
from pydantic.alias_generators import to_camel

from ...config import Settings
from ...domain.entities import Role, RoleGrant, RoleResolution, normalize_address, utcnow
from ...infrastructure import metrics
from ...infrastructure.storage import storage_from_url
from ..ports import IKeyValueStorage

logger = structlog.get_logger()


class StoredGrant(BaseModel):
    is_admin: bool
    is_system: bool
    role: Optional[Role] = None
    # None = бессрочная запись
    expiry: Optional[AwareDatetime] = None
    acquired_at: AwareDatetime

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class SessionPermissionCache:
    """Кэш ролей на стороне клиента: один JSON на адрес кошелька, со сроком жизни.

    Никогда не бросает исключений: битая или просроченная запись удаляется
    и считается промахом.
    """

    def __init__(
        self,
        storage: IKeyValueStorage,
        ttl: timedelta = timedelta(hours=24),
        prefix: str = "permissions_",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.ttl = ttl
        self.prefix = prefix
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, storage: IKeyValueStorage | None = None) -> "SessionPermissionCache":
        return cls(
            storage or storage_from_url(settings.SESSION_STORAGE_URL),
            ttl=timedelta(hours=settings.SESSION_TTL_HOURS),
            prefix=settings.SESSION_KEY_PREFIX,
        )

    def key_for(self, address: str) -> str:
        return f"{self.prefix}{normalize_address(address)}"

    def save(self, address: str, grant: RoleGrant) -> RoleGrant:
        now = self.clock()
        stamped = replace(grant, address=address, expiry=now + self.ttl, acquired_at=now)
        payload = StoredGrant(
            is_admin=stamped.is_admin,
            is_system=stamped.is_system,
            role=stamped.role,
            expiry=stamped.expiry,
            acquired_at=stamped.acquired_at,
        ).model_dump_json(by_alias=True)
        if not self.storage.set(self.key_for(address), payload, ttl=int(self.ttl.total_seconds())):
            logger.warning("permission_cache_save_failed", address=stamped.address)
        else:
            logger.info("permission_cache_saved", address=stamped.address,
                        role=stamped.role.value if stamped.role else None)
        return stamped

    def restore(self, address: str) -> RoleGrant | None:
        key = self.key_for(address)
        try:
            raw = self.storage.get(key)
        except Exception as e:
            logger.warning("permission_cache_read_failed", key=key, error=str(e))
            raw = None
        if raw is None:
            metrics.session_cache_misses_total.inc()
            return None

        try:
            stored = StoredGrant.model_validate_json(raw)
        except ValidationError:
            logger.warning("permission_cache_malformed", key=key)
            self._evict(key)
            return None

        grant = RoleGrant(
            address=address,
            role=stored.role,
            is_admin=stored.is_admin,
            is_system=stored.is_system,
            expiry=stored.expiry,
            acquired_at=stored.acquired_at,
        )
        if grant.is_expired(self.clock()):
            logger.info("permission_cache_expired", key=key)
            self._evict(key)
            return None

        metrics.session_cache_hits_total.inc()
        return grant

    def _evict(self, key: str) -> None:
        metrics.session_cache_misses_total.inc()
        self._delete(key)

    def clear(self, address: str) -> None:
        self._delete(self.key_for(address))

    def _delete(self, key: str) -> None:
        try:
            self.storage.delete(key)
        except Exception as e:
            logger.warning("permission_cache_delete_failed", key=key, error=str(e))

    @staticmethod
    def merge(fresh: RoleResolution, cached: RoleGrant | None) -> RoleResolution:
        # роль и права из кэша важнее; регистрация и владелец всегда свежие
        if cached is None:
            return fresh
        return fresh.with_cached_grant(cached)
