import hmac
from typing import Callable, TypeVar

import structlog

from ...domain.entities import (
    Role, RoleGrant, RoleResolution, effective_role, normalize_address, same_address,
)
from ...domain.errors import InvalidKey
from ...infrastructure import metrics
from ..ports import IRoleResolver

logger = structlog.get_logger()

T = TypeVar("T")


class RoleResolutionService(IRoleResolver):
    """Адрес кошелька -> роль. Подзапросы независимы, сбой любого = False."""

    def __init__(self, accessor, admin_key: str, system_key: str):
        self.accessor = accessor
        self.admin_key = admin_key
        self.system_key = system_key

    def _query(self, name: str, func: Callable[..., T], *args) -> T | None:
        try:
            return func(*args)
        except Exception as e:
            metrics.role_query_failures_total.labels(query=name).inc()
            logger.warning("role_query_failed", query=name, error=str(e))
            return None

    def resolve_role(self, address: str) -> RoleResolution:
        # ServiceUnavailable отсюда пробрасывается как сигнал 503
        contract = self.accessor.get()
        address = normalize_address(address)

        owner = self._query("owner", contract.owner)
        is_owner = same_address(owner, address)
        is_admin = bool(self._query("is_admin", contract.is_admin, address))
        is_system = bool(self._query("has_system_access", contract.has_system_access, address))
        student = self._query("get_student_info", contract.get_student_info, address)
        is_registered = bool(student and student.is_registered)

        role = effective_role(
            is_owner=is_owner, is_system=is_system, is_admin=is_admin, is_registered=is_registered,
        )
        logger.info("role_resolved", address=address, role=role.value if role else None,
                    backend=contract.backend)
        return RoleResolution(
            address=address,
            is_registered=is_registered,
            role=role,
            is_admin=is_admin or is_owner or is_system,
            is_owner=is_owner,
            is_system=is_system,
            student_info=student.info if student else None,
        )

    def grant_emergency_access(self, address: str, secret: str) -> RoleGrant:
        secret_bytes = (secret or "").encode()
        if hmac.compare_digest(secret_bytes, self.system_key.encode()):
            grant = RoleGrant(address=address, role=Role.SYSTEM, is_admin=True, is_system=True)
        elif hmac.compare_digest(secret_bytes, self.admin_key.encode()):
            grant = RoleGrant(address=address, role=Role.ADMIN, is_admin=True, is_system=False)
        else:
            metrics.emergency_access_total.labels(outcome="denied").inc()
            logger.warning("emergency_access_denied", address=normalize_address(address))
            raise InvalidKey()

        metrics.emergency_access_total.labels(outcome=grant.role.value).inc()
        logger.warning("emergency_access_granted", address=grant.address, role=grant.role.value)
        return grant
