import httpx
import structlog

from ...application.ports import IRoleResolver
from ...domain.entities import Role, RoleGrant, RoleResolution, StudentInfo, normalize_address
from ...domain.errors import AttendanceError, InvalidKey, ServiceUnavailable

logger = structlog.get_logger()


class AttendanceApiClient(IRoleResolver):
    """Резолвер ролей для WalletSessionController поверх HTTP API сервиса."""

    def __init__(self, http: httpx.Client):
        self.http = http

    @classmethod
    def from_url(cls, base_url: str, timeout: float = 10.0) -> "AttendanceApiClient":
        return cls(httpx.Client(base_url=base_url, timeout=timeout))

    def _post(self, path: str, payload: dict) -> dict:
        try:
            resp = self.http.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.warning("api_request_failed", path=path, error=str(e))
            raise ServiceUnavailable(f"Attendance API unreachable: {e}")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        message = body.get("message") if isinstance(body, dict) else None

        if resp.status_code == 403:
            raise InvalidKey(message)
        if resp.status_code >= 500:
            raise ServiceUnavailable(message)
        if resp.status_code >= 400:
            raise AttendanceError(message or f"Request failed with status {resp.status_code}")
        return body

    def resolve_role(self, address: str) -> RoleResolution:
        data = self._post("/api/users/check", {"walletAddress": address})
        info = data.get("studentInfo")
        role = data.get("role")
        return RoleResolution(
            address=normalize_address(address),
            is_registered=bool(data.get("isRegistered")),
            role=Role(role) if role else None,
            is_admin=bool(data.get("isAdmin")),
            is_owner=bool(data.get("isOwner")),
            is_system=bool(data.get("isSystem")),
            student_info=StudentInfo(info["name"], info["studentId"]) if info else None,
        )

    def grant_emergency_access(self, address: str, secret: str) -> RoleGrant:
        data = self._post(f"/api/users/{normalize_address(address)}/emergency-access", {"key": secret})
        return RoleGrant(
            address=address,
            role=Role(data["role"]),
            is_admin=bool(data.get("isAdmin")),
            is_system=bool(data.get("isSystem")),
        )

    def close(self) -> None:
        self.http.close()
