import structlog
from fastapi import Depends, Header, HTTPException, Request, status
from web3 import Web3

from ...application.ports import IAttendanceContract
from ...application.use_cases.resolve_role import RoleResolutionService
from ...config import Settings
from ...domain.entities import RoleResolution, normalize_address
from ...domain.errors import InsufficientPermission
from ...infrastructure.contract import ContractAccessor

logger = structlog.get_logger()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_accessor(request: Request) -> ContractAccessor:
    return request.app.state.accessor


def get_role_service(request: Request) -> RoleResolutionService:
    return request.app.state.role_service


def get_contract(accessor: ContractAccessor = Depends(get_accessor)) -> IAttendanceContract:
    # ServiceUnavailable -> 503 через обработчик AttendanceError
    return accessor.get()


async def get_wallet_address(
    request: Request,
    x_wallet_address: str | None = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    address = None
    if request.method in ("POST", "PUT", "PATCH"):
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            address = body.get("walletAddress")
    address = address or x_wallet_address

    if not address:
        if settings.is_development:
            logger.debug("wallet_address_defaulted", address=settings.DEV_WALLET_ADDRESS)
            address = settings.DEV_WALLET_ADDRESS
        else:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Wallet address required")

    if not isinstance(address, str) or not Web3.is_address(address.strip()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid wallet address")
    return normalize_address(address)


def get_caller(
    address: str = Depends(get_wallet_address),
    service: RoleResolutionService = Depends(get_role_service),
) -> RoleResolution:
    return service.resolve_role(address)


def require_admin(caller: RoleResolution = Depends(get_caller)) -> RoleResolution:
    if not caller.has_admin_rights:
        raise InsufficientPermission("Admin privileges required")
    return caller


def require_system(caller: RoleResolution = Depends(get_caller)) -> RoleResolution:
    if not (caller.is_system or caller.is_owner):
        raise InsufficientPermission("System privileges required")
    return caller


def require_owner(caller: RoleResolution = Depends(get_caller)) -> RoleResolution:
    if not caller.is_owner:
        raise InsufficientPermission("Only the contract owner can do this")
    return caller


def path_address(address: str) -> str:
    if not Web3.is_address(address):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid wallet address")
    return normalize_address(address)
