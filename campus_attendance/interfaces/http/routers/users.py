import time

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from ....application.ports import IAttendanceContract
from ....application.use_cases.generate_test_data import GenerateTestData
from ....application.use_cases.register_student import RegisterStudent
from ....application.use_cases.resolve_role import RoleResolutionService
from ....config import Settings
from ....domain.entities import RoleResolution
from ....domain.errors import InsufficientPermission
from ..authz import (
    get_contract, get_role_service, get_settings, get_wallet_address, path_address,
    require_admin, require_owner, require_system,
)
from ..ratelimit import emergency_rate_limit, limiter
from ..schemas import (
    AdminAddressRequest, EmergencyAccessOut, EmergencyAccessRequest, RegisterOut, RegisterRequest,
    RoleOut, SeedDataOut, SeedDataRequest, StudentInfoOut, TxOut, UserInfoOut, WalletRequest,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/users", tags=["users"])


def role_out(resolution: RoleResolution) -> RoleOut:
    info = resolution.student_info
    return RoleOut(
        wallet_address=resolution.address,
        is_registered=resolution.is_registered,
        role=resolution.role.value if resolution.role else None,
        is_admin=resolution.is_admin,
        is_owner=resolution.is_owner,
        is_system=resolution.is_system,
        student_info=StudentInfoOut(name=info.name, student_id=info.student_id) if info else None,
    )


def register(payload: RegisterRequest, contract: IAttendanceContract) -> RegisterOut:
    try:
        result = RegisterStudent(contract).execute(payload.wallet_address, payload.name, payload.student_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    s = result.student
    return RegisterOut(
        message="Registration successful",
        user_info=UserInfoOut(address=s.address, name=s.name, student_id=s.student_id, is_registered=True),
        transaction_hash=result.receipt.transaction_hash,
    )


@router.post("/check", response_model=RoleOut)
def check_user(payload: WalletRequest | None = None,
               address: str = Depends(get_wallet_address),
               service: RoleResolutionService = Depends(get_role_service)):
    return role_out(service.resolve_role(address))


@router.post("/register", response_model=RegisterOut)
def register_user(payload: RegisterRequest, contract: IAttendanceContract = Depends(get_contract)):
    return register(payload, contract)


# --- Управление администраторами

@router.post("/add-admin", response_model=TxOut, dependencies=[Depends(require_admin)])
def add_admin(payload: AdminAddressRequest, contract: IAttendanceContract = Depends(get_contract)):
    receipt = contract.add_admin(payload.admin_address).wait()
    logger.info("admin_added", address=payload.admin_address)
    return TxOut(message="Admin added", transaction_hash=receipt.transaction_hash)


@router.post("/remove-admin", response_model=TxOut, dependencies=[Depends(require_owner)])
def remove_admin(payload: AdminAddressRequest, contract: IAttendanceContract = Depends(get_contract)):
    receipt = contract.remove_admin(payload.admin_address).wait()
    logger.info("admin_removed", address=payload.admin_address)
    return TxOut(message="Admin removed", transaction_hash=receipt.transaction_hash)


@router.post("/generate-test-data", response_model=SeedDataOut, dependencies=[Depends(require_system)])
def generate_test_data(payload: SeedDataRequest,
                       contract: IAttendanceContract = Depends(get_contract),
                       settings: Settings = Depends(get_settings)):
    # только dev + mock ledger, живой контракт не засоряем
    if not settings.is_development or contract.backend != "mock":
        raise InsufficientPermission("Test data can only be generated in development mock mode")
    summary = GenerateTestData(contract, now=int(time.time())).execute(payload.count)
    return SeedDataOut(
        message="Test data generated",
        students=summary.students,
        courses=summary.courses,
        attendance_records=summary.attendance_records,
    )


# --- По адресу

@router.get("/{address}", response_model=RoleOut)
def get_user(address: str, service: RoleResolutionService = Depends(get_role_service)):
    return role_out(service.resolve_role(path_address(address)))


@router.post("/{address}/emergency-access", response_model=EmergencyAccessOut)
@limiter.limit(emergency_rate_limit)
def emergency_access(request: Request, address: str, payload: EmergencyAccessRequest,
                     service: RoleResolutionService = Depends(get_role_service)):
    grant = service.grant_emergency_access(path_address(address), payload.key)
    return EmergencyAccessOut(
        message="Emergency access granted",
        role=grant.role.value,
        is_admin=grant.is_admin,
        is_system=grant.is_system,
    )
