from fastapi import APIRouter, Depends, Request

from ....infrastructure.contract import ContractAccessor
from ..authz import get_accessor

router = APIRouter(prefix="/api/ethereum", tags=["ethereum"])


@router.get("/status")
def ethereum_status(request: Request, accessor: ContractAccessor = Depends(get_accessor)):
    report = request.app.state.gateway.test_connection()
    accessor.refresh()
    mode = accessor.mode
    return {
        "success": True,
        **report,
        "backend": mode,
        "fallbackMode": mode == "mock",
    }
