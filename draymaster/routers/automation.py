from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from draymaster.core.db import get_db
from draymaster.schemas.automation import (
    DeductionRequest,
    FreeTimeStatusResponse,
    ReevaluationResponse,
    SettlementResponse,
    ShipmentResponse,
)
from draymaster.services.automation.errors import (
    AutomationError,
    ConcurrencyConflictError,
    EntityNotFoundError,
    InconsistentParentError,
    InvalidTransitionError,
)
from draymaster.services.automation.service import AutomationService

router = APIRouter()


def _http_error(exc: AutomationError) -> HTTPException:
    if isinstance(exc, EntityNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (ConcurrencyConflictError, InvalidTransitionError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, InconsistentParentError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


@router.post("/demurrage/reevaluate", response_model=ReevaluationResponse)
async def reevaluate_demurrage(db: AsyncSession = Depends(get_db)) -> ReevaluationResponse:
    """Run the periodic demurrage escalation pass on demand."""
    result = await AutomationService(db).reevaluate_open_demurrage()
    return ReevaluationResponse.model_validate(result)


@router.get("/containers/{container_id}/free-time", response_model=FreeTimeStatusResponse)
async def container_free_time(container_id: str, db: AsyncSession = Depends(get_db)) -> FreeTimeStatusResponse:
    try:
        calc = await AutomationService(db).free_time_status(container_id)
    except AutomationError as exc:
        raise _http_error(exc)
    return FreeTimeStatusResponse(container_id=container_id, **asdict(calc))


@router.post("/shipments/{shipment_id}/recompute", response_model=ShipmentResponse)
async def recompute_shipment(shipment_id: str, db: AsyncSession = Depends(get_db)) -> ShipmentResponse:
    try:
        shipment = await AutomationService(db).recompute_shipment(shipment_id)
    except AutomationError as exc:
        raise _http_error(exc)
    return ShipmentResponse.model_validate(shipment)


@router.post("/settlements/{settlement_id}/approve", response_model=SettlementResponse)
async def approve_settlement(settlement_id: str, db: AsyncSession = Depends(get_db)) -> SettlementResponse:
    try:
        settlement = await AutomationService(db).approve_settlement(settlement_id)
    except AutomationError as exc:
        raise _http_error(exc)
    return SettlementResponse.model_validate(settlement)


@router.post("/settlements/{settlement_id}/pay", response_model=SettlementResponse)
async def pay_settlement(settlement_id: str, db: AsyncSession = Depends(get_db)) -> SettlementResponse:
    try:
        settlement = await AutomationService(db).mark_settlement_paid(settlement_id)
    except AutomationError as exc:
        raise _http_error(exc)
    return SettlementResponse.model_validate(settlement)


@router.post("/settlements/{settlement_id}/deductions", response_model=SettlementResponse)
async def add_deduction(
    settlement_id: str,
    payload: DeductionRequest,
    db: AsyncSession = Depends(get_db),
) -> SettlementResponse:
    try:
        settlement = await AutomationService(db).add_settlement_deduction(
            settlement_id, payload.line_type, payload.amount, payload.description
        )
    except AutomationError as exc:
        raise _http_error(exc)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return SettlementResponse.model_validate(settlement)
