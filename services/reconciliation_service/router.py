"""Endpoints the dashboard uses to drive and observe payment reconciliation."""

from fastapi import APIRouter, Depends, HTTPException, Response, status
from libs.common.logging import get_logger
from services.reconciliation_service.coordinator import ReconciliationCoordinator
from services.reconciliation_service.dependencies import get_coordinator
from services.reconciliation_service.errors import GatewayUnavailable, InvalidRequest
from services.reconciliation_service.models.enums import Purpose
from services.reconciliation_service.schemas import (
    IntentRequest,
    OutcomeEvent,
    PendingRecord,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


# ---------------------------------------------------------------------------
# Pending intents
# ---------------------------------------------------------------------------


@router.post(
    "/intents/{purpose}",
    response_model=PendingRecord,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def begin_payment(
    purpose: Purpose,
    body: IntentRequest,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
):
    """Create a payment intent and start watching it (returns the code to show)."""
    try:
        return await coordinator.begin(purpose, body)
    except InvalidRequest as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message
        )
    except GatewayUnavailable:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment didn't go through. Please try again.",
        )


@router.get(
    "/intents/{purpose}",
    response_model=PendingRecord,
    response_model_by_alias=True,
)
async def get_pending_payment(
    purpose: Purpose,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
):
    """Read the payment currently awaited for this purpose."""
    record = coordinator.pending(purpose)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No pending payment"
        )
    return record


@router.delete("/intents/{purpose}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_payment(
    purpose: Purpose,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
):
    """Dismiss the pending payment. Idempotent."""
    await coordinator.cancel(purpose)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/intents/{purpose}/code",
    response_model=PendingRecord,
    response_model_by_alias=True,
)
async def retry_code_image(
    purpose: Purpose,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
):
    """Retry fetching the scannable code for the pending payment."""
    try:
        record = await coordinator.refresh_code_image(purpose)
    except (GatewayUnavailable, InvalidRequest) as exc:
        logger.info("Code image retry failed for %s: %s", purpose.value, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Code not available yet. Please try again.",
        )
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No pending payment"
        )
    return record


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@router.get(
    "/outcomes/{purpose}",
    response_model=OutcomeEvent,
    response_model_by_alias=True,
)
async def get_last_outcome(
    purpose: Purpose,
    coordinator: ReconciliationCoordinator = Depends(get_coordinator),
):
    """Most recent terminal outcome for this purpose."""
    event = coordinator.bus.last(purpose)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No outcome yet"
        )
    return event
