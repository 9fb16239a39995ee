"""FastAPI dependencies and wiring for the Reconciliation Service."""

from typing import Optional

from fastapi import Request
from libs.common.config import get_settings
from services.reconciliation_service.coordinator import ReconciliationCoordinator
from services.reconciliation_service.events import OutcomeBus
from services.reconciliation_service.finalizers import default_finalizers
from services.reconciliation_service.gateway_client import HttpGatewayClient
from services.reconciliation_service.store import SqlPendingIntentStore


def build_coordinator(
    *, headers: Optional[dict[str, str]] = None
) -> ReconciliationCoordinator:
    """Wire the production coordinator from settings."""
    settings = get_settings()
    return ReconciliationCoordinator(
        gateway=HttpGatewayClient(headers=headers),
        store=SqlPendingIntentStore(),
        finalizers=default_finalizers(headers=headers),
        bus=OutcomeBus(),
        poll_interval_ms=settings.POLL_INTERVAL_MS,
        grace_window_ms=settings.GRACE_WINDOW_MS,
        void_on_cancel=settings.VOID_ON_CANCEL,
    )


def get_coordinator(request: Request) -> ReconciliationCoordinator:
    """
    FastAPI dependency returning the coordinator owned by the app.
    """
    return request.app.state.coordinator
