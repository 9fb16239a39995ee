"""Reconciliation Service models package."""

from services.reconciliation_service.models.core import PendingIntentRow
from services.reconciliation_service.models.enums import (
    CoordinatorState,
    IntentStatus,
    OutcomeKind,
    Purpose,
    RecordStatus,
    normalize_gateway_status,
)

__all__ = [
    "CoordinatorState",
    "IntentStatus",
    "OutcomeKind",
    "PendingIntentRow",
    "Purpose",
    "RecordStatus",
    "normalize_gateway_status",
]
