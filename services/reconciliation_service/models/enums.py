"""Enum definitions for reconciliation service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class Purpose(str, enum.Enum):
    WALLET_CASH_IN = "wallet_cashin"
    SUBSCRIPTION_CHANGE = "subscription_change"


class IntentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not IntentStatus.PENDING


class RecordStatus(str, enum.Enum):
    """Status of a persisted record.

    The coordinator deletes a record when its intent resolves, so it only ever
    writes ``polling``. A stored ``resolved`` record has nothing left to do and
    is dropped on restore.
    """

    POLLING = "polling"
    RESOLVED = "resolved"


class CoordinatorState(str, enum.Enum):
    IDLE = "idle"
    CREATING = "creating"
    POLLING = "polling"
    SUCCEEDING = "succeeding"
    DISCARDING = "discarding"


class OutcomeKind(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Gateway wire statuses -> protocol statuses. Anything unlisted stays pending.
GATEWAY_STATUS_MAP: dict[str, IntentStatus] = {
    "pending": IntentStatus.PENDING,
    "awaiting_payment": IntentStatus.PENDING,
    "processing": IntentStatus.PENDING,
    "succeeded": IntentStatus.SUCCEEDED,
    "paid": IntentStatus.SUCCEEDED,
    "failed": IntentStatus.FAILED,
    "cancelled": IntentStatus.FAILED,
    "canceled": IntentStatus.FAILED,
    "expired": IntentStatus.EXPIRED,
}


def normalize_gateway_status(raw: str | None) -> IntentStatus:
    if not raw:
        return IntentStatus.PENDING
    return GATEWAY_STATUS_MAP.get(str(raw).strip().lower(), IntentStatus.PENDING)
