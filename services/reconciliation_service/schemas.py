"""Pydantic schemas for the Reconciliation Service.

Wire and persisted shapes use camelCase keys; Python code uses snake_case
attributes (``populate_by_name`` accepts both).
"""

from datetime import datetime
from typing import Any, Optional

from libs.common.datetime_utils import ensure_utc, ms, utc_now
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from services.reconciliation_service.models.enums import (
    OutcomeKind,
    Purpose,
    RecordStatus,
)

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class IntentRequest(BaseModel):
    """What the UI asks for when it starts a payment."""

    amount_minor_units: int = Field(..., gt=0)
    description: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    # Reused by the caller across retries of the same payment attempt
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=255)

    model_config = _CAMEL


# ---------------------------------------------------------------------------
# Intent / record
# ---------------------------------------------------------------------------


class PaymentIntent(BaseModel):
    payment_id: str
    intent_id: str
    purpose: Purpose
    amount_minor_units: int
    code_image_url: Optional[str] = None
    expires_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    @field_validator("expires_at")
    @classmethod
    def expires_at_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("amount_minor_units", mode="before")
    @classmethod
    def reject_fractional_amounts(cls, v: Any) -> Any:
        if isinstance(v, float):
            if not v.is_integer():
                raise ValueError("amounts are integer minor units")
            return int(v)
        return v


class PendingRecord(PaymentIntent):
    """Durable projection of a PaymentIntent plus protocol bookkeeping.

    Frozen: the UI only ever sees a read-only copy, the Coordinator replaces
    whole records when it needs to patch one.
    """

    status: RecordStatus = RecordStatus.POLLING
    grace_window_ms: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_intent(
        cls,
        intent: PaymentIntent,
        *,
        grace_window_ms: int,
        created_at: Optional[datetime] = None,
    ) -> "PendingRecord":
        return cls(
            **intent.model_dump(),
            status=RecordStatus.POLLING,
            grace_window_ms=grace_window_ms,
            created_at=created_at or utc_now(),
        )

    @property
    def unrecoverable_at(self) -> datetime:
        """Point past which a restored record is discarded without a network call."""
        return self.expires_at + ms(self.grace_window_ms)

    def is_stale(self, now: datetime) -> bool:
        return now > self.unrecoverable_at

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> "PendingRecord":
        return cls.model_validate(data)


# ---------------------------------------------------------------------------
# Outcome events
# ---------------------------------------------------------------------------


class OutcomeEvent(BaseModel):
    """The only thing the presentation layer is allowed to depend on."""

    kind: OutcomeKind
    payment_id: str
    intent_id: str
    purpose: Purpose
    reason: Optional[str] = None
    # Set on a succeeded event whose local acknowledgment failed
    warning: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    @classmethod
    def succeeded(
        cls, record: PendingRecord, *, warning: Optional[str] = None
    ) -> "OutcomeEvent":
        return cls.for_record(record, OutcomeKind.SUCCEEDED, warning=warning)

    @classmethod
    def failed(cls, record: PendingRecord, reason: str) -> "OutcomeEvent":
        return cls.for_record(record, OutcomeKind.FAILED, reason=reason)

    @classmethod
    def expired(cls, record: PendingRecord) -> "OutcomeEvent":
        return cls.for_record(record, OutcomeKind.EXPIRED)

    @classmethod
    def cancelled(cls, record: PendingRecord) -> "OutcomeEvent":
        return cls.for_record(record, OutcomeKind.CANCELLED)

    @classmethod
    def for_record(
        cls, record: PendingRecord, kind: OutcomeKind, **extra
    ) -> "OutcomeEvent":
        return cls(
            kind=kind,
            payment_id=record.payment_id,
            intent_id=record.intent_id,
            purpose=record.purpose,
            **extra,
        )
