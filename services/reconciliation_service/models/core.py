from datetime import datetime
from typing import Any

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.reconciliation_service.models.enums import Purpose, enum_values
from sqlalchemy import JSON, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column


class PendingIntentRow(Base):
    """One durable slot per purpose; the primary key enforces single-slot."""

    __tablename__ = "pending_intents"

    purpose: Mapped[Purpose] = mapped_column(
        SAEnum(
            Purpose,
            name="pending_intent_purpose_enum",
            values_callable=enum_values,
            validate_strings=True,
            native_enum=False,
        ),
        primary_key=True,
    )
    intent_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    payment_id: Mapped[str] = mapped_column(String, nullable=False)

    # Persisted record, camelCase JSON object
    record: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    def __repr__(self):
        return f"<PendingIntentRow {self.purpose.value} intent={self.intent_id}>"
