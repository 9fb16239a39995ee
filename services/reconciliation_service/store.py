"""Durable single-slot storage for the payment currently awaited, per purpose.

Every operation is synchronous: a caller never observes a partial write, and
the Coordinator can clear a slot without yielding to the event loop.
"""

from typing import Optional, Protocol

from libs.common.logging import get_logger
from libs.db.base import Base
from libs.db.config import create_session_factory, create_store_engine
from libs.db.session import session_scope
from pydantic import ValidationError
from services.reconciliation_service.models import PendingIntentRow, Purpose
from services.reconciliation_service.schemas import PendingRecord
from sqlalchemy import Engine

logger = get_logger(__name__)


class PendingIntentStore(Protocol):
    def save(self, purpose: Purpose, record: PendingRecord) -> None: ...

    def load(self, purpose: Purpose) -> Optional[PendingRecord]: ...

    def clear(self, purpose: Purpose) -> None: ...


class SqlPendingIntentStore:
    """PendingIntentStore backed by an embedded SQL database (SQLite by default)."""

    def __init__(self, engine: Optional[Engine] = None, *, create_tables: bool = True):
        self.engine = engine or create_store_engine()
        self._session_factory = create_session_factory(self.engine)
        if create_tables:
            Base.metadata.create_all(
                self.engine, tables=[PendingIntentRow.__table__]
            )

    def save(self, purpose: Purpose, record: PendingRecord) -> None:
        if record.purpose != purpose:
            raise ValueError(
                f"Record for {record.purpose.value} cannot go in the {purpose.value} slot"
            )
        with session_scope(self._session_factory) as session:
            row = session.get(PendingIntentRow, purpose)
            if row is None:
                row = PendingIntentRow(purpose=purpose)
                session.add(row)
            row.intent_id = record.intent_id
            row.payment_id = record.payment_id
            row.record = record.to_storage()

    def load(self, purpose: Purpose) -> Optional[PendingRecord]:
        with session_scope(self._session_factory) as session:
            row = session.get(PendingIntentRow, purpose)
            if row is None:
                return None
            data = dict(row.record)

        try:
            return PendingRecord.from_storage(data)
        except ValidationError:
            logger.warning(
                "Dropping unreadable pending record in slot %s", purpose.value
            )
            self.clear(purpose)
            return None

    def clear(self, purpose: Purpose) -> None:
        with session_scope(self._session_factory) as session:
            row = session.get(PendingIntentRow, purpose)
            if row is not None:
                session.delete(row)

    def close(self) -> None:
        self.engine.dispose()


class InMemoryPendingIntentStore:
    """Process-local store with the same contract; survives nothing."""

    def __init__(self):
        self._slots: dict[Purpose, dict] = {}

    def save(self, purpose: Purpose, record: PendingRecord) -> None:
        if record.purpose != purpose:
            raise ValueError(
                f"Record for {record.purpose.value} cannot go in the {purpose.value} slot"
            )
        self._slots[purpose] = record.to_storage()

    def load(self, purpose: Purpose) -> Optional[PendingRecord]:
        data = self._slots.get(purpose)
        if data is None:
            return None
        return PendingRecord.from_storage(data)

    def clear(self, purpose: Purpose) -> None:
        self._slots.pop(purpose, None)
