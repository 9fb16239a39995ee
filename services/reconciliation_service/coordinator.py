"""Reconciliation coordinator: creation, persistence, polling and finalize-once.

Per purpose the coordinator runs ``idle -> creating -> polling ->
{succeeding, discarding} -> idle``. It is the only writer of the
PendingIntentStore and the only owner of StatusPoller handles.

Finalize-once rests on one rule: when a succeeded status is accepted, the
pending record is cleared synchronously, before the first await of the
finalize step. Any later status for that intent (a second poller, a reload,
a duplicate delivery) finds no record and is ignored.
"""

import asyncio
from collections import deque
from datetime import datetime
from functools import partial
from typing import Any, Callable, Mapping, Optional, Union

from libs.common.config import get_settings
from libs.common.currency import format_centavos
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger, set_log_context
from pydantic import ValidationError
from services.reconciliation_service.errors import (
    FinalizeFailed,
    GatewayError,
    IntentExpired,
    InvalidRequest,
)
from services.reconciliation_service.events import OutcomeBus, Subscriber
from services.reconciliation_service.finalizers import Finalizer
from services.reconciliation_service.gateway_client import GatewayClient
from services.reconciliation_service.models.enums import (
    CoordinatorState,
    IntentStatus,
    Purpose,
)
from services.reconciliation_service.poller import PollerHandle, StatusPoller
from services.reconciliation_service.schemas import (
    IntentRequest,
    OutcomeEvent,
    PendingRecord,
)
from services.reconciliation_service.store import PendingIntentStore

logger = get_logger(__name__)

# Intent ids remembered as finalized (second guard behind clear-before-await)
FINALIZED_MEMORY = 1024


class ReconciliationCoordinator:
    def __init__(
        self,
        gateway: GatewayClient,
        store: PendingIntentStore,
        finalizers: Mapping[Purpose, Finalizer],
        *,
        bus: Optional[OutcomeBus] = None,
        poll_interval_ms: Optional[int] = None,
        grace_window_ms: Optional[int] = None,
        void_on_cancel: Optional[bool] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        settings = get_settings()
        self.gateway = gateway
        self.store = store
        self.bus = bus or OutcomeBus()
        self.poll_interval_ms = (
            poll_interval_ms
            if poll_interval_ms is not None
            else settings.POLL_INTERVAL_MS
        )
        self.grace_window_ms = (
            grace_window_ms if grace_window_ms is not None else settings.GRACE_WINDOW_MS
        )
        self.void_on_cancel = (
            void_on_cancel if void_on_cancel is not None else settings.VOID_ON_CANCEL
        )
        self._finalizers = dict(finalizers)
        self._clock = clock
        self._poller = StatusPoller(gateway, clock=clock)
        self._pollers: dict[Purpose, PollerHandle] = {}
        self._states: dict[Purpose, CoordinatorState] = {}
        self._locks: dict[Purpose, asyncio.Lock] = {}
        self._finalized: set[str] = set()
        self._finalized_order: deque[str] = deque()

    # ---------------------------------------------------------------------
    # Read-only projection
    # ---------------------------------------------------------------------

    def state(self, purpose: Purpose) -> CoordinatorState:
        return self._states.get(purpose, CoordinatorState.IDLE)

    def pending(self, purpose: Purpose) -> Optional[PendingRecord]:
        """The record the UI renders the code from (read-only copy)."""
        return self.store.load(purpose)

    def active_poller(self, purpose: Purpose) -> Optional[PollerHandle]:
        handle = self._pollers.get(purpose)
        if handle is not None and handle.active:
            return handle
        return None

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        return self.bus.subscribe(subscriber)

    def now(self) -> datetime:
        return self._clock()

    # ---------------------------------------------------------------------
    # Operations
    # ---------------------------------------------------------------------

    async def begin(
        self, purpose: Purpose, request: Union[IntentRequest, Mapping[str, Any]]
    ) -> PendingRecord:
        """Create an intent for ``purpose`` and start reconciling it.

        An intent already pending for the purpose is abandoned first: its
        poller is stopped, its record cleared and a ``cancelled`` event
        emitted. Creation errors propagate and leave nothing persisted.
        """
        if not isinstance(request, IntentRequest):
            try:
                request = IntentRequest.model_validate(request)
            except ValidationError as exc:
                raise InvalidRequest(f"Invalid payment request: {exc}") from exc
        self._validate_metadata(purpose, request.metadata)

        async with self._lock(purpose):
            set_log_context(purpose=purpose.value)
            previous = self.store.load(purpose)
            self._stop_poller(purpose)
            if previous is not None:
                self.store.clear(purpose)
                logger.info(
                    "Replacing pending intent %s for %s",
                    previous.intent_id,
                    purpose.value,
                )
                await self.bus.emit(OutcomeEvent.cancelled(previous))

            self._states[purpose] = CoordinatorState.CREATING
            try:
                intent = await self.gateway.create_intent(purpose, request)
            except GatewayError as exc:
                self._states[purpose] = CoordinatorState.IDLE
                logger.warning(
                    "Intent creation failed for %s: %s", purpose.value, exc.message
                )
                raise
            except Exception:
                self._states[purpose] = CoordinatorState.IDLE
                raise

            record = PendingRecord.from_intent(
                intent,
                grace_window_ms=self.grace_window_ms,
                created_at=self._clock(),
            )
            self.store.save(purpose, record)
            set_log_context(purpose=purpose.value, intent_id=record.intent_id)
            logger.info(
                "Created intent %s (payment %s) for %s, %s, expires %s",
                record.intent_id,
                record.payment_id,
                purpose.value,
                format_centavos(record.amount_minor_units),
                record.expires_at.isoformat(),
            )
            self._start_polling(purpose, record, immediate=True)

            if record.code_image_url is None:
                record = await self._backfill_code_image(purpose, record)
            return record

    async def cancel(self, purpose: Purpose) -> bool:
        """User dismissed the payment. Returns False if nothing was pending.

        The gateway is not told unless ``void_on_cancel`` is enabled; the
        intent is otherwise left to expire gateway-side.
        """
        self._stop_poller(purpose)
        record = self.store.load(purpose)
        if record is None:
            return False

        self.store.clear(purpose)
        if self.state(purpose) is not CoordinatorState.CREATING:
            self._states[purpose] = CoordinatorState.IDLE
        logger.info("Cancelled intent %s for %s", record.intent_id, purpose.value)

        if self.void_on_cancel:
            try:
                await self.gateway.cancel_intent(record.intent_id)
            except Exception as exc:
                logger.warning(
                    "Could not void intent %s gateway-side: %s", record.intent_id, exc
                )

        await self.bus.emit(OutcomeEvent.cancelled(record))
        return True

    async def refresh_code_image(self, purpose: Purpose) -> Optional[PendingRecord]:
        """Re-fetch the code image (UI retry affordance).

        Raises GatewayError so the UI can keep offering the retry.
        """
        record = self.store.load(purpose)
        if record is None:
            return None
        return await self._backfill_code_image(purpose, record, raise_errors=True)

    async def handle_status(
        self, purpose: Purpose, intent_id: str, status: IntentStatus
    ) -> bool:
        """Apply one observed status. Returns True when polling should stop.

        Updates for an intent that no longer owns the purpose's slot are
        ignored, which is what makes replaced and resolved intents inert.
        """
        record = self.store.load(purpose)
        if record is None or record.intent_id != intent_id:
            logger.info(
                "Ignoring %s for superseded intent %s", status.value, intent_id
            )
            return True

        set_log_context(purpose=purpose.value, intent_id=intent_id)
        if status is IntentStatus.PENDING:
            if self._clock() <= record.expires_at:
                return False
            logger.info("Intent %s still pending past expiry", intent_id)
            status = IntentStatus.EXPIRED

        await self._resolve(purpose, record, status)
        return True

    async def resume(self, purpose: Purpose, record: PendingRecord) -> bool:
        """Re-enter ``polling`` for a record that survived a reload.

        No-op (returns False) if the record is no longer the stored one or a
        poller for the same intent is already running.
        """
        current = self.store.load(purpose)
        if current is None or current.intent_id != record.intent_id:
            return False
        if self._polling_intent(purpose, record.intent_id):
            return False

        set_log_context(purpose=purpose.value, intent_id=record.intent_id)
        if current.code_image_url is None:
            current = await self._backfill_code_image(purpose, current)
            if self.store.load(purpose) is None:
                return False
        self._start_polling(purpose, current, immediate=False)
        logger.info("Resumed polling for intent %s", record.intent_id)
        return True

    def discard_stale(self, purpose: Purpose, record: PendingRecord) -> None:
        """Silently drop a record past its grace window. No event, no network."""
        current = self.store.load(purpose)
        if current is None or current.intent_id != record.intent_id:
            return
        self._stop_poller(purpose)
        self.store.clear(purpose)
        self._states[purpose] = CoordinatorState.IDLE

    def is_polling(self, purpose: Purpose, intent_id: str) -> bool:
        return self._polling_intent(purpose, intent_id)

    async def shutdown(self) -> None:
        """Stop every poller. Records stay so the next load restores them."""
        handles = list(self._pollers.values())
        self._pollers.clear()
        for handle in handles:
            handle.cancel()
        for handle in handles:
            await handle.wait_closed()

    # ---------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------

    def _lock(self, purpose: Purpose) -> asyncio.Lock:
        lock = self._locks.get(purpose)
        if lock is None:
            lock = self._locks[purpose] = asyncio.Lock()
        return lock

    def _validate_metadata(self, purpose: Purpose, metadata: dict[str, Any]) -> None:
        """Reject a payment its finalizer could never acknowledge."""
        finalizer = self._finalizers.get(purpose)
        if finalizer is None:
            raise InvalidRequest(f"No finalizer configured for {purpose.value}")
        validate = getattr(finalizer, "validate", None)
        if validate is None:
            return
        try:
            validate(metadata)
        except ValueError as exc:
            raise InvalidRequest(str(exc)) from exc

    def _remember_finalized(self, intent_id: str) -> None:
        self._finalized.add(intent_id)
        self._finalized_order.append(intent_id)
        while len(self._finalized_order) > FINALIZED_MEMORY:
            self._finalized.discard(self._finalized_order.popleft())

    def _polling_intent(self, purpose: Purpose, intent_id: str) -> bool:
        handle = self.active_poller(purpose)
        return handle is not None and handle.intent_id == intent_id

    def _start_polling(
        self, purpose: Purpose, record: PendingRecord, *, immediate: bool
    ) -> None:
        self._stop_poller(purpose)
        self._pollers[purpose] = self._poller.start(
            record.intent_id,
            partial(self.handle_status, purpose, record.intent_id),
            self.poll_interval_ms,
            deadline=record.unrecoverable_at,
            immediate=immediate,
        )
        self._states[purpose] = CoordinatorState.POLLING

    def _stop_poller(self, purpose: Purpose, intent_id: Optional[str] = None) -> None:
        handle = self._pollers.get(purpose)
        if handle is None:
            return
        if intent_id is not None and handle.intent_id != intent_id:
            return
        del self._pollers[purpose]
        handle.cancel()

    def _settle(self, purpose: Purpose) -> None:
        # A begin() may have started a new intent while this one resolved
        if self.state(purpose) in (
            CoordinatorState.SUCCEEDING,
            CoordinatorState.DISCARDING,
        ):
            self._states[purpose] = CoordinatorState.IDLE

    async def _resolve(
        self, purpose: Purpose, record: PendingRecord, status: IntentStatus
    ) -> None:
        if status is IntentStatus.SUCCEEDED:
            self._states[purpose] = CoordinatorState.SUCCEEDING
            # Clear before the first await below
            self.store.clear(purpose)
            self._stop_poller(purpose, record.intent_id)
            if record.intent_id in self._finalized:
                logger.warning("Intent %s already finalized", record.intent_id)
                self._settle(purpose)
                return
            self._remember_finalized(record.intent_id)

            warning = None
            try:
                await self._finalize(record)
            except FinalizeFailed as exc:
                logger.error("%s", exc.message)
                warning = (
                    "Payment received but could not be confirmed yet. "
                    "Check your balance or plan before paying again."
                )
            self._settle(purpose)
            await self.bus.emit(OutcomeEvent.succeeded(record, warning=warning))
            return

        self._states[purpose] = CoordinatorState.DISCARDING
        self.store.clear(purpose)
        self._stop_poller(purpose, record.intent_id)
        self._settle(purpose)
        if status is IntentStatus.EXPIRED:
            logger.info("%s", IntentExpired(record.intent_id).message)
            await self.bus.emit(OutcomeEvent.expired(record))
        else:
            logger.info("Intent %s failed gateway-side", record.intent_id)
            await self.bus.emit(OutcomeEvent.failed(record, reason=status.value))

    async def _finalize(self, record: PendingRecord) -> None:
        finalizer = self._finalizers.get(record.purpose)
        if finalizer is None:
            raise FinalizeFailed(
                record.intent_id,
                LookupError(f"No finalizer for {record.purpose.value}"),
            )
        try:
            await finalizer(record.metadata, record.intent_id)
        except Exception as exc:
            raise FinalizeFailed(record.intent_id, exc) from exc
        logger.info("Finalized intent %s", record.intent_id)

    async def _backfill_code_image(
        self,
        purpose: Purpose,
        record: PendingRecord,
        *,
        raise_errors: bool = False,
    ) -> PendingRecord:
        try:
            url = await self.gateway.fetch_code_image(record.intent_id)
        except Exception as exc:
            logger.warning(
                "Code image unavailable for intent %s: %s", record.intent_id, exc
            )
            if raise_errors:
                raise
            return record

        # The intent may have resolved while the image was in flight
        current = self.store.load(purpose)
        if current is None or current.intent_id != record.intent_id:
            return record.model_copy(update={"code_image_url": url})
        patched = current.model_copy(update={"code_image_url": url})
        self.store.save(purpose, patched)
        return patched
