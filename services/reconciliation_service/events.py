"""Outcome events delivered from the Coordinator to the presentation layer."""

import inspect
from typing import Awaitable, Callable, Optional, Union

from libs.common.logging import get_logger
from services.reconciliation_service.models.enums import Purpose
from services.reconciliation_service.schemas import OutcomeEvent

logger = get_logger(__name__)

Subscriber = Callable[[OutcomeEvent], Union[None, Awaitable[None]]]


class OutcomeBus:
    """Fan-out of outcome events to subscribers.

    A failing subscriber is logged and skipped; it never affects the protocol
    or the other subscribers.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._last: dict[Purpose, OutcomeEvent] = {}

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def last(self, purpose: Purpose) -> Optional[OutcomeEvent]:
        return self._last.get(purpose)

    async def emit(self, event: OutcomeEvent) -> None:
        self._last[event.purpose] = event
        logger.info(
            "Outcome %s for payment %s (%s)",
            event.kind.value,
            event.payment_id,
            event.purpose.value,
        )
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Outcome subscriber failed on %s for %s",
                    event.kind.value,
                    event.payment_id,
                )
