"""Cancellable repeating status poll for one payment intent.

The poller is an asyncio task on the running loop, never a thread. Exactly one
fetch is in flight at a time; the next one is scheduled only after the
previous result was handled and the interval elapsed.
"""

import asyncio
import inspect
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.reconciliation_service.gateway_client import GatewayClient
from services.reconciliation_service.models.enums import IntentStatus

logger = get_logger(__name__)

# Returning True tells the poller to stop.
UpdateHandler = Callable[[IntentStatus], Union[Optional[bool], Awaitable[Optional[bool]]]]


class PollerHandle:
    """Returned by StatusPoller.start(); calling it cancels the poller.

    Cancellation is cooperative and idempotent. A fetch already in flight is
    allowed to finish but its result is discarded.
    """

    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        self.task: Optional[asyncio.Task] = None
        self._cancelled = False
        self._finished = False
        self._wake = asyncio.Event()

    def __call__(self) -> None:
        self.cancel()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._wake.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._finished)

    async def wait_closed(self) -> None:
        """Wait for the poll loop to exit (cancellation included)."""
        if self.task is not None:
            await asyncio.shield(self.task)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _finish(self) -> None:
        self._finished = True


class StatusPoller:
    def __init__(
        self,
        gateway: GatewayClient,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._gateway = gateway
        self._clock = clock

    def start(
        self,
        intent_id: str,
        on_update: UpdateHandler,
        interval_ms: int,
        *,
        deadline: Optional[datetime] = None,
        immediate: bool = True,
    ) -> PollerHandle:
        """Start polling ``intent_id`` and return its cancel handle.

        ``on_update`` is called with every status the gateway reports. A
        terminal status is delivered once and ends the poll whatever the
        handler returns. Past ``deadline`` the poller reports ``expired``
        itself, without asking the gateway.
        """
        handle = PollerHandle(intent_id)
        handle.task = asyncio.get_running_loop().create_task(
            self._run(handle, on_update, interval_ms / 1000, deadline, immediate),
            name=f"status-poller:{intent_id}",
        )
        return handle

    async def _run(
        self,
        handle: PollerHandle,
        on_update: UpdateHandler,
        interval: float,
        deadline: Optional[datetime],
        immediate: bool,
    ) -> None:
        intent_id = handle.intent_id
        first = immediate
        try:
            while not handle.cancelled:
                if not first:
                    await handle._sleep(interval)
                    if handle.cancelled:
                        break
                first = False

                if deadline is not None and self._clock() > deadline:
                    logger.info("Polling ceiling reached for intent %s", intent_id)
                    await self._deliver(on_update, IntentStatus.EXPIRED)
                    break

                try:
                    status = await self._gateway.fetch_status(intent_id)
                except Exception as exc:
                    # Transient: the user never sees polling noise
                    logger.warning("Status fetch failed for %s: %s", intent_id, exc)
                    continue

                if handle.cancelled:
                    logger.debug(
                        "Discarding %s for cancelled poller %s", status.value, intent_id
                    )
                    break

                stop = await self._deliver(on_update, status)
                if stop or status.is_terminal:
                    break
        except Exception:
            logger.exception("Status handler failed for intent %s", intent_id)
        finally:
            handle._finish()

    @staticmethod
    async def _deliver(on_update: UpdateHandler, status: IntentStatus) -> bool:
        result = on_update(status)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)
