"""Test doubles for the reconciliation protocol: clock, gateway, finalizer."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable

from services.reconciliation_service.models.enums import IntentStatus, Purpose
from services.reconciliation_service.schemas import (
    IntentRequest,
    PaymentIntent,
    PendingRecord,
)

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable replacement for utc_now()."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway:
    """Scriptable GatewayClient.

    Status scripts are per intent id; the last scripted item repeats. A
    scripted exception instance is raised instead of returned.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.ttl = timedelta(minutes=5)
        self.omit_image = False
        self.create_error: Exception | None = None
        self.image_error: Exception | None = None
        self.default_status = IntentStatus.PENDING
        self.statuses: dict[str, list] = {}
        self.created: list[PaymentIntent] = []
        self.status_calls: list[str] = []
        self.image_calls: list[str] = []
        self.cancel_calls: list[str] = []

    def script(self, intent_id: str, *statuses) -> None:
        self.statuses[intent_id] = list(statuses)

    async def create_intent(self, purpose: Purpose, request: IntentRequest) -> PaymentIntent:
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        n = len(self.created) + 1
        intent = PaymentIntent(
            payment_id=f"pay_{n}",
            intent_id=f"pi_{n}",
            purpose=purpose,
            amount_minor_units=request.amount_minor_units,
            code_image_url=None if self.omit_image else f"https://gw.test/qr/pi_{n}.png",
            expires_at=self.clock() + self.ttl,
            metadata=request.metadata,
        )
        self.created.append(intent)
        return intent

    async def fetch_status(self, intent_id: str) -> IntentStatus:
        self.status_calls.append(intent_id)
        await asyncio.sleep(0)
        queue = self.statuses.get(intent_id)
        if not queue:
            return self.default_status
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_code_image(self, intent_id: str) -> str:
        self.image_calls.append(intent_id)
        await asyncio.sleep(0)
        if self.image_error is not None:
            raise self.image_error
        return f"https://gw.test/qr/{intent_id}.png"

    async def cancel_intent(self, intent_id: str) -> None:
        self.cancel_calls.append(intent_id)


class RecordingFinalizer:
    def __init__(self, error: Exception | None = None):
        self.calls: list[tuple[dict, str]] = []
        self.error = error

    async def __call__(self, metadata: dict, intent_id: str) -> None:
        self.calls.append((metadata, intent_id))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.002)


def make_record(
    *,
    purpose: Purpose = Purpose.WALLET_CASH_IN,
    intent_id: str = "pi_restored",
    created_at: datetime = T0,
    ttl: timedelta = timedelta(minutes=5),
    grace_window_ms: int = 10 * 60 * 1000,
    code_image_url: str | None = "https://gw.test/qr/pi_restored.png",
    metadata: dict | None = None,
) -> PendingRecord:
    return PendingRecord(
        payment_id=f"pay_{intent_id}",
        intent_id=intent_id,
        purpose=purpose,
        amount_minor_units=10000,
        code_image_url=code_image_url,
        expires_at=created_at + ttl,
        metadata=metadata or {},
        grace_window_ms=grace_window_ms,
        created_at=created_at,
    )

