"""Unit tests for the cancellable status poller."""

import asyncio
from datetime import timedelta

import pytest
from services.reconciliation_service.errors import GatewayUnavailable
from services.reconciliation_service.models.enums import IntentStatus
from services.reconciliation_service.poller import StatusPoller
from tests.fakes import wait_until


class BlockingGateway:
    """Holds every status fetch until released."""

    def __init__(self, status: IntentStatus):
        self.status = status
        self.calls = 0
        self.release = asyncio.Event()

    async def fetch_status(self, intent_id: str) -> IntentStatus:
        self.calls += 1
        await self.release.wait()
        return self.status


@pytest.mark.asyncio
@pytest.mark.unit
async def test_terminal_status_delivered_once_then_stops(gateway):
    gateway.script("pi_1", IntentStatus.PENDING, IntentStatus.FAILED)
    updates = []

    handle = StatusPoller(gateway).start("pi_1", updates.append, 1)
    await handle.wait_closed()

    assert updates == [IntentStatus.PENDING, IntentStatus.FAILED]
    assert not handle.active
    assert gateway.status_calls == ["pi_1", "pi_1"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_handler_can_stop_polling(gateway):
    updates = []

    async def on_update(status):
        updates.append(status)
        return len(updates) == 2

    handle = StatusPoller(gateway).start("pi_1", on_update, 1)
    await handle.wait_closed()

    assert updates == [IntentStatus.PENDING, IntentStatus.PENDING]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fetch_errors_are_swallowed_and_retried(gateway):
    gateway.script(
        "pi_1",
        GatewayUnavailable("offline"),
        RuntimeError("unexpected"),
        IntentStatus.SUCCEEDED,
    )
    updates = []

    handle = StatusPoller(gateway).start("pi_1", updates.append, 1)
    await handle.wait_closed()

    assert updates == [IntentStatus.SUCCEEDED]
    assert len(gateway.status_calls) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_is_idempotent(gateway):
    updates = []
    handle = StatusPoller(gateway).start("pi_1", updates.append, 60_000)
    await wait_until(lambda: len(updates) == 1)

    handle()
    handle.cancel()
    await handle.wait_closed()

    assert handle.cancelled
    assert not handle.active
    assert updates == [IntentStatus.PENDING]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancel_after_terminal_is_noop(gateway):
    gateway.script("pi_1", IntentStatus.SUCCEEDED)
    updates = []
    handle = StatusPoller(gateway).start("pi_1", updates.append, 1)
    await handle.wait_closed()

    handle.cancel()
    handle.cancel()

    assert updates == [IntentStatus.SUCCEEDED]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_in_flight_result_discarded_after_cancel():
    gateway = BlockingGateway(IntentStatus.SUCCEEDED)
    updates = []
    handle = StatusPoller(gateway).start("pi_1", updates.append, 1)
    await wait_until(lambda: gateway.calls == 1)

    handle.cancel()
    gateway.release.set()
    await handle.wait_closed()

    assert updates == []
    assert gateway.calls == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_deferred_first_fetch(gateway):
    updates = []
    handle = StatusPoller(gateway).start(
        "pi_1", updates.append, 60_000, immediate=False
    )
    await asyncio.sleep(0.01)

    assert gateway.status_calls == []
    handle.cancel()
    await handle.wait_closed()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_deadline_reports_local_expiry(gateway, clock):
    gateway.script("pi_1", GatewayUnavailable("offline"))
    updates = []
    handle = StatusPoller(gateway, clock=clock).start(
        "pi_1", updates.append, 1, deadline=clock() + timedelta(minutes=15)
    )
    await wait_until(lambda: len(gateway.status_calls) >= 2)

    clock.advance(minutes=15, seconds=1)
    await handle.wait_closed()

    assert updates == [IntentStatus.EXPIRED]
