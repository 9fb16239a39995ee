import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Keep tests away from any developer .env values
os.environ.setdefault("ENVIRONMENT", "local")
os.environ.setdefault("STORE_DATABASE_URL", "sqlite://")

from libs.common.config import get_settings
from services.reconciliation_service.app.main import create_app
from services.reconciliation_service.coordinator import ReconciliationCoordinator
from services.reconciliation_service.events import OutcomeBus
from services.reconciliation_service.models.enums import Purpose
from services.reconciliation_service.schemas import OutcomeEvent
from services.reconciliation_service.store import InMemoryPendingIntentStore
from tests.fakes import FakeClock, FakeGateway, RecordingFinalizer

get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway(clock) -> FakeGateway:
    return FakeGateway(clock)


@pytest.fixture
def store() -> InMemoryPendingIntentStore:
    return InMemoryPendingIntentStore()


@pytest.fixture
def finalizers() -> dict[Purpose, RecordingFinalizer]:
    return {
        Purpose.WALLET_CASH_IN: RecordingFinalizer(),
        Purpose.SUBSCRIPTION_CHANGE: RecordingFinalizer(),
    }


@pytest.fixture
def events() -> list[OutcomeEvent]:
    return []


@pytest_asyncio.fixture
async def coordinator(
    gateway, store, finalizers, events, clock
) -> AsyncGenerator[ReconciliationCoordinator, None]:
    """Coordinator with a 1ms poll interval and a 10 minute grace window."""
    bus = OutcomeBus()
    bus.subscribe(events.append)
    coord = ReconciliationCoordinator(
        gateway,
        store,
        finalizers,
        bus=bus,
        poll_interval_ms=1,
        grace_window_ms=10 * 60 * 1000,
        void_on_cancel=False,
        clock=clock,
    )
    yield coord
    await coord.shutdown()


@pytest_asyncio.fixture
async def api_client(coordinator) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient bound to an app that owns the test coordinator.

    ASGITransport does not run the lifespan, so no restore happens here.
    """
    app = create_app(coordinator=coordinator)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client
