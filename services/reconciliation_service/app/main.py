"""FastAPI application for the Reconciliation Service."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from libs.common.logging import configure_logging, get_logger
from services.reconciliation_service.coordinator import ReconciliationCoordinator
from services.reconciliation_service.dependencies import build_coordinator
from services.reconciliation_service.restore import RestoreOnLoad
from services.reconciliation_service.router import router as reconciliation_router

logger = get_logger(__name__)


def create_app(
    coordinator: Optional[ReconciliationCoordinator] = None,
) -> FastAPI:
    """Create and configure the Reconciliation Service FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if getattr(app.state, "coordinator", None) is None:
            app.state.coordinator = build_coordinator()
        # Once per application load
        await RestoreOnLoad(app.state.coordinator).run()
        logger.info("Reconciliation service ready")
        yield
        await app.state.coordinator.shutdown()

    app = FastAPI(
        title="Payment Reconciliation Service",
        version="0.1.0",
        description="Tracks payment intents from creation to a single terminal outcome.",
        lifespan=lifespan,
    )
    app.state.coordinator = coordinator

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "reconciliation"}

    app.include_router(reconciliation_router)

    return app


app = create_app()
