"""Startup routine that picks up payments still awaited from a previous load."""

from typing import Iterable, Optional

from libs.common.logging import get_logger
from services.reconciliation_service.coordinator import ReconciliationCoordinator
from services.reconciliation_service.errors import StaleOnRestore
from services.reconciliation_service.models.enums import Purpose, RecordStatus

logger = get_logger(__name__)


class RestoreOnLoad:
    """Run once per application load, independently for each purpose slot.

    1. Empty slot: nothing to do.
    2. Marked resolved, or past ``expires_at + grace_window``: discard
       silently, no network call.
    3. Otherwise: one immediate status fetch. A terminal answer resolves the
       intent exactly as a poller update would; anything else (including a
       transient fetch error) resumes polling for the same intent.
    """

    def __init__(
        self,
        coordinator: ReconciliationCoordinator,
        purposes: Optional[Iterable[Purpose]] = None,
    ):
        self.coordinator = coordinator
        self.purposes = tuple(purposes or Purpose)
        self._ran = False

    @property
    def ran(self) -> bool:
        return self._ran

    async def run(self) -> None:
        if self._ran:
            logger.debug("Restore already ran for this load")
            return
        self._ran = True
        for purpose in self.purposes:
            await self.restore(purpose)

    async def restore(self, purpose: Purpose) -> None:
        coordinator = self.coordinator
        record = coordinator.pending(purpose)
        if record is None:
            return

        if record.status is RecordStatus.RESOLVED:
            coordinator.discard_stale(purpose, record)
            logger.info("Dropped already resolved intent %s", record.intent_id)
            return

        if record.is_stale(coordinator.now()):
            coordinator.discard_stale(purpose, record)
            logger.info("%s", StaleOnRestore(record.intent_id).message)
            return

        if coordinator.is_polling(purpose, record.intent_id):
            return

        try:
            status = await coordinator.gateway.fetch_status(record.intent_id)
        except Exception as exc:
            logger.warning(
                "Status check on restore failed for %s: %s", record.intent_id, exc
            )
        else:
            if await coordinator.handle_status(purpose, record.intent_id, status):
                return

        await coordinator.resume(purpose, record)
