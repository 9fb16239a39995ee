"""Ledger acknowledgments run once per succeeded intent.

Both ledgers are idempotent servers keyed by the Idempotency-Key header, so a
repeated call with the same intent id can never double-credit. The
Coordinator still guarantees a single call per intent on this side.
"""

from typing import Any, Awaitable, Callable, Optional

import httpx
from libs.common.logging import get_logger
from libs.common.service_client import ledger_post
from services.reconciliation_service.models.enums import Purpose

logger = get_logger(__name__)

# A finalizer may also expose ``validate(metadata)``, run before the intent is
# created; a ValueError there rejects the payment up front.
Finalizer = Callable[[dict[str, Any], str], Awaitable[None]]


class WalletCashInFinalizer:
    """Credit the vendor wallet for a settled cash-in."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.headers = headers
        self._transport = transport

    async def __call__(self, metadata: dict[str, Any], intent_id: str) -> None:
        resp = await ledger_post(
            path="/payments/cash-in/confirm",
            base_url=self.base_url,
            headers=self.headers,
            idempotency_key=f"cashin.confirm.{intent_id}",
            json={"paymentIntentId": intent_id, "metadata": metadata},
            transport=self._transport,
        )
        resp.raise_for_status()
        logger.info("Wallet credited for cash-in intent %s", intent_id)


class SubscriptionChangeFinalizer:
    """Activate the plan paid for by a settled subscription intent."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.headers = headers
        self._transport = transport

    @staticmethod
    def validate(metadata: dict[str, Any]) -> None:
        """Called before the intent is created; raises ValueError."""
        plan_code = metadata.get("planCode")
        if not isinstance(plan_code, str) or not plan_code.strip():
            raise ValueError("Subscription payments need a planCode")

    async def __call__(self, metadata: dict[str, Any], intent_id: str) -> None:
        try:
            self.validate(metadata)
        except ValueError as exc:
            raise ValueError(f"Subscription intent {intent_id}: {exc}") from exc
        plan_code = metadata["planCode"]

        resp = await ledger_post(
            path="/sellers/subscription/start-or-change",
            base_url=self.base_url,
            headers=self.headers,
            idempotency_key=f"sub.confirm.{intent_id}",
            json={
                "planCode": plan_code,
                "paymentMethod": "qrph",
                "paymentIntentId": intent_id,
            },
            transport=self._transport,
        )
        resp.raise_for_status()
        logger.info("Plan %s activated for intent %s", plan_code, intent_id)


def default_finalizers(
    headers: Optional[dict[str, str]] = None,
) -> dict[Purpose, Finalizer]:
    return {
        Purpose.WALLET_CASH_IN: WalletCashInFinalizer(headers=headers),
        Purpose.SUBSCRIPTION_CHANGE: SubscriptionChangeFinalizer(headers=headers),
    }
