"""
Payment gateway client.

Provides async methods for:
- Creating payment intents (QR payments)
- Fetching the current intent status
- Fetching the scannable code image for an intent
- Voiding an intent (only used when VOID_ON_CANCEL is enabled)
"""

import uuid
from typing import Any, Optional, Protocol

import httpx
from libs.common.config import get_settings
from libs.common.datetime_utils import ms, parse_iso8601, utc_now
from libs.common.logging import get_logger
from pydantic import ValidationError
from services.reconciliation_service.errors import GatewayUnavailable, InvalidRequest
from services.reconciliation_service.models.enums import (
    IntentStatus,
    Purpose,
    normalize_gateway_status,
)
from services.reconciliation_service.schemas import IntentRequest, PaymentIntent

logger = get_logger(__name__)


class GatewayClient(Protocol):
    """Calls the Coordinator makes against the payment gateway."""

    async def create_intent(
        self, purpose: Purpose, request: IntentRequest
    ) -> PaymentIntent:
        """Create an intent. Raises GatewayUnavailable or InvalidRequest."""

    async def fetch_status(self, intent_id: str) -> IntentStatus:
        """Idempotent status read. Connectivity loss raises GatewayUnavailable."""

    async def fetch_code_image(self, intent_id: str) -> str:
        """Return the scannable code image URL for an intent."""

    async def cancel_intent(self, intent_id: str) -> None:
        """Void an intent gateway-side."""


def _unwrap(data: Any) -> dict:
    """Accept either a bare object or a ``payment``/``data`` envelope."""
    if not isinstance(data, dict):
        return {}
    for key in ("payment", "data"):
        inner = data.get(key)
        if isinstance(inner, dict):
            return inner
    return data


class HttpGatewayClient:
    """Async httpx client for the payment gateway's intent API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
        default_ttl_ms: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.GATEWAY_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self.default_ttl_ms = (
            default_ttl_ms
            if default_ttl_ms is not None
            else settings.DEFAULT_INTENT_TTL_MS
        )
        # Authentication headers are supplied by the caller
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json_data: Optional[dict] = None,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make an async request to the gateway and map failures to the taxonomy."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method=method,
                    url=url,
                    headers={**self._headers, **(headers or {})},
                    params=params,
                    json=json_data,
                )
        except httpx.RequestError as exc:
            raise GatewayUnavailable(f"Gateway unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 500:
            logger.warning(
                "Gateway error %d on %s %s", response.status_code, method, endpoint
            )
            raise GatewayUnavailable(
                "Gateway temporarily unavailable",
                status_code=response.status_code,
                response_data=data if isinstance(data, dict) else None,
            )
        if response.status_code >= 400:
            message = "Gateway rejected the request"
            if isinstance(data, dict):
                message = data.get("message") or data.get("error") or message
            logger.error(
                "Gateway rejected %s %s: %d - %s",
                method,
                endpoint,
                response.status_code,
                data,
            )
            raise InvalidRequest(
                str(message),
                status_code=response.status_code,
                response_data=data if isinstance(data, dict) else None,
            )

        return data

    # =========================================================================
    # Intent Methods
    # =========================================================================

    async def create_intent(
        self, purpose: Purpose, request: IntentRequest
    ) -> PaymentIntent:
        """
        Create a payment intent for the given purpose.

        Args:
            purpose: Business reason; selects the gateway-side flow.
            request: Amount (minor units), description and opaque metadata.
                A caller-supplied ``idempotency_key`` is reused so a retried
                create returns the same intent; otherwise a fresh key is made.

        Returns:
            PaymentIntent. ``code_image_url`` may be None; ``expires_at`` falls
            back to now + DEFAULT_INTENT_TTL_MS if the gateway omits it.

        Raises:
            GatewayUnavailable: network failure or 5xx.
            InvalidRequest: 4xx or a malformed gateway response.
        """
        idempotency_key = (
            request.idempotency_key or f"{purpose.value}-{uuid.uuid4()}"
        )
        data = await self._request(
            "POST",
            "/intents",
            json_data={
                "purpose": purpose.value,
                "amount": request.amount_minor_units,
                "paymentMethod": "qrph",
                "description": request.description,
                "metadata": request.metadata,
            },
            headers={"Idempotency-Key": idempotency_key},
        )

        payload = _unwrap(data)
        payment_id = payload.get("paymentId") or payload.get("_id")
        intent_id = (
            payload.get("intentId") or payload.get("paymentIntentId") or payment_id
        )
        if not payment_id or not intent_id:
            raise InvalidRequest(
                "Gateway response is missing the payment identifiers",
                response_data=payload,
            )

        try:
            expires_at = parse_iso8601(payload.get("expiresAt")) or (
                utc_now() + ms(self.default_ttl_ms)
            )
            return PaymentIntent(
                payment_id=str(payment_id),
                intent_id=str(intent_id),
                purpose=purpose,
                amount_minor_units=payload.get("amount", request.amount_minor_units),
                code_image_url=payload.get("codeImageUrl") or payload.get("qrCodeUrl"),
                expires_at=expires_at,
                metadata=request.metadata,
            )
        except (ValueError, TypeError, AttributeError, ValidationError) as exc:
            logger.error("Malformed intent from gateway: %s - %s", exc, payload)
            raise InvalidRequest(
                "Gateway returned a malformed payment intent",
                response_data=payload,
            ) from exc

    async def fetch_status(self, intent_id: str) -> IntentStatus:
        """
        Check the status of an intent.

        Safe to call repeatedly. Unknown gateway statuses map to pending.
        """
        data = await self._request(
            "GET",
            f"/intents/{intent_id}/status",
            headers={"Cache-Control": "no-cache"},
        )
        payload = _unwrap(data)
        raw = payload.get("status") if isinstance(payload, dict) else None
        if raw is None and isinstance(data, dict):
            raw = data.get("status")
        return normalize_gateway_status(raw)

    async def fetch_code_image(self, intent_id: str) -> str:
        """
        Get the code image URL for an intent.

        Raises:
            GatewayUnavailable: if the gateway has no image for the intent yet.
        """
        data = await self._request("GET", f"/intents/{intent_id}/code")
        payload = _unwrap(data)
        url = payload.get("codeImageUrl") or payload.get("qrCodeUrl")
        if not url:
            raise GatewayUnavailable(f"No code image available for {intent_id}")
        return str(url)

    async def cancel_intent(self, intent_id: str) -> None:
        """
        Void an intent gateway-side.

        404/409 mean the intent is already gone or terminal and count as done.
        """
        try:
            await self._request(
                "POST",
                f"/intents/{intent_id}/cancel",
                json_data={},
                headers={"Idempotency-Key": f"cancel.{intent_id}"},
            )
        except InvalidRequest as exc:
            if exc.status_code in (404, 409):
                logger.info(
                    "Intent %s already terminal gateway-side (%d)",
                    intent_id,
                    exc.status_code,
                )
                return
            raise
