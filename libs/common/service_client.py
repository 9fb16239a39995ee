"""Reusable async HTTP client for calls to the wallet and subscription ledgers.

Finalizers go through this helper so that every ledger acknowledgment carries
an idempotency key and the same timeout/header handling.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

# Default timeout for ledger calls (seconds).
_DEFAULT_TIMEOUT = 10.0


async def ledger_request(
    *,
    method: str,
    path: str,
    base_url: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
    idempotency_key: Optional[str] = None,
    json: Any = None,
    params: Optional[dict] = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Make an HTTP call against a ledger service.

    Args:
        method: HTTP method (GET, POST, …).
        path: URL path on the ledger (e.g. "/payments/cash-in/confirm").
        base_url: Ledger base URL; defaults to settings.LEDGER_URL.
        headers: Caller-supplied headers (authentication is a caller concern).
        idempotency_key: Sent as the Idempotency-Key header when given.
        json: Optional JSON body.
        params: Optional query parameters.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).

    Returns:
        The httpx.Response object.

    Raises:
        httpx.RequestError on connection failures.
    """
    url = f"{base_url or get_settings().LEDGER_URL}{path}"
    request_headers = dict(headers or {})
    if idempotency_key:
        request_headers["Idempotency-Key"] = idempotency_key

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.request(
            method,
            url,
            headers=request_headers,
            json=json,
            params=params,
        )
    return response


async def ledger_post(
    *,
    path: str,
    json: Any = None,
    base_url: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
    idempotency_key: Optional[str] = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Convenience wrapper for POST requests."""
    return await ledger_request(
        method="POST",
        path=path,
        base_url=base_url,
        headers=headers,
        idempotency_key=idempotency_key,
        json=json,
        timeout=timeout,
        transport=transport,
    )
