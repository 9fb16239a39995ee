"""Error taxonomy for the reconciliation protocol."""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class GatewayError(ReconciliationError):
    """Base exception for payment gateway errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


class GatewayUnavailable(GatewayError):
    """Network failure or 5xx. Transient: retried while polling."""


class InvalidRequest(GatewayError):
    """4xx at creation (or a request rejected locally). Fatal, never retried."""


class IntentExpired(ReconciliationError):
    """Terminal: declared by the gateway or inferred from expires_at."""

    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        super().__init__(f"Payment intent {intent_id} expired")


class FinalizeFailed(ReconciliationError):
    """Settlement succeeded gateway-side but the local acknowledgment failed.

    Surfaced as a degraded success. Never retried, never re-finalized.
    """

    def __init__(self, intent_id: str, cause: BaseException):
        self.intent_id = intent_id
        self.cause = cause
        super().__init__(f"Finalize failed for intent {intent_id}: {cause}")


class StaleOnRestore(ReconciliationError):
    """A restored record was past its grace window and silently discarded."""

    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        super().__init__(f"Discarded stale pending intent {intent_id}")
