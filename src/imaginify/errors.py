"""Typed failures raised by the repository, ledger, and settlement layers.

Every error that crosses the service boundary is a ``LedgerError`` subclass.
The HTTP layer maps them to responses through ``status_code`` and ``kind``;
handlers absorb the idempotency-relevant ones (duplicate create, delete of a
missing user, replayed payment) into successful outcomes.
"""

from __future__ import annotations

import uuid


class LedgerError(Exception):
    """Base class for all categorized failures."""

    status_code: int = 500
    kind: str = "ledger_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(LedgerError):
    status_code = 404
    kind = "not_found"


class DuplicateKey(LedgerError):
    """A store-level unique constraint rejected the write.

    ``field`` names the offending column when it can be determined.
    """

    status_code = 409
    kind = "duplicate_key"

    def __init__(self, detail: str, field: str | None = None) -> None:
        super().__init__(detail)
        self.field = field


class AlreadyRecorded(DuplicateKey):
    """A transaction with this payment id exists -- the purchase is settled."""

    kind = "already_recorded"

    def __init__(self, payment_id: str) -> None:
        super().__init__(
            f"Payment {payment_id} has already been recorded", field="payment_id",
        )
        self.payment_id = payment_id


class InsufficientCredits(LedgerError):
    status_code = 402
    kind = "insufficient_credits"


class ConfigurationError(LedgerError):
    """Required configuration is missing. Fatal, never retried."""

    kind = "configuration_error"


class StoreTimeout(LedgerError):
    """A store operation exceeded its deadline. Safe to retry."""

    status_code = 503
    kind = "timeout"


class InconsistencyDetected(LedgerError):
    """A purchase was recorded but its credits could not be granted.

    The recorded transaction is the source of truth for re-driving the grant.
    """

    kind = "inconsistency_detected"

    def __init__(self, payment_id: str, buyer_id: uuid.UUID, reason: str) -> None:
        super().__init__(
            f"Payment {payment_id} recorded but credits not granted to "
            f"{buyer_id}: {reason}"
        )
        self.payment_id = payment_id
        self.buyer_id = buyer_id
        self.reason = reason


class StoreUnavailable(LedgerError):
    """The store rejected or dropped a call for a non-integrity reason. Retryable."""

    status_code = 503
    kind = "store_unavailable"


class UpstreamError(LedgerError):
    """The identity provider's backend API failed or timed out. Retryable."""

    status_code = 502
    kind = "upstream_error"
