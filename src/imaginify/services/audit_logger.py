"""Structured JSON audit logger for credit, purchase, and identity events.

Emits structured log entries via structlog.  Every entry carries an
``audit: true`` flag so production log pipelines can filter on it easily.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog


log = structlog.get_logger()


class AuditLogger:
    """Structured audit logger for ledger events.

    All methods are synchronous -- they only emit log lines and perform
    no I/O beyond writing to the configured structlog sink.
    """

    # ------------------------------------------------------------------
    # Credit event
    # ------------------------------------------------------------------

    def log_credit_event(
        self,
        user_id,
        amount: int,
        txn_type: str,
        new_balance: int,
        reference_id=None,
    ) -> None:
        """Log a balance change (purchase, spend, adjustment)."""
        log.info(
            "audit_event",
            event_type="credit_event",
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=str(user_id),
            amount=amount,
            txn_type=txn_type,
            new_balance=new_balance,
            reference_id=str(reference_id) if reference_id else None,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def log_settlement(
        self,
        payment_id: str,
        buyer_id,
        credits: int,
        status: str,
    ) -> None:
        """Log the outcome of settling a completed payment."""
        log.info(
            "audit_event",
            event_type="settlement",
            timestamp=datetime.now(timezone.utc).isoformat(),
            payment_id=payment_id,
            buyer_id=str(buyer_id),
            credits=credits,
            status=status,
            audit=True,
        )

    def log_inconsistency(self, payment_id: str, buyer_id, reason: str) -> None:
        """Log a recorded payment whose credits could not be granted."""
        log.error(
            "audit_event",
            event_type="settlement_inconsistency",
            timestamp=datetime.now(timezone.utc).isoformat(),
            payment_id=payment_id,
            buyer_id=str(buyer_id),
            reason=reason,
            audit=True,
        )

    # ------------------------------------------------------------------
    # Identity sync
    # ------------------------------------------------------------------

    def log_identity_event(self, clerk_id: str, kind: str, status: str) -> None:
        """Log an identity-provider lifecycle event and how it was applied."""
        log.info(
            "audit_event",
            event_type="identity_sync",
            timestamp=datetime.now(timezone.utc).isoformat(),
            clerk_id=clerk_id,
            kind=kind,
            status=status,
            audit=True,
        )
