"""Stripe purchase settlement -- record the payment, then grant its credits.

Settlement runs in two store transactions.  The transaction row is committed
first; the credit grant marker and the balance increment are committed
together second.  A transaction without a grant is therefore always visible
as "paid but not yet credited" and can be re-driven, while a replayed payment
can never credit twice.
"""

from __future__ import annotations

import enum
import uuid

import stripe
import structlog
from fastapi import HTTPException
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from imaginify.config import settings
from imaginify.database import run_bounded
from imaginify.errors import (
    AlreadyRecorded,
    ConfigurationError,
    InconsistencyDetected,
    LedgerError,
    NotFound,
)
from imaginify.events import PaymentCompletedEvent
from imaginify.models import CreditGrant
from imaginify.services.audit_logger import AuditLogger
from imaginify.services.credit_service import adjust_balance
from imaginify.services.transaction_service import (
    TransactionRecord,
    find_uncredited_transactions,
    get_transaction,
    record_purchase,
)
from imaginify.services.user_service import UserRecord, get_user

stripe.api_key = settings.STRIPE_SECRET_KEY

log = structlog.get_logger()
audit = AuditLogger()


class SettlementStatus(str, enum.Enum):
    SETTLED = "settled"
    ALREADY_SETTLED = "already_settled"


class SettlementOutcome(BaseModel):
    payment_id: str
    status: SettlementStatus
    transaction: TransactionRecord
    user: UserRecord | None = None


# ---------------------------------------------------------------------------
# Credit grant
# ---------------------------------------------------------------------------

async def _report_inconsistency(
    db: AsyncSession,
    txn: TransactionRecord,
    reason: str,
) -> InconsistencyDetected:
    await db.rollback()
    audit.log_inconsistency(txn.payment_id, txn.buyer_id, reason)
    return InconsistencyDetected(txn.payment_id, txn.buyer_id, reason)


async def grant_purchase_credits(
    db: AsyncSession,
    txn: TransactionRecord,
) -> UserRecord | None:
    """Apply a recorded transaction's credits to its buyer exactly once.

    Inserts the grant marker and increments the balance in one store
    transaction, then commits.  Returns the updated user, or None if the
    grant marker already exists (the credits were applied earlier).

    Raises InconsistencyDetected if the buyer no longer resolves or the
    grant cannot be committed; the recorded transaction stays uncredited
    and can be re-driven.
    """
    db.add(
        CreditGrant(payment_id=txn.payment_id, user_id=txn.buyer_id, credits=txn.credits)
    )
    try:
        await run_bounded(db.flush())
    except IntegrityError:
        await db.rollback()
        return None
    except (LedgerError, SQLAlchemyError) as exc:
        raise await _report_inconsistency(
            db, txn, f"grant marker failed: {type(exc).__name__}",
        ) from exc

    try:
        user = await adjust_balance(
            db, txn.buyer_id, txn.credits,
            txn_type="purchase", reference_id=txn.payment_id,
        )
        await run_bounded(db.commit())
    except NotFound as exc:
        raise await _report_inconsistency(db, txn, "buyer not found") from exc
    except (LedgerError, SQLAlchemyError) as exc:
        raise await _report_inconsistency(
            db, txn, f"credit grant failed: {type(exc).__name__}",
        ) from exc
    return user


async def _current_buyer(db: AsyncSession, buyer_id: uuid.UUID) -> UserRecord | None:
    """Return the buyer as it stands now, or None if the user has been deleted."""
    try:
        user = await get_user(db, buyer_id)
    except NotFound:
        user = None
    await db.commit()
    return user


# ---------------------------------------------------------------------------
# Settlement entry-point
# ---------------------------------------------------------------------------

async def settle_purchase(
    db: AsyncSession,
    event: PaymentCompletedEvent,
) -> SettlementOutcome:
    """Record a completed payment and credit the buyer.

    Idempotent: a replayed payment finds its transaction already recorded
    and its grant already applied, and returns ``already_settled`` with the
    original transaction.  If an earlier attempt recorded the payment but
    stopped before granting, the replay completes the grant.
    """
    try:
        txn = await record_purchase(
            db,
            payment_id=event.payment_id,
            amount=event.amount,
            credits=event.credits,
            plan=event.plan,
            buyer_id=event.buyer_id,
        )
        await run_bounded(db.commit())
    except AlreadyRecorded:
        await db.rollback()
        txn = await get_transaction(db, event.payment_id)
        # Close the read before the grant's write transaction begins.
        await db.commit()
        log.info("payment_already_recorded", payment_id=event.payment_id)

    user = await grant_purchase_credits(db, txn)
    status = SettlementStatus.SETTLED
    if user is None:
        status = SettlementStatus.ALREADY_SETTLED
        user = await _current_buyer(db, txn.buyer_id)

    audit.log_settlement(txn.payment_id, txn.buyer_id, txn.credits, status.value)
    return SettlementOutcome(
        payment_id=txn.payment_id, status=status, transaction=txn, user=user,
    )


async def redrive_uncredited(db: AsyncSession) -> list[SettlementOutcome]:
    """Grant credits for every recorded transaction that lacks a grant.

    Transactions whose buyer has been deleted stay uncredited and are logged;
    the rest are settled.  Safe to run concurrently with live webhooks.
    """
    pending = await find_uncredited_transactions(db)
    await db.commit()

    outcomes: list[SettlementOutcome] = []
    for txn in pending:
        try:
            user = await grant_purchase_credits(db, txn)
        except InconsistencyDetected as exc:
            log.error("redrive_failed", payment_id=exc.payment_id, reason=exc.reason)
            continue
        status = SettlementStatus.SETTLED
        if user is None:
            status = SettlementStatus.ALREADY_SETTLED
            user = await _current_buyer(db, txn.buyer_id)
        audit.log_settlement(txn.payment_id, txn.buyer_id, txn.credits, status.value)
        outcomes.append(
            SettlementOutcome(
                payment_id=txn.payment_id, status=status, transaction=txn, user=user,
            )
        )
    return outcomes


# ---------------------------------------------------------------------------
# Webhook helpers
# ---------------------------------------------------------------------------

def verify_stripe_event(payload: bytes, sig_header: str) -> dict:
    """Verify the Stripe webhook signature and return the parsed event."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
    try:
        return stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.STRIPE_WEBHOOK_SECRET,
        )
    except stripe.SignatureVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")


def parse_checkout_completed(session_obj: dict) -> PaymentCompletedEvent:
    """Build a payment event from a ``checkout.session.completed`` object.

    The checkout flow stores ``plan``, ``credits``, and ``buyerId`` in the
    session metadata; ``amount_total`` is in the smallest currency unit.
    """
    metadata = session_obj.get("metadata") or {}
    try:
        return PaymentCompletedEvent(
            payment_id=session_obj.get("id"),
            amount=session_obj.get("amount_total") or 0,
            credits=int(metadata.get("credits", 0)),
            plan=metadata.get("plan"),
            buyer_id=uuid.UUID(str(metadata.get("buyerId"))),
        )
    except (ValidationError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Malformed checkout session: {exc}")


# ---------------------------------------------------------------------------
# Webhook entry-point
# ---------------------------------------------------------------------------

async def handle_stripe_webhook(
    payload: bytes,
    sig_header: str,
    db: AsyncSession,
) -> SettlementOutcome | None:
    """Verify a Stripe webhook signature and settle completed checkouts.

    Other event types are acknowledged and ignored.
    """
    event = verify_stripe_event(payload, sig_header)

    if event["type"] != "checkout.session.completed":
        log.info("stripe_event_ignored", event_id=event["id"], event_type=event["type"])
        return None

    return await settle_purchase(db, parse_checkout_completed(event["data"]["object"]))
