"""Transaction recorder -- one immutable row per completed payment."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from imaginify.database import run_bounded, violated_field
from imaginify.errors import AlreadyRecorded, DuplicateKey, NotFound
from imaginify.models import CreditGrant, Transaction

_UNIQUE_FIELDS = {
    "payment_id": ("uq_transactions_payment_id", "transactions.payment_id"),
}


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class TransactionRecord(BaseModel):
    transaction_id: uuid.UUID
    payment_id: str
    amount: int
    credits: int
    plan: str
    buyer_id: uuid.UUID
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def record_purchase(
    db: AsyncSession,
    payment_id: str,
    amount: int,
    credits: int,
    plan: str,
    buyer_id: uuid.UUID,
    timeout: float | None = None,
) -> TransactionRecord:
    """Insert the transaction row for a completed payment.

    The unique payment id is the idempotency gate: a second insert for the
    same payment raises AlreadyRecorded so the caller can treat it as
    "already settled" rather than as a failure.
    """
    txn = Transaction(
        payment_id=payment_id,
        amount=amount,
        credits=credits,
        plan=plan,
        buyer_id=buyer_id,
    )
    db.add(txn)
    try:
        await run_bounded(db.flush(), timeout)
    except IntegrityError as exc:
        if violated_field(exc, _UNIQUE_FIELDS) == "payment_id":
            raise AlreadyRecorded(payment_id)
        raise DuplicateKey("Transaction violates a uniqueness constraint")
    return TransactionRecord.model_validate(txn)


async def get_transaction(
    db: AsyncSession,
    payment_id: str,
    timeout: float | None = None,
) -> TransactionRecord:
    """Return the transaction recorded for *payment_id*. Raises NotFound."""
    result = await run_bounded(
        db.execute(select(Transaction).where(Transaction.payment_id == payment_id)),
        timeout,
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise NotFound(f"Transaction for payment {payment_id} not found")
    return TransactionRecord.model_validate(txn)


async def list_transactions_for_buyer(
    db: AsyncSession,
    buyer_id: uuid.UUID,
    limit: int = 50,
    timeout: float | None = None,
) -> list[TransactionRecord]:
    """Return a buyer's purchase history, newest first."""
    result = await run_bounded(
        db.execute(
            select(Transaction)
            .where(Transaction.buyer_id == buyer_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        ),
        timeout,
    )
    return [TransactionRecord.model_validate(txn) for txn in result.scalars().all()]


async def find_uncredited_transactions(
    db: AsyncSession,
    timeout: float | None = None,
) -> list[TransactionRecord]:
    """Return recorded transactions that have no credit grant yet, oldest first."""
    result = await run_bounded(
        db.execute(
            select(Transaction)
            .outerjoin(CreditGrant, CreditGrant.payment_id == Transaction.payment_id)
            .where(CreditGrant.payment_id.is_(None))
            .order_by(Transaction.created_at)
        ),
        timeout,
    )
    return [TransactionRecord.model_validate(txn) for txn in result.scalars().all()]
