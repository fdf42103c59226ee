"""Credit ledger -- atomic balance adjustments, spends, and balance queries."""

from __future__ import annotations

import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from imaginify.database import run_bounded
from imaginify.errors import InsufficientCredits, NotFound
from imaginify.models import User
from imaginify.services.audit_logger import AuditLogger
from imaginify.services.user_service import UserRecord

audit = AuditLogger()


# ---------------------------------------------------------------------------
# Service functions
# ---------------------------------------------------------------------------

async def adjust_balance(
    db: AsyncSession,
    user_id: uuid.UUID,
    delta: int,
    txn_type: str = "adjustment",
    reference_id: str | None = None,
    timeout: float | None = None,
) -> UserRecord:
    """Add *delta* (positive or negative) to a user's balance in one statement.

    The increment happens inside the UPDATE itself, so concurrent adjustments
    on the same row are serialized by the store and always sum correctly.
    No floor is enforced here; see spend_credits for the spending policy.

    Returns the user as it stands after the adjustment.
    Raises NotFound if *user_id* does not resolve.
    """
    result = await run_bounded(
        db.execute(
            update(User)
            .where(User.user_id == user_id)
            .values(credit_balance=User.credit_balance + delta)
            .returning(*User.__table__.c)
        ),
        timeout,
    )
    row = result.mappings().one_or_none()
    if row is None:
        raise NotFound(f"User {user_id} not found")

    user = UserRecord.model_validate(dict(row))
    audit.log_credit_event(
        user_id, delta, txn_type, user.credit_balance, reference_id=reference_id,
    )
    return user


async def spend_credits(
    db: AsyncSession,
    user_id: uuid.UUID,
    amount: int,
    reference_id: str | None = None,
    timeout: float | None = None,
) -> UserRecord:
    """Atomically deduct credits using UPDATE ... WHERE balance >= amount.

    Spending can never drive a balance negative.  Raises InsufficientCredits
    if the balance is too low, NotFound if the user does not exist.
    """
    if amount <= 0:
        raise ValueError("amount must be positive")

    result = await run_bounded(
        db.execute(
            update(User)
            .where(User.user_id == user_id, User.credit_balance >= amount)
            .values(credit_balance=User.credit_balance - amount)
            .returning(*User.__table__.c)
        ),
        timeout,
    )
    row = result.mappings().one_or_none()
    if row is None:
        # Distinguish a missing user from a short balance.
        await get_balance(db, user_id, timeout)
        raise InsufficientCredits("Insufficient credits")

    user = UserRecord.model_validate(dict(row))
    audit.log_credit_event(
        user_id, -amount, "spend", user.credit_balance, reference_id=reference_id,
    )
    return user


async def get_balance(
    db: AsyncSession,
    user_id: uuid.UUID,
    timeout: float | None = None,
) -> int:
    """Return the current credit balance for a user. Raises NotFound."""
    result = await run_bounded(
        db.execute(select(User.credit_balance).where(User.user_id == user_id)),
        timeout,
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFound(f"User {user_id} not found")
    return balance
