"""Purchase transactions and the credit grants applied for them."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from imaginify.models.base import Base
from imaginify.models.user import _utcnow


class Transaction(Base):
    """One immutable row per completed payment.

    ``buyer_id`` is a plain reference: deleting a user keeps its purchase
    history, so it carries no foreign key.
    """

    __tablename__ = "transactions"

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    payment_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    plan: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_transactions_payment_id"),
        CheckConstraint("amount >= 0", name="ck_transactions_amount_nonneg"),
        CheckConstraint("credits > 0", name="ck_transactions_credits_positive"),
        Index("idx_transactions_buyer", "buyer_id", "created_at"),
    )


class CreditGrant(Base):
    """Marks a transaction whose credits reached the buyer's balance."""

    __tablename__ = "credit_grants"

    payment_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("transactions.payment_id"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
