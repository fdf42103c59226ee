"""Read-only user and purchase history endpoints for the page layer."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from imaginify.database import get_db
from imaginify.services.transaction_service import (
    TransactionRecord,
    list_transactions_for_buyer,
)
from imaginify.services.user_service import UserRecord, get_user_by_clerk_id

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.get("/{clerk_id}", response_model=UserRecord)
async def read_user(clerk_id: str, db: AsyncSession = Depends(get_db)):
    """Return the mirrored user, including plan and credit balance."""
    return await get_user_by_clerk_id(db, clerk_id)


@router.get("/{clerk_id}/transactions", response_model=list[TransactionRecord])
async def read_transactions(
    clerk_id: str,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Return the user's credit purchases, newest first."""
    user = await get_user_by_clerk_id(db, clerk_id)
    return await list_transactions_for_buyer(db, user.user_id, limit=limit)
