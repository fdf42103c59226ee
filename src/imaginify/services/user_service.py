"""User repository -- CRUD over users keyed by their Clerk identity id."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from imaginify.database import run_bounded, violated_field
from imaginify.errors import DuplicateKey, NotFound
from imaginify.models import User

_UNIQUE_FIELDS = {
    "clerk_id": ("uq_users_clerk_id", "users.clerk_id"),
    "email": ("uq_users_email", "users.email"),
    "username": ("uq_users_username", "users.username"),
}

# Fields the identity provider may change after creation.
_MUTABLE_FIELDS = ("first_name", "last_name", "username", "photo")


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class CreateUserParams(BaseModel):
    clerk_id: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=320)
    username: str = Field(..., min_length=1, max_length=64)
    first_name: str | None = None
    last_name: str | None = None
    photo: str | None = None


class UpdateUserParams(BaseModel):
    """Partial update; only explicitly set fields are written."""

    first_name: str | None = None
    last_name: str | None = None
    username: str | None = Field(None, min_length=1, max_length=64)
    photo: str | None = None


class UserRecord(BaseModel):
    user_id: uuid.UUID
    clerk_id: str
    email: str
    username: str
    first_name: str | None = None
    last_name: str | None = None
    photo: str | None = None
    plan_id: int
    credit_balance: int
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _duplicate_key(exc: IntegrityError) -> DuplicateKey:
    field = violated_field(exc, _UNIQUE_FIELDS)
    if field is None:
        return DuplicateKey("User violates a uniqueness constraint")
    return DuplicateKey(f"A user with this {field} already exists", field=field)


# ---------------------------------------------------------------------------
# Repository functions
# ---------------------------------------------------------------------------

async def create_user(
    db: AsyncSession,
    params: CreateUserParams,
    timeout: float | None = None,
) -> UserRecord:
    """Insert a new user with the default plan and starting balance.

    Raises DuplicateKey if the clerk_id, email, or username is taken.  The
    check is left to the store's unique constraints so that concurrent
    creates across processes cannot both succeed.
    """
    user = User(**params.model_dump())
    db.add(user)
    try:
        await run_bounded(db.flush(), timeout)
    except IntegrityError as exc:
        raise _duplicate_key(exc)
    return UserRecord.model_validate(user)


async def get_user_by_clerk_id(
    db: AsyncSession,
    clerk_id: str,
    timeout: float | None = None,
) -> UserRecord:
    """Return the user mirrored from *clerk_id*. Raises NotFound."""
    result = await run_bounded(
        db.execute(select(User).where(User.clerk_id == clerk_id)), timeout,
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound(f"User {clerk_id} not found")
    return UserRecord.model_validate(user)


async def get_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    timeout: float | None = None,
) -> UserRecord:
    """Return the user with surrogate id *user_id*. Raises NotFound."""
    result = await run_bounded(
        db.execute(select(User).where(User.user_id == user_id)), timeout,
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return UserRecord.model_validate(user)


async def update_user(
    db: AsyncSession,
    clerk_id: str,
    params: UpdateUserParams,
    timeout: float | None = None,
) -> UserRecord:
    """Apply a partial profile update.

    Identity id, plan, and balance are never touched here.  Raises NotFound
    if no user mirrors *clerk_id*, DuplicateKey if the new username is taken.
    """
    values = {
        key: value
        for key, value in params.model_dump(exclude_unset=True).items()
        if key in _MUTABLE_FIELDS
    }
    # username is NOT NULL; an absent username leaves the current one.
    if values.get("username") is None:
        values.pop("username", None)

    if not values:
        return await get_user_by_clerk_id(db, clerk_id, timeout)

    stmt = (
        update(User)
        .where(User.clerk_id == clerk_id)
        .values(**values)
        .returning(*User.__table__.c)
    )
    try:
        result = await run_bounded(db.execute(stmt), timeout)
    except IntegrityError as exc:
        raise _duplicate_key(exc)

    row = result.mappings().one_or_none()
    if row is None:
        raise NotFound(f"User {clerk_id} not found")
    return UserRecord.model_validate(dict(row))


async def delete_user(
    db: AsyncSession,
    clerk_id: str,
    timeout: float | None = None,
) -> UserRecord:
    """Remove the user and return the deleted record.

    A single DELETE ... RETURNING, so of two racing deletes exactly one sees
    the row.  Raises NotFound if the user is already gone.  Purchase history
    is left in place.
    """
    stmt = (
        delete(User)
        .where(User.clerk_id == clerk_id)
        .returning(*User.__table__.c)
    )
    result = await run_bounded(db.execute(stmt), timeout)
    row = result.mappings().one_or_none()
    if row is None:
        raise NotFound(f"User {clerk_id} not found")
    return UserRecord.model_validate(dict(row))
