"""Tests for the user repository against a real SQLite store."""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from imaginify.database import violated_field
from imaginify.errors import DuplicateKey, NotFound
from imaginify.services.user_service import (
    CreateUserParams,
    UpdateUserParams,
    create_user,
    delete_user,
    get_user,
    get_user_by_clerk_id,
    update_user,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _params(n: int = 1, **overrides) -> CreateUserParams:
    fields = {
        "clerk_id": f"user_clerk_{n}",
        "email": f"artist{n}@example.com",
        "username": f"artist{n}",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "photo": f"https://img.clerk.com/{n}.png",
    }
    fields.update(overrides)
    return CreateUserParams(**fields)


async def _create(db, n: int = 1, **overrides):
    user = await create_user(db, _params(n, **overrides))
    await db.commit()
    return user


# ---------------------------------------------------------------------------
# create_user
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_user_applies_defaults(db_session):
    """New users start on plan 1 with 10 credits."""
    user = await _create(db_session)

    assert user.clerk_id == "user_clerk_1"
    assert user.plan_id == 1
    assert user.credit_balance == 10
    assert isinstance(user.user_id, uuid.UUID)


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["clerk_id", "email", "username"])
async def test_create_user_duplicate_field(db_session, field):
    """Each unique column is enforced by the store and reported by name."""
    await _create(db_session, 1)
    clash = {field: getattr(_params(1), field)}

    with pytest.raises(DuplicateKey) as exc_info:
        await create_user(db_session, _params(2, **clash))

    assert exc_info.value.field == field
    assert exc_info.value.status_code == 409


def test_violated_field_reads_postgres_constraint_names():
    """PostgreSQL reports the constraint name rather than the column."""
    exc = IntegrityError(
        "INSERT INTO users ...",
        {},
        Exception('duplicate key value violates unique constraint "uq_users_username"'),
    )
    fields = {
        "email": ("uq_users_email", "users.email"),
        "username": ("uq_users_username", "users.username"),
    }

    assert violated_field(exc, fields) == "username"


# ---------------------------------------------------------------------------
# lookups
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_user_by_clerk_id_and_surrogate_id(db_session):
    created = await _create(db_session)

    by_clerk = await get_user_by_clerk_id(db_session, "user_clerk_1")
    by_id = await get_user(db_session, created.user_id)

    assert by_clerk.user_id == by_id.user_id == created.user_id


@pytest.mark.asyncio
async def test_get_user_not_found(db_session):
    with pytest.raises(NotFound):
        await get_user_by_clerk_id(db_session, "user_missing")
    with pytest.raises(NotFound):
        await get_user(db_session, uuid.uuid4())


# ---------------------------------------------------------------------------
# update_user
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_update_user_partial(db_session):
    """Only the fields that were set change; balance and plan are untouched."""
    await _create(db_session)

    updated = await update_user(
        db_session, "user_clerk_1", UpdateUserParams(first_name="Grace"),
    )
    await db_session.commit()

    assert updated.first_name == "Grace"
    assert updated.last_name == "Lovelace"
    assert updated.username == "artist1"
    assert updated.credit_balance == 10
    assert updated.plan_id == 1


@pytest.mark.asyncio
async def test_update_user_ignores_null_username(db_session):
    """A null username from the provider leaves the stored one in place."""
    await _create(db_session)

    updated = await update_user(
        db_session, "user_clerk_1", UpdateUserParams(username=None, photo=None),
    )

    assert updated.username == "artist1"
    assert updated.photo is None


@pytest.mark.asyncio
async def test_update_user_not_found(db_session):
    with pytest.raises(NotFound):
        await update_user(db_session, "user_missing", UpdateUserParams(first_name="X"))


@pytest.mark.asyncio
async def test_update_user_duplicate_username(db_session):
    await _create(db_session, 1)
    await _create(db_session, 2)

    with pytest.raises(DuplicateKey) as exc_info:
        await update_user(db_session, "user_clerk_2", UpdateUserParams(username="artist1"))

    assert exc_info.value.field == "username"


# ---------------------------------------------------------------------------
# delete_user
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_user_returns_removed_record(db_session):
    created = await _create(db_session)

    removed = await delete_user(db_session, "user_clerk_1")
    await db_session.commit()

    assert removed.user_id == created.user_id
    with pytest.raises(NotFound):
        await get_user_by_clerk_id(db_session, "user_clerk_1")


@pytest.mark.asyncio
async def test_delete_user_not_found(db_session):
    with pytest.raises(NotFound):
        await delete_user(db_session, "user_missing")
