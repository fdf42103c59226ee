"""Clerk identity sync -- applies user lifecycle events idempotently.

Clerk delivers events at least once and in no guaranteed order, so every
branch tolerates replays:

  created  -- a duplicate of an existing identity is reported as ``replayed``
  updated  -- an update for an unknown identity is reported as ``not_found``
              without fabricating a user from partial data
  deleted  -- deleting an identity that is already gone is a ``noop``

After a create (or its replay) the local user id is written back to the
Clerk user as ``publicMetadata.userId``.
"""

from __future__ import annotations

import enum
import json
from typing import Any

import structlog
from fastapi import HTTPException
from pydantic import BaseModel, TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from svix.webhooks import Webhook, WebhookVerificationError

from imaginify.config import settings
from imaginify.errors import ConfigurationError, DuplicateKey, NotFound
from imaginify.events import (
    IdentityEvent,
    UserCreatedEvent,
    UserDeletedEvent,
    UserUpdatedEvent,
)
from imaginify.integrations.clerk_client import clerk_client
from imaginify.services.audit_logger import AuditLogger
from imaginify.services.user_service import (
    CreateUserParams,
    UpdateUserParams,
    UserRecord,
    create_user,
    delete_user,
    get_user_by_clerk_id,
    update_user,
)

log = structlog.get_logger()
audit = AuditLogger()

_identity_event_adapter = TypeAdapter(IdentityEvent)

_CLERK_EVENT_KINDS = {
    "user.created": "created",
    "user.updated": "updated",
    "user.deleted": "deleted",
}


class SyncStatus(str, enum.Enum):
    APPLIED = "applied"
    REPLAYED = "replayed"
    NOT_FOUND = "not_found"
    NOOP = "noop"


class SyncOutcome(BaseModel):
    kind: str
    clerk_id: str
    status: SyncStatus
    user: UserRecord | None = None

    @property
    def ok(self) -> bool:
        """False only for the recoverable update-before-create case."""
        return self.status != SyncStatus.NOT_FOUND


# ---------------------------------------------------------------------------
# Webhook helpers
# ---------------------------------------------------------------------------

def verify_clerk_webhook(body: bytes, headers: dict[str, str]) -> dict:
    """Verify the Svix signature on a Clerk webhook and return the payload."""
    if not settings.CLERK_WEBHOOK_SECRET:
        raise ConfigurationError("CLERK_WEBHOOK_SECRET is not configured")

    svix_headers = {
        name: headers.get(name, "")
        for name in ("svix-id", "svix-timestamp", "svix-signature")
    }
    if not all(svix_headers.values()):
        raise HTTPException(status_code=400, detail="Missing svix headers")

    try:
        Webhook(settings.CLERK_WEBHOOK_SECRET).verify(body, svix_headers)
    except WebhookVerificationError:
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        return json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")


def parse_clerk_event(payload: dict[str, Any]) -> IdentityEvent | None:
    """Map a Clerk webhook payload to an identity event.

    Returns None for event types this service does not mirror.
    Raises HTTPException(400) if a user event is missing required fields.
    """
    kind = _CLERK_EVENT_KINDS.get(payload.get("type", ""))
    if kind is None:
        log.info("clerk_event_ignored", event_type=payload.get("type"))
        return None

    data = payload.get("data") or {}
    fields: dict[str, Any] = {"kind": kind, "clerk_id": data.get("id")}

    if kind in ("created", "updated"):
        fields.update(
            username=data.get("username"),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
            photo=data.get("image_url"),
        )
    if kind == "created":
        addresses = data.get("email_addresses") or []
        fields["email"] = addresses[0].get("email_address") if addresses else None

    try:
        return _identity_event_adapter.validate_python(fields)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400, detail=f"Malformed {payload.get('type')} event: {exc}",
        )


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------

async def _link_identity(clerk_id: str, user: UserRecord) -> None:
    """Publish the local user id on the Clerk user as ``publicMetadata.userId``."""
    await clerk_client.set_public_metadata(clerk_id, {"userId": str(user.user_id)})


async def _apply_created(db: AsyncSession, event: UserCreatedEvent) -> SyncOutcome:
    params = CreateUserParams(**event.model_dump(exclude={"kind"}))
    try:
        user = await create_user(db, params)
        await db.commit()
    except DuplicateKey as exc:
        await db.rollback()
        # The store may report any of the three unique columns first, so ask
        # whether this identity already exists rather than trusting exc.field.
        try:
            user = await get_user_by_clerk_id(db, event.clerk_id)
        except NotFound:
            raise exc
        await db.commit()
        # Re-link on replay: the earlier delivery may have failed after commit.
        await _link_identity(event.clerk_id, user)
        return SyncOutcome(
            kind=event.kind, clerk_id=event.clerk_id,
            status=SyncStatus.REPLAYED, user=user,
        )
    await _link_identity(event.clerk_id, user)
    return SyncOutcome(
        kind=event.kind, clerk_id=event.clerk_id, status=SyncStatus.APPLIED, user=user,
    )


async def _apply_updated(db: AsyncSession, event: UserUpdatedEvent) -> SyncOutcome:
    params = UpdateUserParams(
        **event.model_dump(exclude={"kind", "clerk_id"}, exclude_unset=True)
    )
    try:
        user = await update_user(db, event.clerk_id, params)
        await db.commit()
    except NotFound:
        await db.rollback()
        log.warning("identity_update_before_create", clerk_id=event.clerk_id)
        return SyncOutcome(
            kind=event.kind, clerk_id=event.clerk_id, status=SyncStatus.NOT_FOUND,
        )
    return SyncOutcome(
        kind=event.kind, clerk_id=event.clerk_id, status=SyncStatus.APPLIED, user=user,
    )


async def _apply_deleted(db: AsyncSession, event: UserDeletedEvent) -> SyncOutcome:
    try:
        user = await delete_user(db, event.clerk_id)
        await db.commit()
    except NotFound:
        await db.rollback()
        return SyncOutcome(
            kind=event.kind, clerk_id=event.clerk_id, status=SyncStatus.NOOP,
        )
    return SyncOutcome(
        kind=event.kind, clerk_id=event.clerk_id, status=SyncStatus.APPLIED, user=user,
    )


async def handle_identity_event(db: AsyncSession, event: IdentityEvent) -> SyncOutcome:
    """Apply one identity lifecycle event and commit it.

    Duplicate creates and deletes of missing users are absorbed into success.
    Everything else (real uniqueness conflicts, timeouts) propagates.
    """
    if isinstance(event, UserCreatedEvent):
        outcome = await _apply_created(db, event)
    elif isinstance(event, UserUpdatedEvent):
        outcome = await _apply_updated(db, event)
    else:
        outcome = await _apply_deleted(db, event)

    audit.log_identity_event(outcome.clerk_id, outcome.kind, outcome.status.value)
    return outcome
