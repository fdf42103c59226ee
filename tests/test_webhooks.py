"""HTTP-level tests for the webhook and user endpoints.

Requests run through the ASGI app against the SQLite store; signature
verification is patched out except where it is under test.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from svix.webhooks import Webhook

from imaginify.config import settings
from imaginify.errors import UpstreamError

WEBHOOK_SECRET = "whsec_MfKQ9r8GKYqrTwjUPD8ILPZIo2LaLaSw"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _user_created(clerk_id: str = "user_2abc") -> dict:
    return {
        "type": "user.created",
        "data": {
            "id": clerk_id,
            "username": "ada",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "image_url": "https://img.clerk.com/ada.png",
            "email_addresses": [{"email_address": "ada@example.com"}],
        },
    }


async def _post_clerk(client, payload: dict):
    with patch(
        "imaginify.api.webhooks.verify_clerk_webhook", return_value=payload,
    ):
        return await client.post("/api/v1/webhooks/clerk", content=json.dumps(payload))


# ---------------------------------------------------------------------------
# Clerk webhook
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_clerk_user_created(client):
    resp = await _post_clerk(client, _user_created())

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "applied"
    assert data["user"]["clerk_id"] == "user_2abc"
    assert data["user"]["credit_balance"] == 10


@pytest.mark.asyncio
async def test_clerk_duplicate_create_is_replayed(client):
    await _post_clerk(client, _user_created())
    resp = await _post_clerk(client, _user_created())

    assert resp.status_code == 200
    assert resp.json()["status"] == "replayed"


@pytest.mark.asyncio
async def test_clerk_update_before_create_returns_409(client):
    """Clerk retries non-2xx deliveries, so the update arrives again later."""
    payload = {"type": "user.updated", "data": {"id": "user_late", "username": "late"}}

    resp = await _post_clerk(client, payload)

    assert resp.status_code == 409
    assert resp.json()["status"] == "not_found"
    missing = await client.get("/api/v1/users/user_late")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_clerk_delete_then_redelivered_delete(client):
    await _post_clerk(client, _user_created())
    payload = {"type": "user.deleted", "data": {"id": "user_2abc", "deleted": True}}

    first = await _post_clerk(client, payload)
    second = await _post_clerk(client, payload)

    assert first.json()["status"] == "applied"
    assert second.status_code == 200
    assert second.json()["status"] == "noop"


@pytest.mark.asyncio
async def test_clerk_conflicting_identity_returns_409_error(client):
    await _post_clerk(client, _user_created("user_one"))

    resp = await _post_clerk(client, _user_created("user_two"))

    assert resp.status_code == 409
    assert resp.json()["error"] == "duplicate_key"


@pytest.mark.asyncio
async def test_clerk_outage_returns_502_and_redelivery_replays(client, mock_clerk):
    """A failed metadata push is surfaced so Clerk redelivers the create."""
    mock_clerk.set_public_metadata.side_effect = UpstreamError("Clerk down")

    failed = await _post_clerk(client, _user_created())

    assert failed.status_code == 502
    assert failed.json()["error"] == "upstream_error"

    mock_clerk.set_public_metadata.side_effect = None
    resp = await _post_clerk(client, _user_created())

    assert resp.status_code == 200
    assert resp.json()["status"] == "replayed"
    assert mock_clerk.set_public_metadata.await_count == 2


@pytest.mark.asyncio
async def test_clerk_unhandled_event_type_is_ignored(client):
    resp = await _post_clerk(client, {"type": "session.created", "data": {"id": "s1"}})

    assert resp.status_code == 200
    assert resp.json() == {"status": "ignored", "type": "session.created"}


@pytest.mark.asyncio
async def test_clerk_signed_delivery_end_to_end(client, monkeypatch):
    monkeypatch.setattr(settings, "CLERK_WEBHOOK_SECRET", WEBHOOK_SECRET)
    body = json.dumps(_user_created())
    timestamp = datetime.now(timezone.utc)
    headers = {
        "svix-id": "msg_1",
        "svix-timestamp": str(int(timestamp.timestamp())),
        "svix-signature": Webhook(WEBHOOK_SECRET).sign("msg_1", timestamp, body),
    }

    resp = await client.post("/api/v1/webhooks/clerk", content=body, headers=headers)

    assert resp.status_code == 200
    assert resp.json()["status"] == "applied"


@pytest.mark.asyncio
async def test_clerk_unsigned_delivery_rejected(client, monkeypatch):
    monkeypatch.setattr(settings, "CLERK_WEBHOOK_SECRET", WEBHOOK_SECRET)

    resp = await client.post(
        "/api/v1/webhooks/clerk", content=json.dumps(_user_created()),
    )

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_clerk_without_secret_is_server_error(client, monkeypatch):
    monkeypatch.setattr(settings, "CLERK_WEBHOOK_SECRET", "")

    resp = await client.post("/api/v1/webhooks/clerk", content="{}")

    assert resp.status_code == 500
    assert resp.json()["error"] == "configuration_error"


# ---------------------------------------------------------------------------
# Stripe webhook
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stripe_checkout_settles_and_replays(client, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    created = (await _post_clerk(client, _user_created())).json()
    buyer_id = created["user"]["user_id"]
    event = {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "amount_total": 1200,
                "metadata": {"plan": "Pro Package", "credits": "50", "buyerId": buyer_id},
            },
        },
    }

    with patch("stripe.Webhook.construct_event", return_value=event):
        first = await client.post(
            "/api/v1/webhooks/stripe", content=b"{}",
            headers={"stripe-signature": "t=1,v1=sig"},
        )
        second = await client.post(
            "/api/v1/webhooks/stripe", content=b"{}",
            headers={"stripe-signature": "t=1,v1=sig"},
        )

    assert first.json() == {"status": "settled", "payment_id": "cs_test_1"}
    assert second.json() == {"status": "already_settled", "payment_id": "cs_test_1"}

    user = (await client.get("/api/v1/users/user_2abc")).json()
    assert user["credit_balance"] == 60

    history = (await client.get("/api/v1/users/user_2abc/transactions")).json()
    assert [txn["payment_id"] for txn in history] == ["cs_test_1"]


@pytest.mark.asyncio
async def test_stripe_other_event_is_ignored(client, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    event = {"id": "evt_2", "type": "payment_intent.created", "data": {"object": {}}}

    with patch("stripe.Webhook.construct_event", return_value=event):
        resp = await client.post("/api/v1/webhooks/stripe", content=b"{}")

    assert resp.json() == {"status": "ignored"}


@pytest.mark.asyncio
async def test_stripe_unknown_buyer_is_inconsistency(client, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    event = {
        "id": "evt_3",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_orphan",
                "amount_total": 500,
                "metadata": {
                    "plan": "Basic Package", "credits": "20", "buyerId": str(uuid.uuid4()),
                },
            },
        },
    }

    with patch("stripe.Webhook.construct_event", return_value=event):
        resp = await client.post("/api/v1/webhooks/stripe", content=b"{}")

    assert resp.status_code == 500
    assert resp.json()["error"] == "inconsistency_detected"


# ---------------------------------------------------------------------------
# Users API
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_user_not_found(client):
    resp = await client.get("/api/v1/users/user_missing")

    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_list_transactions_limit_validation(client):
    resp = await client.get("/api/v1/users/user_2abc/transactions?limit=0")

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}
