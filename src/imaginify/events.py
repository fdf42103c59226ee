"""Inbound event payloads from the identity provider and payment processor.

Identity lifecycle events form a discriminated union on ``kind`` so that each
variant states exactly which fields it requires.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class UserCreatedEvent(BaseModel):
    kind: Literal["created"] = "created"
    clerk_id: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=320)
    username: str = Field(..., min_length=1, max_length=64)
    first_name: str | None = None
    last_name: str | None = None
    photo: str | None = None


class UserUpdatedEvent(BaseModel):
    kind: Literal["updated"] = "updated"
    clerk_id: str = Field(..., min_length=1, max_length=255)
    username: str | None = Field(None, min_length=1, max_length=64)
    first_name: str | None = None
    last_name: str | None = None
    photo: str | None = None


class UserDeletedEvent(BaseModel):
    kind: Literal["deleted"] = "deleted"
    clerk_id: str = Field(..., min_length=1, max_length=255)


IdentityEvent = Annotated[
    Union[UserCreatedEvent, UserUpdatedEvent, UserDeletedEvent],
    Field(discriminator="kind"),
]


class PaymentCompletedEvent(BaseModel):
    payment_id: str = Field(..., min_length=1, max_length=255)
    amount: int = Field(..., ge=0)
    credits: int = Field(..., gt=0)
    plan: str = Field(..., min_length=1, max_length=64)
    buyer_id: uuid.UUID
