"""ORM models package -- re-exports all models and the Base class."""

from imaginify.models.base import Base
from imaginify.models.user import User
from imaginify.models.transaction import CreditGrant, Transaction

__all__ = [
    "Base",
    "User",
    "Transaction",
    "CreditGrant",
]
