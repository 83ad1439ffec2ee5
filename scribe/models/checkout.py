"""
scribe/models/checkout.py

Checkout sessions and who owns them.

A checkout is either Owned by an existing account or Unlinked, meaning it
was paid for before the buyer registered. Unlinked checkouts are backed by
a PendingGuestCheckout row and resolved once, at registration.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict

from scribe.models.plan import PlanType


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PendingCheckoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    LINKED = "linked"


@dataclass(frozen=True)
class Owned:
    user_id: str


@dataclass(frozen=True)
class Unlinked:
    email: str
    session_id: str


CheckoutOwner = Union[Owned, Unlinked]


class PendingGuestCheckout(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    email: str
    plan_type: PlanType
    billing_cycle: BillingCycle
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    status: PendingCheckoutStatus = PendingCheckoutStatus.PENDING
    linked_user_id: Optional[str] = None
    created_at: datetime


class CheckoutSession(BaseModel):
    """Redirect target handed back to the caller."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    url: str
