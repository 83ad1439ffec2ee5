"""
scribe/models/subscription.py

One version of a user's subscription.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from scribe.models.plan import PlanType


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    INCOMPLETE = "INCOMPLETE"

    @classmethod
    def from_provider(cls, provider_status: Optional[str]) -> "SubscriptionStatus":
        """Map a payment-provider subscription status onto ours."""
        return _PROVIDER_STATUS_MAP.get(provider_status or "", cls.INCOMPLETE)


_PROVIDER_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
}


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    version: int
    plan_type: PlanType
    status: SubscriptionStatus
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: datetime
    deleted_at: Optional[datetime] = None
