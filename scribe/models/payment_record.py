"""
scribe/models/payment_record.py
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict

from scribe.models.plan import PlanType


class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    stripe_payment_id: str
    amount: Decimal
    currency: str
    plan_type: PlanType
    status: PaymentStatus
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
