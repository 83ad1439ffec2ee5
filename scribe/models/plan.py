"""
scribe/models/plan.py

Plan tiers and their feature bundles.

Plans are static, in-process configuration; they are never persisted.
A subscription row only records which plan type it grants.
"""

from enum import Enum
from typing import FrozenSet, Optional
from pydantic import BaseModel, ConfigDict


UNLIMITED = -1


class PlanType(str, Enum):
    FREE = "FREE"
    PRO = "PRO"


class PlanFeatures(BaseModel):
    """
    Entitlements granted by a plan.

    Numeric limits use -1 for unlimited.
    """
    model_config = ConfigDict(frozen=True)

    monthly_conversion_limit: int
    note_limit: int
    ai_features: bool
    export_formats: FrozenSet[str] = frozenset()
    folders_enabled: bool
    tags_enabled: bool


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_type: PlanType
    name: str
    price: float
    price_id: Optional[str] = None
    features: PlanFeatures
