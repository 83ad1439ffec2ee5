"""
scribe/features/entitlements/service.py

Entitlement resolution.

Handles:
- Resolving the effective plan and feature set for a user
- Gating Pro-only features
- Structured logs for denials
"""

from dataclasses import dataclass
import logging
from typing import Optional

from sqlalchemy.orm import Session

from scribe.core.errors import EntitlementError
from scribe.features.plans.service import get_base_plan, get_plan
from scribe.features.subscriptions.ledger import get_current_subscription
from scribe.models.plan import Plan, PlanFeatures, PlanType
from scribe.models.subscription import Subscription


logger = logging.getLogger(__name__)

PRO_REQUIRED_MESSAGE = "Pro subscription required"

# Features that are on/off switches; numeric limits are gated by the usage meter.
BOOLEAN_FEATURES = frozenset({"ai_features", "folders_enabled", "tags_enabled"})


@dataclass(frozen=True)
class ResolvedPlan:
    plan_type: PlanType
    subscription: Optional[Subscription]
    plan: Plan
    features: PlanFeatures


def resolve_plan(user_id: str, session: Optional[Session] = None) -> ResolvedPlan:
    """
    Resolve the plan in force for a user right now.

    The effective subscription's plan type decides the feature set
    regardless of its status.
    Users without a live subscription get the base plan.
    """
    subscription = get_current_subscription(user_id, session=session)
    plan = get_plan(subscription.plan_type) if subscription else get_base_plan()
    return ResolvedPlan(
        plan_type=plan.plan_type,
        subscription=subscription,
        plan=plan,
        features=plan.features,
    )


def require_feature(
    user_id: str,
    feature: str,
    message: str = PRO_REQUIRED_MESSAGE,
    session: Optional[Session] = None,
) -> ResolvedPlan:
    """
    Ensure the user's plan enables a boolean feature.

    Raises:
        EntitlementError: If the feature is disabled on the resolved plan
        ValueError: If feature is not a boolean feature
    """
    if feature not in BOOLEAN_FEATURES:
        raise ValueError(f"Unknown boolean feature: {feature}")

    resolved = resolve_plan(user_id, session=session)
    if not getattr(resolved.features, feature):
        logger.info(
            "[entitlements] feature denied",
            extra={"user_id": user_id, "feature": feature, "plan_type": resolved.plan_type.value},
        )
        raise EntitlementError(message)
    return resolved
