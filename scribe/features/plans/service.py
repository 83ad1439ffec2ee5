"""
scribe/features/plans/service.py

Plan catalog.

Handles:
- Static plan definitions (FREE, PRO)
- Mapping externally-facing plan names onto internal plans
- Price id lookup per billing cycle
"""

from typing import Dict, Optional, Union

from scribe.core.config import settings, Settings
from scribe.core.errors import ConfigurationError, ValidationError
from scribe.models.checkout import BillingCycle
from scribe.models.plan import Plan, PlanFeatures, PlanType, UNLIMITED


BASE_PLAN_TYPE = PlanType.FREE

# Names the storefront may send. Only one paid tier exists today, so every
# paid name maps onto PRO.
CHECKOUT_PLAN_ALIASES: Dict[str, PlanType] = {
    "BASIC": PlanType.PRO,
    "PRO": PlanType.PRO,
    "PREMIUM": PlanType.PRO,
}


def get_plans(cfg: Optional[Settings] = None) -> Dict[PlanType, Plan]:
    """Plan catalog built from the current settings."""
    cfg = cfg or settings
    return {
        PlanType.FREE: Plan(
            plan_type=PlanType.FREE,
            name="Free",
            price=0,
            price_id=None,
            features=PlanFeatures(
                monthly_conversion_limit=cfg.FREE_MONTHLY_CONVERSION_LIMIT,
                note_limit=20,
                ai_features=False,
                export_formats=frozenset(),
                folders_enabled=False,
                tags_enabled=False,
            ),
        ),
        PlanType.PRO: Plan(
            plan_type=PlanType.PRO,
            name="Pro",
            price=12.99,
            price_id=cfg.STRIPE_PRO_PRICE_ID,
            features=PlanFeatures(
                monthly_conversion_limit=UNLIMITED,
                note_limit=UNLIMITED,
                ai_features=True,
                export_formats=frozenset({"pdf", "txt", "markdown"}),
                folders_enabled=True,
                tags_enabled=True,
            ),
        ),
    }


def get_plan(plan_type: Union[PlanType, str, None]) -> Plan:
    """Get a plan by type; unknown or missing types resolve to the base plan."""
    plans = get_plans()
    try:
        return plans[PlanType(plan_type)]
    except ValueError:
        return plans[BASE_PLAN_TYPE]


def get_base_plan() -> Plan:
    return get_plans()[BASE_PLAN_TYPE]


def resolve_checkout_plan(requested: Optional[str]) -> PlanType:
    """
    Map a storefront plan name onto an internal paid plan.

    Raises:
        ValidationError: If the name is not a purchasable plan
    """
    key = (requested or "PRO").strip().upper()
    plan_type = CHECKOUT_PLAN_ALIASES.get(key)
    if plan_type is None:
        raise ValidationError(f"Invalid plan type: {requested}", code="invalid_plan_type")
    return plan_type


def parse_billing_cycle(requested: Optional[str]) -> BillingCycle:
    try:
        return BillingCycle((requested or BillingCycle.MONTHLY.value).lower())
    except ValueError:
        raise ValidationError(f"Invalid billing cycle: {requested}", code="invalid_billing_cycle")


def get_price_id(plan_type: PlanType, billing_cycle: BillingCycle, cfg: Optional[Settings] = None) -> str:
    """
    Resolve the provider price id for a plan and cycle.

    Yearly falls back to the monthly price when no yearly price is configured.

    Raises:
        ConfigurationError: If the plan has no price configured
    """
    cfg = cfg or settings
    price_id = get_plan(plan_type).price_id
    if plan_type == PlanType.PRO and billing_cycle == BillingCycle.YEARLY and cfg.STRIPE_PRO_YEARLY_PRICE_ID:
        price_id = cfg.STRIPE_PRO_YEARLY_PRICE_ID
    if not price_id:
        raise ConfigurationError(
            f"No price configured for plan {plan_type.value}. Set STRIPE_PRO_PRICE_ID.",
            code="price_not_configured",
        )
    return price_id
