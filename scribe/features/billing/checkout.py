"""
scribe/features/billing/checkout.py

Checkout orchestration.

Handles:
- Checkout sessions for signed-in users (customer created once, reused after)
- Guest checkout before an account exists, backed by pending_guest_checkouts
- Billing portal sessions
- Linking a paid guest checkout to the account registered with it
"""

import logging
from typing import Optional
from urllib.parse import quote, urlencode

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from scribe.core.config import settings
from scribe.core.database import get_db_session, pending_guest_checkouts, session_scope, utc_now
from scribe.core.errors import ConfigurationError, NotFoundError, UpstreamProviderError, ValidationError
from scribe.features.billing.provider import BillingProvider
from scribe.features.billing.service import get_billing_provider
from scribe.features.billing.state_machine import plan_type_from_metadata, role_for_plan
from scribe.features.plans.service import get_price_id, parse_billing_cycle, resolve_checkout_plan
from scribe.features.subscriptions import ledger
from scribe.features.users.service import get_user, get_user_by_email, normalize_email, set_role
from scribe.models.checkout import BillingCycle, CheckoutSession, PendingCheckoutStatus, PendingGuestCheckout
from scribe.models.plan import PlanType
from scribe.models.subscription import Subscription, SubscriptionStatus


logger = logging.getLogger(__name__)

# Stripe substitutes the real session id into this placeholder on redirect
SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def _success_url() -> str:
    return f"{settings.FRONTEND_URL}/billing/success?session_id={SESSION_ID_PLACEHOLDER}"


def _guest_success_url(email: str) -> str:
    return f"{settings.FRONTEND_URL}/register?session_id={SESSION_ID_PLACEHOLDER}&email={quote(email)}"


def _cancel_url(plan_type: PlanType, billing_cycle: BillingCycle) -> str:
    query = urlencode({"plan": plan_type.value, "cycle": billing_cycle.value})
    return f"{settings.FRONTEND_URL}/checkout?{query}"


def _require_enabled(provider: BillingProvider) -> None:
    if not provider.enabled:
        raise ConfigurationError("Billing is not configured. Set STRIPE_SECRET_KEY.", code="billing_disabled")


def _ensure_customer(user_id: str, provider: BillingProvider) -> str:
    """Reuse the customer on the effective subscription, else create one and record it."""
    with get_db_session() as session:
        current = ledger.get_current_subscription(user_id, session=session)
        if current and current.stripe_customer_id:
            return current.stripe_customer_id

        user = get_user(user_id, session=session)
        if user is None:
            raise NotFoundError("User not found", code="user_not_found")

        customer_id = provider.create_customer(
            email=user.email,
            name=user.name,
            metadata={"user_id": user_id},
        )
        ledger.append_version(
            user_id,
            plan_type=current.plan_type if current else PlanType.FREE,
            status=current.status if current else SubscriptionStatus.ACTIVE,
            stripe_customer_id=customer_id,
            stripe_subscription_id=None,
            current_period_start=current.current_period_start if current else None,
            current_period_end=current.current_period_end if current else None,
            cancel_at_period_end=current.cancel_at_period_end if current else False,
            session=session,
        )
        logger.info("billing.customer.created", extra={"user_id": user_id})
        return customer_id


def create_checkout(
    user_id: str,
    plan_type: Optional[str],
    billing_cycle: Optional[str] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> CheckoutSession:
    """
    Start a subscription checkout for a signed-in user.

    Raises:
        ValidationError: Unknown plan name or billing cycle
        ConfigurationError: Billing disabled or price not configured
        NotFoundError: User does not exist
        BillingProviderError: Stripe call failed
    """
    resolved_plan = resolve_checkout_plan(plan_type)
    cycle = parse_billing_cycle(billing_cycle)
    price_id = get_price_id(resolved_plan, cycle)

    provider = provider or get_billing_provider()
    _require_enabled(provider)

    customer_id = _ensure_customer(user_id, provider)
    session = provider.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=success_url or _success_url(),
        cancel_url=cancel_url or _cancel_url(resolved_plan, cycle),
        metadata={
            "user_id": user_id,
            "plan_type": resolved_plan.value,
            "billing_cycle": cycle.value,
        },
    )
    logger.info(
        "billing.checkout.created",
        extra={"user_id": user_id, "session_id": session.session_id, "plan_type": resolved_plan.value, "billing_cycle": cycle.value},
    )
    return CheckoutSession(session_id=session.session_id, url=session.url or "")


def create_guest_checkout(
    email: Optional[str],
    plan_type: Optional[str],
    billing_cycle: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> CheckoutSession:
    """
    Start a checkout for a buyer without a session.

    An existing account with the same email owns the checkout. Otherwise the
    session is recorded as pending until that email registers.
    """
    if not email or not email.strip():
        raise ValidationError("Email is required", code="email_required")
    email = normalize_email(email)

    existing = get_user_by_email(email)
    if existing is not None:
        return create_checkout(existing.user_id, plan_type, billing_cycle, provider=provider)

    resolved_plan = resolve_checkout_plan(plan_type)
    cycle = parse_billing_cycle(billing_cycle)
    price_id = get_price_id(resolved_plan, cycle)

    provider = provider or get_billing_provider()
    _require_enabled(provider)

    customer_id = provider.create_customer(email=email, metadata={"guest_checkout": "true"})
    session = provider.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=_guest_success_url(email),
        cancel_url=_cancel_url(resolved_plan, cycle),
        metadata={
            "guest_email": email,
            "plan_type": resolved_plan.value,
            "billing_cycle": cycle.value,
        },
        allow_promotion_codes=True,
    )

    with get_db_session() as db:
        db.execute(
            insert(pending_guest_checkouts).values(
                session_id=session.session_id,
                email=email,
                plan_type=resolved_plan.value,
                billing_cycle=cycle.value,
                stripe_customer_id=customer_id,
                status=PendingCheckoutStatus.PENDING.value,
                created_at=utc_now(),
            )
        )

    logger.info("billing.checkout.guest_created", extra={"session_id": session.session_id, "plan_type": resolved_plan.value})
    return CheckoutSession(session_id=session.session_id, url=session.url or "")


def create_portal_session(
    user_id: str,
    return_url: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> str:
    """
    Open the provider's self-service portal for the user's customer.

    Raises:
        NotFoundError: User never went through checkout
    """
    provider = provider or get_billing_provider()
    _require_enabled(provider)

    customer_id = ledger.get_customer_id(user_id)
    if not customer_id:
        raise NotFoundError("No billing account found. Complete checkout first.", code="customer_not_found")
    return provider.create_portal_session(customer_id, return_url or f"{settings.FRONTEND_URL}/billing")


def get_pending_checkout(session_id: str, session: Optional[Session] = None) -> Optional[PendingGuestCheckout]:
    with session_scope(session) as s:
        row = s.execute(
            select(pending_guest_checkouts).where(pending_guest_checkouts.c.session_id == session_id)
        ).first()
        if row is None:
            return None
        return PendingGuestCheckout(
            session_id=row.session_id,
            email=row.email,
            plan_type=row.plan_type,
            billing_cycle=row.billing_cycle,
            stripe_customer_id=row.stripe_customer_id,
            stripe_subscription_id=row.stripe_subscription_id,
            status=row.status,
            linked_user_id=row.linked_user_id,
            created_at=row.created_at,
        )


def link_guest_checkout(
    user_id: str,
    checkout_session_id: str,
    provider: Optional[BillingProvider] = None,
    session: Optional[Session] = None,
) -> Optional[Subscription]:
    """
    Attach a paid guest checkout to a newly registered account.

    Provider failures are logged and the account stays on the base plan.
    A guest checkout only links to the account registered with its email.

    Returns:
        The subscription version created for the user, or None
    """
    provider = provider or get_billing_provider()
    if not provider.enabled:
        logger.warning("billing.link.disabled", extra={"user_id": user_id, "session_id": checkout_session_id})
        return None

    try:
        checkout = provider.retrieve_checkout_session(checkout_session_id)
        if checkout.payment_status != "paid" or not checkout.subscription_id:
            logger.info(
                "billing.link.not_paid",
                extra={"user_id": user_id, "session_id": checkout_session_id, "payment_status": checkout.payment_status},
            )
            return None
        provider_subscription = provider.retrieve_subscription(checkout.subscription_id)
    except (UpstreamProviderError, ConfigurationError):
        logger.warning(
            "billing.link.lookup_failed",
            exc_info=True,
            extra={"user_id": user_id, "session_id": checkout_session_id},
        )
        return None

    plan_type = plan_type_from_metadata(checkout.metadata)
    customer_id = checkout.customer_id or provider_subscription.customer_id

    with session_scope(session) as s:
        pending = get_pending_checkout(checkout_session_id, session=s)
        if pending is not None:
            user = get_user(user_id, session=s)
            if user is None or normalize_email(user.email) != pending.email:
                logger.warning(
                    "billing.link.email_mismatch",
                    extra={"user_id": user_id, "session_id": checkout_session_id},
                )
                return None

        existing = ledger.find_by_stripe_subscription_id(checkout.subscription_id, session=s)
        if existing is not None and existing.user_id != user_id:
            logger.warning(
                "billing.link.already_owned",
                extra={"user_id": user_id, "session_id": checkout_session_id, "owner_id": existing.user_id},
            )
            return None

        subscription = existing or ledger.append_version(
            user_id,
            plan_type=plan_type,
            status=SubscriptionStatus.ACTIVE if provider_subscription.status == "active" else SubscriptionStatus.INCOMPLETE,
            stripe_customer_id=customer_id,
            stripe_subscription_id=checkout.subscription_id,
            current_period_start=provider_subscription.current_period_start,
            current_period_end=provider_subscription.current_period_end,
            cancel_at_period_end=provider_subscription.cancel_at_period_end,
            session=s,
        )
        set_role(user_id, role_for_plan(plan_type), session=s)

        if pending is not None:
            s.execute(
                update(pending_guest_checkouts)
                .where(pending_guest_checkouts.c.session_id == checkout_session_id)
                .values(
                    status=PendingCheckoutStatus.LINKED.value,
                    linked_user_id=user_id,
                    linked_at=utc_now(),
                    stripe_customer_id=customer_id,
                    stripe_subscription_id=checkout.subscription_id,
                )
            )

    if customer_id:
        try:
            provider.update_customer_metadata(customer_id, {"user_id": user_id})
        except UpstreamProviderError:
            logger.warning("billing.link.customer_update_failed", exc_info=True, extra={"user_id": user_id})

    logger.info(
        "billing.link.completed",
        extra={"user_id": user_id, "session_id": checkout_session_id, "subscription_id": checkout.subscription_id},
    )
    return subscription
