"""
scribe/features/billing/state_machine.py

Subscription state transitions driven by provider events.

Handles:
- checkout.session.completed: new PRO version for owned checkouts,
  pending-record completion for guest checkouts
- customer.subscription.*: status, period and cancellation updates
- invoice.*: payment history and PAST_DUE transitions

Every handler is safe to run twice for the same event.
"""

import logging
from decimal import Decimal
from typing import Callable, Dict, Optional, Type

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from scribe.core.database import new_id, payment_records, pending_guest_checkouts, utc_now
from scribe.features.billing.events import (
    BillingEvent,
    CheckoutCompleted,
    IgnoredEvent,
    InvoiceFailed,
    InvoicePaid,
    SubscriptionChanged,
    SubscriptionDeleted,
)
from scribe.features.billing.provider import BillingProvider
from scribe.features.subscriptions import ledger
from scribe.features.users.service import set_role
from scribe.models.checkout import BillingCycle, Owned, PendingCheckoutStatus
from scribe.models.payment_record import PaymentStatus
from scribe.models.plan import PlanType
from scribe.models.subscription import SubscriptionStatus
from scribe.models.user import UserRole


logger = logging.getLogger(__name__)

APPLIED = "applied"
IGNORED = "ignored"


def plan_type_from_metadata(metadata: Dict[str, str]) -> PlanType:
    """Paid plan recorded on the checkout; PRO when absent or unknown."""
    try:
        return PlanType(metadata.get("plan_type", PlanType.PRO.value).upper())
    except ValueError:
        return PlanType.PRO


def role_for_plan(plan_type: PlanType) -> UserRole:
    return UserRole.PRO if plan_type == PlanType.PRO else UserRole.USER


def _complete_guest_checkout(event: CheckoutCompleted, session: Session) -> None:
    owner = event.owner
    now = utc_now()
    result = session.execute(
        update(pending_guest_checkouts)
        .where(pending_guest_checkouts.c.session_id == owner.session_id)
        .where(pending_guest_checkouts.c.status != PendingCheckoutStatus.LINKED.value)
        .values(
            stripe_customer_id=event.customer_id,
            stripe_subscription_id=event.subscription_id,
            status=PendingCheckoutStatus.COMPLETED.value,
            completed_at=now,
        )
    )
    if result.rowcount:
        return

    exists = session.execute(
        select(pending_guest_checkouts.c.session_id).where(
            pending_guest_checkouts.c.session_id == owner.session_id
        )
    ).first()
    if exists:
        # Already linked to an account
        return

    session.execute(
        insert(pending_guest_checkouts).values(
            session_id=owner.session_id,
            email=owner.email,
            plan_type=plan_type_from_metadata(event.metadata).value,
            billing_cycle=event.metadata.get("billing_cycle", BillingCycle.MONTHLY.value),
            stripe_customer_id=event.customer_id,
            stripe_subscription_id=event.subscription_id,
            status=PendingCheckoutStatus.COMPLETED.value,
            created_at=now,
            completed_at=now,
        )
    )


def handle_checkout_completed(event: CheckoutCompleted, provider: BillingProvider, session: Session) -> str:
    if event.payment_status != "paid" or not event.subscription_id:
        logger.info(
            "billing.checkout.not_paid",
            extra={"session_id": event.session_id, "payment_status": event.payment_status},
        )
        return IGNORED

    if ledger.find_by_stripe_subscription_id(event.subscription_id, session=session):
        return IGNORED

    provider_subscription = provider.retrieve_subscription(event.subscription_id)
    owner = event.owner

    if not isinstance(owner, Owned):
        _complete_guest_checkout(event, session)
        logger.info(
            "billing.checkout.guest_completed",
            extra={"session_id": event.session_id, "subscription_id": event.subscription_id},
        )
        return APPLIED

    plan_type = plan_type_from_metadata(event.metadata)
    ledger.append_version(
        owner.user_id,
        plan_type=plan_type,
        status=SubscriptionStatus.ACTIVE if provider_subscription.status == "active" else SubscriptionStatus.INCOMPLETE,
        stripe_customer_id=event.customer_id or provider_subscription.customer_id,
        stripe_subscription_id=event.subscription_id,
        current_period_start=provider_subscription.current_period_start,
        current_period_end=provider_subscription.current_period_end,
        cancel_at_period_end=provider_subscription.cancel_at_period_end,
        session=session,
    )
    set_role(owner.user_id, role_for_plan(plan_type), session=session)
    logger.info(
        "billing.checkout.completed",
        extra={"user_id": owner.user_id, "subscription_id": event.subscription_id, "plan_type": plan_type.value},
    )
    return APPLIED


def handle_subscription_changed(event: SubscriptionChanged, provider: BillingProvider, session: Session) -> str:
    incoming = event.subscription
    values = {
        "status": SubscriptionStatus.from_provider(incoming.status),
        "cancel_at_period_end": incoming.cancel_at_period_end,
    }
    if incoming.current_period_start:
        values["current_period_start"] = incoming.current_period_start
    if incoming.current_period_end:
        values["current_period_end"] = incoming.current_period_end

    updated = ledger.update_by_stripe_subscription_id(incoming.subscription_id, session=session, **values)
    if updated is None:
        logger.info("billing.subscription.unknown", extra={"subscription_id": incoming.subscription_id})
        return IGNORED
    logger.info(
        "billing.subscription.updated",
        extra={"user_id": updated.user_id, "subscription_id": incoming.subscription_id, "status": updated.status.value},
    )
    return APPLIED


def handle_subscription_deleted(event: SubscriptionDeleted, provider: BillingProvider, session: Session) -> str:
    updated = ledger.update_by_stripe_subscription_id(
        event.subscription_id,
        session=session,
        status=SubscriptionStatus.CANCELED,
        plan_type=PlanType.FREE,
    )
    if updated is None:
        logger.info("billing.subscription.unknown", extra={"subscription_id": event.subscription_id})
        return IGNORED
    # A tombstoned row may be canceled while a newer subscription stays live
    effective = ledger.get_current_subscription(updated.user_id, session=session)
    effective_plan = effective.plan_type if effective else PlanType.FREE
    set_role(updated.user_id, role_for_plan(effective_plan), session=session)
    logger.info("billing.subscription.canceled", extra={"user_id": updated.user_id, "subscription_id": event.subscription_id})
    return APPLIED


def handle_invoice_paid(event: InvoicePaid, provider: BillingProvider, session: Session) -> str:
    subscription = ledger.find_by_stripe_subscription_id(event.subscription_id, session=session)
    if subscription is None:
        logger.info("billing.invoice.unknown_subscription", extra={"invoice_id": event.invoice_id})
        return IGNORED

    seen = session.execute(
        select(payment_records.c.id).where(payment_records.c.stripe_payment_id == event.payment_id)
    ).first()
    if seen:
        return IGNORED

    session.execute(
        insert(payment_records).values(
            id=new_id(),
            user_id=subscription.user_id,
            stripe_payment_id=event.payment_id,
            amount=Decimal(event.amount_paid) / 100,
            currency=event.currency,
            plan_type=subscription.plan_type.value,
            status=PaymentStatus.SUCCEEDED.value,
            metadata={"invoice_id": event.invoice_id, "subscription_id": event.subscription_id},
            created_at=utc_now(),
        )
    )
    logger.info(
        "billing.invoice.paid",
        extra={"user_id": subscription.user_id, "invoice_id": event.invoice_id, "amount_paid": event.amount_paid},
    )
    return APPLIED


def handle_invoice_failed(event: InvoiceFailed, provider: BillingProvider, session: Session) -> str:
    if not event.subscription_id:
        return IGNORED
    updated = ledger.update_by_stripe_subscription_id(
        event.subscription_id, session=session, status=SubscriptionStatus.PAST_DUE
    )
    if updated is None:
        logger.info("billing.invoice.unknown_subscription", extra={"invoice_id": event.invoice_id})
        return IGNORED
    logger.warning("billing.invoice.failed", extra={"user_id": updated.user_id, "invoice_id": event.invoice_id})
    return APPLIED


def handle_ignored(event: IgnoredEvent, provider: BillingProvider, session: Session) -> str:
    logger.debug("billing.event.ignored", extra={"event_type": event.event_type})
    return IGNORED


HANDLERS: Dict[Type, Callable[..., str]] = {
    CheckoutCompleted: handle_checkout_completed,
    SubscriptionChanged: handle_subscription_changed,
    SubscriptionDeleted: handle_subscription_deleted,
    InvoicePaid: handle_invoice_paid,
    InvoiceFailed: handle_invoice_failed,
    IgnoredEvent: handle_ignored,
}


def apply_event(event: BillingEvent, provider: BillingProvider, session: Session) -> str:
    """Run the transition for one parsed event inside the caller's transaction."""
    handler: Optional[Callable[..., str]] = HANDLERS.get(type(event))
    if handler is None:
        return IGNORED
    return handler(event, provider, session)
