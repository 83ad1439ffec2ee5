"""
scribe/features/billing/events.py

Provider webhook events parsed into a closed set of variants.

Handles:
- Decoding raw Stripe event payloads into frozen dataclasses
- Deciding who owns a completed checkout (Owned vs Unlinked)
- Falling back to IgnoredEvent for every unmapped event type
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Union

from scribe.features.billing.stripe_provider import get_field, object_id, to_checkout_session, to_subscription
from scribe.features.billing.provider import ProviderSubscription
from scribe.models.checkout import CheckoutOwner, Owned, Unlinked


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    event_type: str
    session_id: str
    payment_status: Optional[str]
    customer_id: Optional[str]
    subscription_id: Optional[str]
    customer_email: Optional[str]
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def owner(self) -> CheckoutOwner:
        """Sessions created for an account carry its user id; guest sessions carry only an email."""
        user_id = self.metadata.get("user_id")
        if user_id:
            return Owned(user_id=user_id)
        email = self.metadata.get("guest_email") or self.customer_email or ""
        return Unlinked(email=email, session_id=self.session_id)


@dataclass(frozen=True)
class SubscriptionChanged:
    event_id: str
    event_type: str
    subscription: ProviderSubscription


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    event_type: str
    subscription_id: str


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str
    event_type: str
    invoice_id: str
    subscription_id: Optional[str]
    payment_id: str
    amount_paid: int  # minor units
    currency: str


@dataclass(frozen=True)
class InvoiceFailed:
    event_id: str
    event_type: str
    invoice_id: str
    subscription_id: Optional[str]


@dataclass(frozen=True)
class IgnoredEvent:
    event_id: str
    event_type: str


BillingEvent = Union[
    CheckoutCompleted,
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaid,
    InvoiceFailed,
    IgnoredEvent,
]


def _invoice_subscription_id(invoice: Mapping[str, Any]) -> Optional[str]:
    subscription_id = object_id(get_field(invoice, "subscription"))
    if subscription_id:
        return subscription_id
    # Newer API versions nest it under the invoice parent
    details = get_field(get_field(invoice, "parent"), "subscription_details")
    return object_id(get_field(details, "subscription"))


def _checkout_completed(event_id: str, event_type: str, obj: Mapping[str, Any]) -> CheckoutCompleted:
    session = to_checkout_session(obj)
    return CheckoutCompleted(
        event_id=event_id,
        event_type=event_type,
        session_id=session.session_id,
        payment_status=session.payment_status,
        customer_id=session.customer_id,
        subscription_id=session.subscription_id,
        customer_email=session.customer_email,
        metadata=session.metadata,
    )


def _subscription_changed(event_id: str, event_type: str, obj: Mapping[str, Any]) -> SubscriptionChanged:
    return SubscriptionChanged(event_id=event_id, event_type=event_type, subscription=to_subscription(obj))


def _subscription_deleted(event_id: str, event_type: str, obj: Mapping[str, Any]) -> SubscriptionDeleted:
    return SubscriptionDeleted(event_id=event_id, event_type=event_type, subscription_id=get_field(obj, "id"))


def _invoice_paid(event_id: str, event_type: str, obj: Mapping[str, Any]) -> InvoicePaid:
    invoice_id = get_field(obj, "id")
    return InvoicePaid(
        event_id=event_id,
        event_type=event_type,
        invoice_id=invoice_id,
        subscription_id=_invoice_subscription_id(obj),
        payment_id=object_id(get_field(obj, "payment_intent")) or invoice_id,
        amount_paid=int(get_field(obj, "amount_paid", 0)),
        currency=get_field(obj, "currency", "usd"),
    )


def _invoice_failed(event_id: str, event_type: str, obj: Mapping[str, Any]) -> InvoiceFailed:
    return InvoiceFailed(
        event_id=event_id,
        event_type=event_type,
        invoice_id=get_field(obj, "id"),
        subscription_id=_invoice_subscription_id(obj),
    )


_PARSERS: Dict[str, Callable[[str, str, Mapping[str, Any]], BillingEvent]] = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.created": _subscription_changed,
    "customer.subscription.updated": _subscription_changed,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_succeeded": _invoice_paid,
    "invoice.payment_failed": _invoice_failed,
}


def parse_event(payload: Mapping[str, Any]) -> BillingEvent:
    """Parse a decoded provider event; unmapped types become IgnoredEvent."""
    event_id = payload["id"]
    event_type = payload["type"]
    parser = _PARSERS.get(event_type)
    if parser is None:
        return IgnoredEvent(event_id=event_id, event_type=event_type)
    obj = get_field(get_field(payload, "data"), "object", {})
    return parser(event_id, event_type, obj)
