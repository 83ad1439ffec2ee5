"""
Stripe billing provider implementation.

Implements the BillingProvider protocol using the Stripe API.
Every outbound call is bounded by PROVIDER_TIMEOUT_SECONDS and is not
retried; Stripe errors surface as BillingProviderError.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from scribe.core.config import Settings, settings
from scribe.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    ProviderCheckoutSession,
    ProviderSubscription,
)


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
SIGNATURE_TOLERANCE_SECONDS = 300


def get_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or plain dict; missing keys give default."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def object_id(value: Any) -> Optional[str]:
    """Expandable fields arrive either as an id string or as the expanded object."""
    if value is None or isinstance(value, str):
        return value
    return get_field(value, "id")


def _timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _metadata(obj: Any) -> Dict[str, str]:
    raw = get_field(obj, "metadata", {})
    if hasattr(raw, "to_dict"):
        raw = raw.to_dict()
    return {str(k): str(v) for k, v in dict(raw).items()}


def to_checkout_session(obj: Any) -> ProviderCheckoutSession:
    """Normalize a Stripe checkout session (object or webhook dict)."""
    customer_details = get_field(obj, "customer_details")
    return ProviderCheckoutSession(
        session_id=get_field(obj, "id"),
        url=get_field(obj, "url"),
        payment_status=get_field(obj, "payment_status"),
        customer_id=object_id(get_field(obj, "customer")),
        subscription_id=object_id(get_field(obj, "subscription")),
        customer_email=get_field(obj, "customer_email") or get_field(customer_details, "email"),
        metadata=_metadata(obj),
    )


def to_subscription(obj: Any) -> ProviderSubscription:
    """
    Normalize a Stripe subscription (object or webhook dict).

    Newer API versions moved the period bounds onto the subscription items,
    so fall back to the first item when the top-level fields are absent.
    """
    items = get_field(get_field(obj, "items"), "data", [])
    first_item = items[0] if items else None
    period_start = get_field(obj, "current_period_start") or get_field(first_item, "current_period_start")
    period_end = get_field(obj, "current_period_end") or get_field(first_item, "current_period_end")
    return ProviderSubscription(
        subscription_id=get_field(obj, "id"),
        customer_id=object_id(get_field(obj, "customer")),
        status=get_field(obj, "status"),
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        cancel_at_period_end=bool(get_field(obj, "cancel_at_period_end", False)),
        metadata=_metadata(obj),
    )


class StripeBillingProvider:
    """Stripe implementation of the BillingProvider protocol."""

    enabled = True

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        cfg: Optional[Settings] = None,
    ):
        cfg = cfg or settings
        self.secret_key = secret_key or cfg.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or cfg.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key
        if cfg.STRIPE_API_VERSION:
            stripe.api_version = cfg.STRIPE_API_VERSION
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=cfg.PROVIDER_TIMEOUT_SECONDS)

    def create_customer(
        self,
        email: Optional[str] = None,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        customer_data: Dict[str, Any] = {"metadata": metadata or {}}
        if email:
            customer_data["email"] = email
        if name:
            customer_data["name"] = name
        try:
            customer = stripe.Customer.create(**customer_data)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}") from e
        return customer.id

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
        allow_promotion_codes: bool = False,
    ) -> ProviderCheckoutSession:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
            "subscription_data": {"metadata": metadata or {}},
        }
        if allow_promotion_codes:
            params["allow_promotion_codes"] = True
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}") from e
        return to_checkout_session(session)

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}") from e
        return session.url

    def retrieve_checkout_session(self, session_id: str) -> ProviderCheckoutSession:
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session lookup failed: {e}") from e
        return to_checkout_session(session)

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}") from e
        return to_subscription(subscription)

    def update_customer_metadata(self, customer_id: str, metadata: Dict[str, str]) -> None:
        try:
            stripe.Customer.modify(customer_id, metadata=metadata)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer update failed: {e}") from e

    def verify_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        """Verify the Stripe-Signature header against the raw body, then decode it."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        lowered = {k.lower(): v for k, v in headers.items()}
        sig_header = lowered.get(SIGNATURE_HEADER)
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            payload = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload, sig_header, self.webhook_secret, SIGNATURE_TOLERANCE_SECONDS
            )
            event = json.loads(payload)
        except UnicodeDecodeError as e:
            raise BillingWebhookError(f"Invalid payload encoding: {e}") from e
        except stripe.SignatureVerificationError as e:
            logger.warning("billing.webhook.signature_invalid", extra={"error": str(e)})
            raise BillingWebhookError("Invalid signature") from e
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}") from e

        if not isinstance(event, dict) or "id" not in event or "type" not in event:
            raise BillingWebhookError("Invalid payload: not a Stripe event")
        return event
