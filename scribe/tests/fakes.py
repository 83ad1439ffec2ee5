"""
In-memory stand-ins for the payment and completion providers, plus
helpers for building signed Stripe webhook payloads.
"""
import hashlib
import hmac
import itertools
import json
import time
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from scribe.features.ai.provider import Completion, CompletionProviderError
from scribe.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    ProviderCheckoutSession,
    ProviderSubscription,
)
from scribe.features.subscriptions import ledger
from scribe.features.users.service import create_user
from scribe.models.plan import PlanType
from scribe.models.subscription import SubscriptionStatus


WEBHOOK_SECRET = "whsec_test_secret"


class FakeBillingProvider:
    """Records every call; lookups fail on demand."""

    enabled = True

    def __init__(self):
        self._ids = itertools.count(1)
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.checkout_sessions: Dict[str, ProviderCheckoutSession] = {}
        self.checkout_calls: List[Dict[str, Any]] = []
        self.subscriptions: Dict[str, ProviderSubscription] = {}
        self.portal_calls: List[Dict[str, str]] = []
        self.fail_lookups = False
        self.reject_signatures = False

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def create_customer(self, email=None, name=None, metadata=None) -> str:
        customer_id = self._next_id("cus_test")
        self.customers[customer_id] = {"email": email, "name": name, "metadata": dict(metadata or {})}
        return customer_id

    def create_checkout_session(
        self,
        *,
        customer_id,
        price_id,
        success_url,
        cancel_url,
        metadata=None,
        allow_promotion_codes=False,
    ) -> ProviderCheckoutSession:
        session_id = self._next_id("cs_test")
        session = ProviderCheckoutSession(
            session_id=session_id,
            url=f"https://checkout.stripe.test/{session_id}",
            payment_status="unpaid",
            customer_id=customer_id,
            customer_email=self.customers.get(customer_id, {}).get("email"),
            metadata=dict(metadata or {}),
        )
        self.checkout_sessions[session_id] = session
        self.checkout_calls.append(
            {
                "customer_id": customer_id,
                "price_id": price_id,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": dict(metadata or {}),
                "allow_promotion_codes": allow_promotion_codes,
            }
        )
        return session

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        self.portal_calls.append({"customer_id": customer_id, "return_url": return_url})
        return f"https://billing.stripe.test/{customer_id}"

    def retrieve_checkout_session(self, session_id: str) -> ProviderCheckoutSession:
        if self.fail_lookups:
            raise BillingProviderError("Stripe checkout session lookup failed: timeout")
        try:
            return self.checkout_sessions[session_id]
        except KeyError:
            raise BillingProviderError(f"No such checkout.session: {session_id}")

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        if self.fail_lookups:
            raise BillingProviderError("Stripe subscription lookup failed: timeout")
        try:
            return self.subscriptions[subscription_id]
        except KeyError:
            raise BillingProviderError(f"No such subscription: {subscription_id}")

    def update_customer_metadata(self, customer_id: str, metadata: Dict[str, str]) -> None:
        self.customers.setdefault(customer_id, {"metadata": {}})["metadata"].update(metadata)

    def verify_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        if self.reject_signatures:
            raise BillingWebhookError("Invalid signature")
        return json.loads(body)

    def pay_checkout(self, session_id: str, status: str = "active") -> ProviderCheckoutSession:
        """Simulate the buyer paying: the session gets a subscription."""
        session = self.checkout_sessions[session_id]
        subscription_id = self._next_id("sub_test")
        now = datetime.now(timezone.utc).replace(microsecond=0)
        self.subscriptions[subscription_id] = ProviderSubscription(
            subscription_id=subscription_id,
            customer_id=session.customer_id,
            status=status,
            current_period_start=now,
            current_period_end=now + timedelta(days=30),
        )
        paid = replace(session, payment_status="paid", subscription_id=subscription_id)
        self.checkout_sessions[session_id] = paid
        return paid


class FakeCompletionProvider:
    enabled = True

    def __init__(self, text: str = "completed text", tokens_used: int = 1000, error: Optional[Exception] = None):
        self.text = text
        self.tokens_used = tokens_used
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, *, model, temperature=0.3, max_tokens=None) -> Completion:
        self.calls.append({"messages": messages, "model": model, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, tokens_used=self.tokens_used)

    def fail_with(self, message: str = "Groq completion failed: timeout"):
        self.error = CompletionProviderError(message)


def make_event(event_type: str, obj: Dict[str, Any], event_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def checkout_completed_event(session: ProviderCheckoutSession, event_id: Optional[str] = None) -> Dict[str, Any]:
    return make_event(
        "checkout.session.completed",
        {
            "id": session.session_id,
            "object": "checkout.session",
            "payment_status": session.payment_status,
            "customer": session.customer_id,
            "subscription": session.subscription_id,
            "customer_email": session.customer_email,
            "metadata": dict(session.metadata),
        },
        event_id=event_id,
    )


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header value for a raw payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def create_account(email: str = "user@example.com", name: Optional[str] = None) -> str:
    return create_user(email, name=name).user_id


def create_pro_account(
    email: str = "pro@example.com",
    stripe_subscription_id: str = "sub_existing",
    stripe_customer_id: str = "cus_existing",
) -> str:
    user_id = create_account(email)
    ledger.append_version(
        user_id,
        plan_type=PlanType.PRO,
        status=SubscriptionStatus.ACTIVE,
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
    )
    return user_id
