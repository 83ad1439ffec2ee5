"""
Billing provider protocol.

Defines the interface the billing features need from a payment provider,
so business logic never touches a provider SDK directly. A disabled
implementation stands in when no provider is configured.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from scribe.core.errors import AuthenticationError, ConfigurationError, UpstreamProviderError


@dataclass(frozen=True)
class ProviderCheckoutSession:
    """Checkout session as reported by the provider."""
    session_id: str
    url: Optional[str] = None
    payment_status: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderSubscription:
    """Subscription as reported by the provider."""
    subscription_id: str
    customer_id: Optional[str]
    status: Optional[str]  # active, canceled, past_due, incomplete, ...
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    metadata: Dict[str, str] = field(default_factory=dict)


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer creation and metadata updates
    - Checkout and portal session creation
    - Checkout session and subscription lookups
    - Webhook signature verification
    """

    enabled: bool

    def create_customer(
        self,
        email: Optional[str] = None,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Create a billing customer.

        Returns:
            Provider customer ID

        Raises:
            BillingProviderError: If customer creation fails
        """
        ...

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
        """
        Create a subscription checkout session.

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a billing portal session for customer self-service.

        Returns:
            Portal session URL
        """
        ...

    def retrieve_checkout_session(self, session_id: str) -> ProviderCheckoutSession:
        ...

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        ...

    def update_customer_metadata(self, customer_id: str, metadata: Dict[str, str]) -> None:
        ...

    def verify_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        """
        Verify the webhook signature and decode the event.

        Args:
            headers: HTTP headers (must include the signature header)
            body: Raw webhook body, exactly as received

        Returns:
            The decoded event payload

        Raises:
            BillingWebhookError: If the signature or payload is invalid
        """
        ...


class BillingProviderError(UpstreamProviderError):
    """A call to the payment provider failed."""
    code = "billing_provider_error"


class BillingWebhookError(AuthenticationError):
    """Webhook signature or payload rejected."""
    code = "invalid_webhook_signature"


class DisabledBillingProvider:
    """Stand-in used when no payment provider is configured."""

    enabled = False

    def _unavailable(self, *args, **kwargs):
        raise ConfigurationError(
            "Billing is not configured. Set STRIPE_SECRET_KEY.",
            code="billing_disabled",
        )

    create_customer = _unavailable
    create_checkout_session = _unavailable
    create_portal_session = _unavailable
    retrieve_checkout_session = _unavailable
    retrieve_subscription = _unavailable
    update_customer_metadata = _unavailable
    verify_webhook = _unavailable
