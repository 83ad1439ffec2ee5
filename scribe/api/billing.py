"""
Billing API routes.

Surface:
- POST /api/billing/webhook: Handle Stripe webhooks
- POST /api/billing/checkout: Create checkout session (signed in)
- POST /api/billing/checkout-guest: Create checkout session (no account yet)
- POST /api/billing/portal: Create portal session
- GET  /api/billing/: Subscription summary, plan, recent payments

Errors are AppError subclasses rendered by the app-level handlers.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from scribe.core.auth import get_current_user_id
from scribe.features.billing import checkout
from scribe.features.billing.provider import BillingProvider
from scribe.features.billing.service import get_billing_info, get_billing_provider, process_webhook_event


router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    plan_type: str = "PRO"
    billing_cycle: str = "monthly"
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class GuestCheckoutRequest(BaseModel):
    plan_type: str = "PRO"
    billing_cycle: str = "monthly"
    email: str


class CheckoutResponse(BaseModel):
    """Response with checkout session id and redirect URL."""
    session_id: str
    url: str


class PortalRequest(BaseModel):
    return_url: Optional[str] = None


class PortalResponse(BaseModel):
    """Response with portal URL."""
    url: str


class WebhookResponse(BaseModel):
    received: bool
    event_id: str


class BillingInfoResponse(BaseModel):
    subscription: Optional[Dict[str, Any]]
    plan: Dict[str, Any]
    payments: List[Dict[str, Any]]


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(request: Request, provider: BillingProvider = Depends(get_billing_provider)):
    """
    Handle Stripe webhook events.

    The raw body is verified against the Stripe-Signature header before any
    event logic runs; a bad signature is a 401. Redelivered events that
    were already processed are acknowledged without being applied again.
    """
    body = await request.body()
    result = process_webhook_event(dict(request.headers), body, provider=provider)
    return {"received": True, "event_id": result["event_id"]}


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    payload: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    provider: BillingProvider = Depends(get_billing_provider),
):
    """
    Create Stripe checkout session.

    Errors:
        400: Invalid plan_type or billing_cycle
        401: Not signed in
        502: Stripe API error
        503: Billing disabled
    """
    session = checkout.create_checkout(
        user_id,
        payload.plan_type,
        payload.billing_cycle,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        provider=provider,
    )
    return {"session_id": session.session_id, "url": session.url}


@router.post("/checkout-guest", response_model=CheckoutResponse)
def create_guest_checkout(
    payload: GuestCheckoutRequest,
    provider: BillingProvider = Depends(get_billing_provider),
):
    """Create a checkout session for a buyer who has not registered yet."""
    session = checkout.create_guest_checkout(
        payload.email,
        payload.plan_type,
        payload.billing_cycle,
        provider=provider,
    )
    return {"session_id": session.session_id, "url": session.url}


@router.post("/portal", response_model=PortalResponse)
def create_portal(
    payload: Optional[PortalRequest] = None,
    user_id: str = Depends(get_current_user_id),
    provider: BillingProvider = Depends(get_billing_provider),
):
    """
    Create Stripe billing portal session.

    Errors:
        404: Customer not found (user never checked out)
        503: Billing disabled
    """
    url = checkout.create_portal_session(
        user_id,
        return_url=payload.return_url if payload else None,
        provider=provider,
    )
    return {"url": url}


@router.get("/", response_model=BillingInfoResponse)
def get_billing(user_id: str = Depends(get_current_user_id)):
    """Subscription summary, resolved plan and the 10 most recent payments."""
    return get_billing_info(user_id)
