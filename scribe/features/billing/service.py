"""
Billing service orchestrator.

Coordinates:
- Provider selection (Stripe when configured, disabled otherwise)
- Webhook processing with per-event idempotency
- The billing summary shown to a user

All Stripe-specific code is in stripe_provider.py.
"""
import hashlib
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from scribe.core.config import settings
from scribe.core.database import billing_events, get_db_session, payment_records, utc_now
from scribe.core.logging import log_event
from scribe.features.billing.events import parse_event
from scribe.features.billing.provider import BillingProvider, DisabledBillingProvider
from scribe.features.billing.state_machine import apply_event
from scribe.features.billing.stripe_provider import StripeBillingProvider
from scribe.features.entitlements.service import resolve_plan
from scribe.features.subscriptions.ledger import get_current_subscription
from scribe.models.payment_record import PaymentRecord


logger = logging.getLogger(__name__)

RECENT_PAYMENTS_LIMIT = 10

DUPLICATE = "duplicate"


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_billing_provider() -> BillingProvider:
    """FastAPI dependency: the configured billing provider, or the disabled stand-in."""
    if not billing_enabled():
        return DisabledBillingProvider()
    return StripeBillingProvider()


def process_webhook_event(
    headers: Dict[str, str],
    body: bytes,
    provider: Optional[BillingProvider] = None,
) -> Dict[str, Any]:
    """
    Process billing webhook event (idempotent).

    1. Verify signature
    2. Check idempotency (skip if already processed)
    3. Parse event
    4. Apply state changes and mark processed in one transaction
    5. On failure, record the error so the redelivery is retried

    Returns:
        {"event_id", "event_type", "outcome"}

    Raises:
        BillingWebhookError: If signature invalid
        ConfigurationError: If billing is disabled
    """
    provider = provider or get_billing_provider()
    payload = provider.verify_webhook(headers, body)
    event = parse_event(payload)
    payload_hash = hashlib.sha256(body).hexdigest()

    with get_db_session() as session:
        existing = session.execute(
            select(billing_events.c.processed).where(billing_events.c.stripe_event_id == event.event_id)
        ).first()

        if existing and existing.processed:
            logger.info("billing.webhook.duplicate", extra={"event_id": event.event_id, "event_type": event.event_type})
            return {"event_id": event.event_id, "event_type": event.event_type, "outcome": DUPLICATE}

        if not existing:
            try:
                session.execute(
                    insert(billing_events).values(
                        stripe_event_id=event.event_id,
                        event_type=event.event_type,
                        payload_hash=payload_hash,
                        processed=False,
                        created_at=utc_now(),
                    )
                )
                session.commit()
            except IntegrityError:
                # Race: a concurrent delivery already recorded this event
                session.rollback()
                return {"event_id": event.event_id, "event_type": event.event_type, "outcome": DUPLICATE}

    try:
        with get_db_session() as session:
            outcome = apply_event(event, provider, session)
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == event.event_id)
                .values(processed=True, processed_at=utc_now(), error=None)
            )
    except Exception as e:
        logger.error(
            "billing.webhook.failed",
            exc_info=True,
            extra={"event_id": event.event_id, "event_type": event.event_type},
        )
        with get_db_session() as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == event.event_id)
                .values(error=str(e)[:2000])
            )
        raise

    log_event(
        "info",
        "billing.webhook.processed",
        event_type=event.event_type,
        extra={"event_id": event.event_id, "outcome": outcome},
    )
    return {"event_id": event.event_id, "event_type": event.event_type, "outcome": outcome}


def get_recent_payments(user_id: str, limit: int = RECENT_PAYMENTS_LIMIT) -> List[PaymentRecord]:
    with get_db_session() as session:
        rows = session.execute(
            select(payment_records)
            .where(payment_records.c.user_id == user_id)
            .order_by(payment_records.c.created_at.desc())
            .limit(limit)
        ).all()
        return [PaymentRecord(**row._mapping) for row in rows]


def get_billing_info(user_id: str) -> Dict[str, Any]:
    """
    Get user's billing summary.

    Returns:
        {
            "subscription": {...} | None,
            "plan": {"plan_type", "name", "price", "features"},
            "payments": [...]  (10 most recent)
        }
    """
    subscription = get_current_subscription(user_id)
    resolved = resolve_plan(user_id)

    summary = None
    if subscription:
        summary = {
            "plan_type": subscription.plan_type.value,
            "status": subscription.status.value,
            "current_period_start": subscription.current_period_start.isoformat() if subscription.current_period_start else None,
            "current_period_end": subscription.current_period_end.isoformat() if subscription.current_period_end else None,
            "cancel_at_period_end": subscription.cancel_at_period_end,
            "has_billing_account": bool(subscription.stripe_customer_id),
        }

    return {
        "subscription": summary,
        "plan": {
            "plan_type": resolved.plan_type.value,
            "name": resolved.plan.name,
            "price": resolved.plan.price,
            "features": resolved.features.model_dump(mode="json"),
        },
        "payments": [
            {
                **payment.model_dump(mode="json", include={"id", "stripe_payment_id", "currency", "plan_type", "status", "created_at"}),
                "amount": float(payment.amount),
            }
            for payment in get_recent_payments(user_id)
        ],
    }
