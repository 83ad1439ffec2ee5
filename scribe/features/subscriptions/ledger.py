"""
scribe/features/subscriptions/ledger.py

Versioned subscription ledger.

Every state change made by this service appends a new version row and
tombstones the earlier ones (deleted_at). The current subscription is the
latest version that is not tombstoned. The one exception is provider-driven
updates, which mutate the row identified by the provider subscription id.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select, insert, update, func
from sqlalchemy.orm import Session

from scribe.core.database import new_id, session_scope, subscriptions, utc_now
from scribe.models.plan import PlanType
from scribe.models.subscription import Subscription, SubscriptionStatus


def _to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        version=row.version,
        plan_type=row.plan_type,
        status=row.status,
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        cancel_at_period_end=bool(row.cancel_at_period_end),
        created_at=row.created_at,
        deleted_at=row.deleted_at,
    )


def get_current_subscription(user_id: str, session: Optional[Session] = None) -> Optional[Subscription]:
    """Latest non-tombstoned version for the user, or None."""
    with session_scope(session) as s:
        row = s.execute(
            select(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .where(subscriptions.c.deleted_at.is_(None))
            .order_by(subscriptions.c.version.desc(), subscriptions.c.created_at.desc())
            .limit(1)
        ).first()
        return _to_subscription(row) if row else None


def get_history(user_id: str, session: Optional[Session] = None) -> list[Subscription]:
    """All versions for the user, newest first."""
    with session_scope(session) as s:
        rows = s.execute(
            select(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .order_by(subscriptions.c.version.desc())
        ).all()
        return [_to_subscription(row) for row in rows]


def find_by_stripe_subscription_id(stripe_subscription_id: Optional[str], session: Optional[Session] = None) -> Optional[Subscription]:
    if not stripe_subscription_id:
        return None
    with session_scope(session) as s:
        row = s.execute(
            select(subscriptions).where(
                subscriptions.c.stripe_subscription_id == stripe_subscription_id
            )
        ).first()
        return _to_subscription(row) if row else None


def append_version(
    user_id: str,
    *,
    plan_type: PlanType,
    status: SubscriptionStatus,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    current_period_start: Optional[datetime] = None,
    current_period_end: Optional[datetime] = None,
    cancel_at_period_end: bool = False,
    session: Optional[Session] = None,
) -> Subscription:
    """
    Tombstone the user's live versions and insert a new one.

    Two writers racing on the same user collide on (user_id, version) and
    the loser's transaction fails instead of leaving two live rows.
    """
    now = utc_now()
    with session_scope(session) as s:
        latest_version = s.execute(
            select(func.max(subscriptions.c.version)).where(subscriptions.c.user_id == user_id)
        ).scalar()
        s.execute(
            update(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .where(subscriptions.c.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
        )
        subscription_id = new_id()
        s.execute(
            insert(subscriptions).values(
                id=subscription_id,
                user_id=user_id,
                version=(latest_version or 0) + 1,
                plan_type=PlanType(plan_type).value,
                status=SubscriptionStatus(status).value,
                stripe_customer_id=stripe_customer_id,
                stripe_subscription_id=stripe_subscription_id,
                current_period_start=current_period_start,
                current_period_end=current_period_end,
                cancel_at_period_end=cancel_at_period_end,
                created_at=now,
                updated_at=now,
            )
        )
        row = s.execute(
            select(subscriptions).where(subscriptions.c.id == subscription_id)
        ).first()
        return _to_subscription(row)


def update_by_stripe_subscription_id(
    stripe_subscription_id: str,
    session: Optional[Session] = None,
    **values: Any,
) -> Optional[Subscription]:
    """
    Mutate the row owned by a provider subscription in place.

    Returns the updated row, or None when no row carries that id.
    """
    for key in ("plan_type", "status"):
        if key in values and values[key] is not None:
            values[key] = getattr(values[key], "value", values[key])
    with session_scope(session) as s:
        result = s.execute(
            update(subscriptions)
            .where(subscriptions.c.stripe_subscription_id == stripe_subscription_id)
            .values(updated_at=utc_now(), **values)
        )
        if result.rowcount == 0:
            return None
        return find_by_stripe_subscription_id(stripe_subscription_id, session=s)


def get_customer_id(user_id: str, session: Optional[Session] = None) -> Optional[str]:
    """Provider customer linked to the user's current subscription, if any."""
    current = get_current_subscription(user_id, session=session)
    return current.stripe_customer_id if current else None
