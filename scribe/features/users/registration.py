"""
scribe/features/users/registration.py

Account registration as it concerns billing: every new account starts
with a subscription row, either the base plan or a paid guest checkout
bought before the account existed.
"""

import logging
from typing import Optional

from scribe.core.database import get_db_session
from scribe.core.errors import ValidationError
from scribe.features.billing.checkout import link_guest_checkout
from scribe.features.billing.provider import BillingProvider
from scribe.features.plans.service import BASE_PLAN_TYPE
from scribe.features.subscriptions import ledger
from scribe.features.users.service import create_user, get_user, get_user_by_email
from scribe.models.subscription import SubscriptionStatus
from scribe.models.user import User


logger = logging.getLogger(__name__)


def register_user(
    email: str,
    name: Optional[str] = None,
    checkout_session_id: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> User:
    """
    Create an account and its first subscription version.

    Raises:
        ValidationError: Missing email, or email already registered
    """
    if not email or not email.strip():
        raise ValidationError("Email is required", code="email_required")

    with get_db_session() as session:
        if get_user_by_email(email, session=session) is not None:
            raise ValidationError("Email already registered", code="email_taken")

        user = create_user(email, name=name, session=session)

        linked = None
        if checkout_session_id:
            linked = link_guest_checkout(user.user_id, checkout_session_id, provider=provider, session=session)

        if linked is None:
            ledger.append_version(
                user.user_id,
                plan_type=BASE_PLAN_TYPE,
                status=SubscriptionStatus.ACTIVE,
                session=session,
            )

        logger.info(
            "users.registered",
            extra={"user_id": user.user_id, "plan_type": linked.plan_type.value if linked else BASE_PLAN_TYPE.value},
        )
        return get_user(user.user_id, session=session)
