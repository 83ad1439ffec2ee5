"""
scribe/features/users/service.py

Account records as seen by billing.

Handles:
- Lookups by id and by email
- Creating the account row at registration
- Mirroring the resolved tier onto the user's role
"""

import logging
from typing import Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import Session

from scribe.core.database import new_id, session_scope, users, utc_now
from scribe.models.user import User, UserRole


logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_user(row) -> User:
    return User(
        user_id=row.user_id,
        email=row.email,
        name=row.name,
        role=row.role,
        created_at=row.created_at,
    )


def get_user(user_id: str, session: Optional[Session] = None) -> Optional[User]:
    with session_scope(session) as s:
        row = s.execute(select(users).where(users.c.user_id == user_id)).first()
        return _to_user(row) if row else None


def get_user_by_email(email: str, session: Optional[Session] = None) -> Optional[User]:
    with session_scope(session) as s:
        row = s.execute(
            select(users).where(func.lower(users.c.email) == normalize_email(email))
        ).first()
        return _to_user(row) if row else None


def create_user(email: str, name: Optional[str] = None, session: Optional[Session] = None) -> User:
    user_id = new_id()
    with session_scope(session) as s:
        s.execute(
            insert(users).values(
                user_id=user_id,
                email=normalize_email(email),
                name=name,
                role=UserRole.USER.value,
                created_at=utc_now(),
            )
        )
        return get_user(user_id, session=s)


def set_role(user_id: str, role: UserRole, session: Optional[Session] = None) -> bool:
    """Set the user's role. Returns False when the user does not exist."""
    with session_scope(session) as s:
        result = s.execute(
            update(users).where(users.c.user_id == user_id).values(role=UserRole(role).value)
        )
        updated = result.rowcount > 0
    if not updated:
        logger.warning("users.role.unknown_user", extra={"user_id": user_id, "role": UserRole(role).value})
        return False
    return True
