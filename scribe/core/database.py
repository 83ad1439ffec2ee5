"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (SQLite with a static pool)
- Table definitions shared by every feature
"""
from typing import Optional
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import uuid

from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Text,
    Numeric,
    Index,
    ForeignKey,
    UniqueConstraint,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session

from scribe.core.config import settings
from scribe.core.errors import PersistenceError


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def utc_now() -> datetime:
    """Timezone-aware UTC now for column defaults."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings.

    For testing, TEST_DATABASE_URL wins when set.
    """
    return settings.TEST_DATABASE_URL or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits on clean exit, rolls back on error. Storage-layer failures
    surface as PersistenceError so callers never see driver exceptions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError(f"Storage operation failed: {exc}") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(session: Optional[Session] = None):
    """
    Join the caller's session when given one, otherwise open a new one.

    Lets feature functions compose into a single transaction.
    """
    if session is not None:
        yield session
        return
    with get_db_session() as own_session:
        yield own_session


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, ValueError) as e:
        logger.warning("Database connection check failed", extra={"error": str(e)})
        return False


# Users (owned by the auth collaborator; role mirrors the resolved tier)
users = Table(
    'users',
    metadata,
    Column('user_id', String(64), primary_key=True, default=new_id),
    Column('email', String(255), nullable=False, unique=True),
    Column('name', Text, nullable=True),
    Column('role', String(20), nullable=False, default='USER'),
    Column('created_at', DateTime(timezone=True), nullable=False, default=utc_now),
    Index('idx_users_created_at', 'created_at'),
)

# Notes (owned by the notes collaborator; only counted here)
notes = Table(
    'notes',
    metadata,
    Column('note_id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(64), ForeignKey('users.user_id'), nullable=False),
    Column('title', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False, default=utc_now),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    Index('idx_notes_user_deleted', 'user_id', 'deleted_at'),
)

# Subscription ledger: one row per version, current = latest non-tombstoned
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(64), ForeignKey('users.user_id'), nullable=False),
    Column('version', Integer, nullable=False),
    Column('plan_type', String(10), nullable=False, default='FREE'),
    Column('status', String(20), nullable=False, default='ACTIVE'),
    Column('stripe_customer_id', String(255), nullable=True),
    Column('stripe_subscription_id', String(255), nullable=True, unique=True),
    Column('current_period_start', DateTime(timezone=True), nullable=True),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, default=False),
    Column('created_at', DateTime(timezone=True), nullable=False, default=utc_now),
    Column('updated_at', DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now),
    Column('deleted_at', DateTime(timezone=True), nullable=True),
    UniqueConstraint('user_id', 'version', name='uq_subscriptions_user_version'),
    Index('idx_subscriptions_user_current', 'user_id', 'deleted_at', 'version'),
    Index('idx_subscriptions_customer', 'stripe_customer_id'),
)

# Metered AI operations (immutable)
usage_records = Table(
    'usage_records',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(64), ForeignKey('users.user_id'), nullable=False),
    Column('note_id', String(36), nullable=True),
    Column('operation', String(20), nullable=False),
    Column('tokens_used', Integer, nullable=False, default=0),
    Column('cost', Numeric(14, 8), nullable=False, default=0),
    Column('metadata', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False, default=utc_now),
    Index('idx_usage_records_user_op_created', 'user_id', 'operation', 'created_at'),
)

# Per-period reservation counters for strict quota enforcement
usage_counters = Table(
    'usage_counters',
    metadata,
    Column('user_id', String(64), ForeignKey('users.user_id'), primary_key=True),
    Column('usage_key', String(50), primary_key=True),
    Column('period_start', DateTime(timezone=True), primary_key=True),
    Column('count', Integer, nullable=False, default=0),
    Column('updated_at', DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now),
)

# Payment history (append-only, written by invoice events)
payment_records = Table(
    'payment_records',
    metadata,
    Column('id', String(36), primary_key=True, default=new_id),
    Column('user_id', String(64), ForeignKey('users.user_id'), nullable=False),
    Column('stripe_payment_id', String(255), nullable=False, unique=True),
    Column('amount', Numeric(12, 2), nullable=False),
    Column('currency', String(10), nullable=False),
    Column('plan_type', String(10), nullable=False),
    Column('status', String(20), nullable=False),
    Column('metadata', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False, default=utc_now),
    Index('idx_payment_records_user_created', 'user_id', 'created_at'),
)

# Checkout sessions issued before the buyer had an account
pending_guest_checkouts = Table(
    'pending_guest_checkouts',
    metadata,
    Column('session_id', String(255), primary_key=True),
    Column('email', String(255), nullable=False),
    Column('plan_type', String(10), nullable=False),
    Column('billing_cycle', String(20), nullable=False),
    Column('stripe_customer_id', String(255), nullable=True),
    Column('stripe_subscription_id', String(255), nullable=True),
    Column('status', String(20), nullable=False, default='pending'),  # pending | completed | linked
    Column('linked_user_id', String(64), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False, default=utc_now),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('linked_at', DateTime(timezone=True), nullable=True),
    Index('idx_pending_guest_checkouts_email', 'email'),
)

# Provider webhook events (idempotency ledger)
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(255), nullable=False, unique=True),
    Column('event_type', String(100), nullable=False),
    Column('payload_hash', String(64), nullable=False),
    Column('processed', Boolean, nullable=False, default=False),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False, default=utc_now),
    Index('idx_billing_events_type', 'event_type'),
)
