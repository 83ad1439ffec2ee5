"""
scribe/features/usage/service.py

Usage metering service.

Handles:
- Note and metered-operation quota checks
- Strict reservations on a per-month counter (QUOTA_ENFORCEMENT=strict)
- Usage recording with cost, and monthly usage queries
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Dict, Optional, Union

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scribe.core.config import settings
from scribe.core.database import (
    get_db_session,
    new_id,
    notes,
    session_scope,
    usage_counters,
    usage_records,
    utc_now,
)
from scribe.core.errors import PersistenceError, QuotaExceededError, ValidationError
from scribe.features.entitlements.service import resolve_plan
from scribe.models.plan import UNLIMITED
from scribe.models.usage_record import QuotaCheck, UsageOperation, UsageRecord


logger = logging.getLogger(__name__)

STRICT = "strict"
ADVISORY = "advisory"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def month_start(now: Optional[datetime] = None) -> datetime:
    """
    First instant of the current calendar month on the server's local clock,
    expressed in UTC for queries.
    """
    local = (now or datetime.now(timezone.utc)).astimezone()
    first = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return first.astimezone(timezone.utc)


def _count_operations(user_id: str, operation: UsageOperation, since: datetime, session: Session) -> int:
    return session.execute(
        select(func.count())
        .select_from(usage_records)
        .where(usage_records.c.user_id == user_id)
        .where(usage_records.c.operation == operation.value)
        .where(usage_records.c.created_at >= since)
    ).scalar() or 0


def check_note_quota(user_id: str) -> QuotaCheck:
    """Compare the user's live note count against the plan's note limit."""
    with get_db_session() as session:
        limit = resolve_plan(user_id, session=session).features.note_limit
        used = session.execute(
            select(func.count())
            .select_from(notes)
            .where(notes.c.user_id == user_id)
            .where(notes.c.deleted_at.is_(None))
        ).scalar() or 0
    return QuotaCheck(allowed=limit == UNLIMITED or used < limit, used=used, limit=limit)


def check_operation_quota(
    user_id: str,
    operation: Union[UsageOperation, str] = UsageOperation.OCR,
    now: Optional[datetime] = None,
) -> QuotaCheck:
    """
    Count this month's records of an operation against the monthly limit.

    Advisory only: a concurrent request can pass the same check. Use
    reserve_operation where the limit must hold under concurrency.
    """
    operation = UsageOperation(operation)
    with get_db_session() as session:
        limit = resolve_plan(user_id, session=session).features.monthly_conversion_limit
        used = _count_operations(user_id, operation, month_start(now), session)
    return QuotaCheck(allowed=limit == UNLIMITED or used < limit, used=used, limit=limit)


def _quota_exceeded(operation: UsageOperation, used: int, limit: int) -> QuotaExceededError:
    return QuotaExceededError(
        f"Monthly {operation.value} limit reached ({used}/{limit}). Upgrade to Pro for unlimited usage.",
        used=used,
        limit=limit,
    )


def _seed_counter(user_id: str, operation: UsageOperation, period_start: datetime) -> None:
    """Create this month's counter row from the records already written."""
    try:
        with get_db_session() as session:
            exists = session.execute(
                select(usage_counters.c.count)
                .where(usage_counters.c.user_id == user_id)
                .where(usage_counters.c.usage_key == operation.value)
                .where(usage_counters.c.period_start == period_start)
            ).first()
            if exists:
                return
            session.execute(
                insert(usage_counters).values(
                    user_id=user_id,
                    usage_key=operation.value,
                    period_start=period_start,
                    count=_count_operations(user_id, operation, period_start, session),
                    updated_at=utc_now(),
                )
            )
    except PersistenceError as exc:
        # Lost the race to seed; the winner's row is the one we want
        if not isinstance(exc.__cause__, IntegrityError):
            raise


def reserve_operation(
    user_id: str,
    operation: Union[UsageOperation, str] = UsageOperation.OCR,
    now: Optional[datetime] = None,
) -> QuotaCheck:
    """
    Claim one slot of the monthly limit before running a metered operation.

    In strict mode the claim is a single conditional increment, so
    concurrent callers can never push the count past the limit. In
    advisory mode this is check_operation_quota that raises on denial.

    Raises:
        QuotaExceededError: If no slot is available
    """
    operation = UsageOperation(operation)
    if settings.QUOTA_ENFORCEMENT != STRICT:
        check = check_operation_quota(user_id, operation, now=now)
        if not check.allowed:
            raise _quota_exceeded(operation, check.used, check.limit)
        return check

    limit = resolve_plan(user_id).features.monthly_conversion_limit
    if limit == UNLIMITED:
        return QuotaCheck(allowed=True, used=0, limit=UNLIMITED)

    period_start = month_start(now)
    _seed_counter(user_id, operation, period_start)

    key = (
        (usage_counters.c.user_id == user_id)
        & (usage_counters.c.usage_key == operation.value)
        & (usage_counters.c.period_start == period_start)
    )
    with get_db_session() as session:
        result = session.execute(
            update(usage_counters)
            .where(key)
            .where(usage_counters.c.count < limit)
            .values(count=usage_counters.c.count + 1, updated_at=utc_now())
        )
        reserved = result.rowcount > 0
        used = session.execute(select(usage_counters.c.count).where(key)).scalar() or 0

    if not reserved:
        logger.info(
            "[usage] reservation denied",
            extra={"user_id": user_id, "operation": operation.value, "used": used, "limit": limit},
        )
        raise _quota_exceeded(operation, used, limit)
    return QuotaCheck(allowed=True, used=used, limit=limit)


def release_operation(
    user_id: str,
    operation: Union[UsageOperation, str] = UsageOperation.OCR,
    now: Optional[datetime] = None,
) -> None:
    """Give back a slot claimed by reserve_operation when the operation failed."""
    operation = UsageOperation(operation)
    if settings.QUOTA_ENFORCEMENT != STRICT:
        return
    with get_db_session() as session:
        session.execute(
            update(usage_counters)
            .where(usage_counters.c.user_id == user_id)
            .where(usage_counters.c.usage_key == operation.value)
            .where(usage_counters.c.period_start == month_start(now))
            .where(usage_counters.c.count > 0)
            .values(count=usage_counters.c.count - 1, updated_at=utc_now())
        )


def record_usage(
    user_id: str,
    operation: Union[UsageOperation, str],
    tokens_used: int,
    cost: Decimal,
    note_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    occurred_at: Optional[datetime] = None,
) -> Optional[UsageRecord]:
    """
    Append a usage record for a completed metered operation.

    Storage failures are logged and swallowed: the operation already ran
    and the caller has a result to return.

    Returns:
        The record, or None if it could not be stored

    Raises:
        ValidationError: If tokens_used or cost is negative
    """
    operation = UsageOperation(operation)
    if tokens_used < 0:
        raise ValidationError(f"tokens_used must be >= 0, got {tokens_used}")
    cost = Decimal(cost)
    if cost < 0:
        raise ValidationError(f"cost must be >= 0, got {cost}")

    created_at = _as_utc(occurred_at) if occurred_at else utc_now()
    record = UsageRecord(
        id=new_id(),
        user_id=user_id,
        note_id=note_id,
        operation=operation,
        tokens_used=tokens_used,
        cost=cost,
        metadata=metadata,
        created_at=created_at,
    )
    try:
        with get_db_session() as session:
            session.execute(
                insert(usage_records).values(
                    id=record.id,
                    user_id=user_id,
                    note_id=note_id,
                    operation=operation.value,
                    tokens_used=tokens_used,
                    cost=cost,
                    metadata=metadata,
                    created_at=created_at,
                )
            )
    except PersistenceError:
        logger.error(
            "[usage] failed to record usage",
            exc_info=True,
            extra={"user_id": user_id, "operation": operation.value, "tokens_used": tokens_used},
        )
        return None
    return record


def get_monthly_usage(user_id: str, now: Optional[datetime] = None, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Aggregate this month's usage.

    Returns:
        {"total", "total_tokens", "total_cost", "by_operation": {operation: count}}
    """
    since = month_start(now)
    with session_scope(session) as s:
        rows = s.execute(
            select(
                usage_records.c.operation,
                func.count().label("count"),
                func.coalesce(func.sum(usage_records.c.tokens_used), 0).label("tokens"),
                func.coalesce(func.sum(usage_records.c.cost), 0).label("cost"),
            )
            .where(usage_records.c.user_id == user_id)
            .where(usage_records.c.created_at >= since)
            .group_by(usage_records.c.operation)
        ).all()

    by_operation = {row.operation: row.count for row in rows}
    return {
        "total": sum(by_operation.values()),
        "total_tokens": sum(int(row.tokens) for row in rows),
        "total_cost": sum((Decimal(str(row.cost)) for row in rows), Decimal("0")),
        "by_operation": by_operation,
    }


def get_user_stats(user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Notes, this month's usage and the resolved plan for the usage dashboard."""
    resolved = resolve_plan(user_id)
    note_quota = check_note_quota(user_id)
    return {
        "notes": {"used": note_quota.used, "limit": note_quota.limit},
        "monthly_usage": get_monthly_usage(user_id, now=now),
        "plan": resolved.plan_type.value,
        "features": resolved.features.model_dump(mode="json"),
    }
