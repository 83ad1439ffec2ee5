"""
Test usage quotas and recording.

Covers note and operation limits, month rollover, strict reservations
and the swallow-on-failure recording path.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, insert, select, func
from sqlalchemy.orm import sessionmaker

from scribe.core import database
from scribe.core.database import get_db_session, new_id, notes, usage_counters, usage_records, utc_now
from scribe.core.errors import PersistenceError, QuotaExceededError, ValidationError
from scribe.features.usage.service import (
    check_note_quota,
    check_operation_quota,
    get_monthly_usage,
    get_user_stats,
    month_start,
    record_usage,
    release_operation,
    reserve_operation,
)
from scribe.models.plan import UNLIMITED
from scribe.tests.fakes import create_account, create_pro_account


JAN_15 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
JAN_20 = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)
FEB_15 = datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc)


def _record_ocr(user_id, count, occurred_at=None):
    for _ in range(count):
        record_usage(user_id, "ocr", 100, Decimal("0.001"), occurred_at=occurred_at)


def _add_notes(user_id, count, deleted=0):
    with get_db_session() as session:
        for i in range(count + deleted):
            session.execute(
                insert(notes).values(
                    note_id=new_id(),
                    user_id=user_id,
                    title=f"note {i}",
                    deleted_at=utc_now() if i >= count else None,
                )
            )


def test_month_start_is_first_of_local_month():
    start = month_start(JAN_20)
    local = start.astimezone()

    assert start.tzinfo == timezone.utc
    assert local.day == 1
    assert (local.hour, local.minute, local.second) == (0, 0, 0)
    assert start <= JAN_20


def test_operation_quota_allows_below_limit():
    user_id = create_account()
    _record_ocr(user_id, 9, occurred_at=JAN_15)

    check = check_operation_quota(user_id, "ocr", now=JAN_20)

    assert check.allowed is True
    assert (check.used, check.limit) == (9, 10)


def test_operation_quota_blocks_at_limit():
    user_id = create_account()
    _record_ocr(user_id, 10, occurred_at=JAN_15)

    check = check_operation_quota(user_id, "ocr", now=JAN_20)

    assert check.model_dump() == {"allowed": False, "used": 10, "limit": 10}


def test_operation_quota_resets_after_month_rollover():
    user_id = create_account()
    _record_ocr(user_id, 10, occurred_at=JAN_15)

    check = check_operation_quota(user_id, "ocr", now=FEB_15)

    assert check.model_dump() == {"allowed": True, "used": 0, "limit": 10}


def test_operation_quota_only_counts_that_operation():
    user_id = create_account()
    _record_ocr(user_id, 10, occurred_at=JAN_15)
    record_usage(user_id, "title", 10, Decimal("0"), occurred_at=JAN_15)

    assert check_operation_quota(user_id, "title", now=JAN_20).used == 1


def test_pro_operation_quota_is_unlimited():
    user_id = create_pro_account()
    _record_ocr(user_id, 25, occurred_at=JAN_15)

    check = check_operation_quota(user_id, "ocr", now=JAN_20)

    assert check.allowed is True
    assert check.limit == UNLIMITED


def test_note_quota_counts_live_notes_only():
    user_id = create_account()
    _add_notes(user_id, 19, deleted=3)

    check = check_note_quota(user_id)

    assert check.allowed is True
    assert (check.used, check.limit) == (19, 20)


def test_note_quota_blocks_at_limit():
    user_id = create_account()
    _add_notes(user_id, 20)

    assert check_note_quota(user_id).allowed is False


def test_pro_note_quota_is_unlimited():
    user_id = create_pro_account()
    _add_notes(user_id, 50)

    check = check_note_quota(user_id)

    assert check.allowed is True
    assert check.limit == UNLIMITED


class TestStrictReservations:
    def test_reservations_stop_at_limit(self):
        user_id = create_account()

        for _ in range(10):
            reserve_operation(user_id, "ocr")

        with pytest.raises(QuotaExceededError) as exc_info:
            reserve_operation(user_id, "ocr")

        assert exc_info.value.used == 10
        assert exc_info.value.limit == 10

    def test_reservations_start_from_recorded_usage(self):
        user_id = create_account()
        _record_ocr(user_id, 8)

        reserve_operation(user_id, "ocr")
        check = reserve_operation(user_id, "ocr")

        assert check.used == 10
        with pytest.raises(QuotaExceededError):
            reserve_operation(user_id, "ocr")

    def test_release_returns_a_slot(self):
        user_id = create_account()
        for _ in range(10):
            reserve_operation(user_id, "ocr")

        release_operation(user_id, "ocr")

        assert reserve_operation(user_id, "ocr").used == 10

    def test_pro_reservations_are_unlimited(self):
        user_id = create_pro_account()

        for _ in range(15):
            check = reserve_operation(user_id, "ocr")

        assert check.limit == UNLIMITED

    def test_advisory_mode_checks_records(self, test_settings, monkeypatch):
        monkeypatch.setattr(test_settings, "QUOTA_ENFORCEMENT", "advisory")
        user_id = create_account()
        _record_ocr(user_id, 10)

        with pytest.raises(QuotaExceededError):
            reserve_operation(user_id, "ocr")


def test_record_usage_persists_record():
    user_id = create_account()

    record = record_usage(user_id, "summarize", 1000, Decimal("0.000285"), note_id="note-1", metadata={"model": "m"})

    assert record is not None
    with get_db_session() as session:
        row = session.execute(select(usage_records).where(usage_records.c.id == record.id)).first()
    assert row.operation == "summarize"
    assert row.tokens_used == 1000
    assert row.note_id == "note-1"
    assert row._mapping["metadata"] == {"model": "m"}


def test_record_usage_swallows_storage_failures():
    with patch("scribe.features.usage.service.get_db_session", side_effect=PersistenceError("db down")):
        result = record_usage("user-1", "ocr", 10, Decimal("0.01"))

    assert result is None


def test_record_usage_rejects_negative_values():
    with pytest.raises(ValidationError):
        record_usage("user-1", "ocr", -1, Decimal("0"))
    with pytest.raises(ValidationError):
        record_usage("user-1", "ocr", 1, Decimal("-0.01"))


def test_monthly_usage_aggregates_current_month():
    user_id = create_account()
    _record_ocr(user_id, 2, occurred_at=JAN_15)
    record_usage(user_id, "title", 50, Decimal("0.0001"), occurred_at=JAN_15)
    record_usage(user_id, "title", 50, Decimal("0.0001"), occurred_at=JAN_15 - timedelta(days=40))

    usage = get_monthly_usage(user_id, now=JAN_20)

    assert usage["total"] == 3
    assert usage["total_tokens"] == 250
    assert usage["total_cost"].quantize(Decimal("0.00000001")) == Decimal("0.0021")
    assert usage["by_operation"] == {"ocr": 2, "title": 1}


def test_user_stats_reports_notes_usage_and_plan():
    user_id = create_account()
    _add_notes(user_id, 3)
    _record_ocr(user_id, 1, occurred_at=JAN_15)

    stats = get_user_stats(user_id, now=JAN_20)

    assert stats["notes"] == {"used": 3, "limit": 20}
    assert stats["monthly_usage"]["total"] == 1
    assert stats["plan"] == "FREE"
    assert stats["features"]["ai_features"] is False


@pytest.fixture
def pooled_engine(tmp_path, db_url, monkeypatch):
    """
    Engine with a connection per thread.

    The default in-memory SQLite engine shares one connection, so
    concurrent sessions there would not be independent transactions.
    """
    if not db_url.startswith("sqlite"):
        yield database.get_engine()
        return

    pooled = create_engine(
        f"sqlite:///{tmp_path / 'quota.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    database.metadata.create_all(bind=pooled)
    monkeypatch.setattr(database, "_engine", pooled)
    monkeypatch.setattr(database, "_SessionLocal", sessionmaker(autoflush=False, bind=pooled))
    yield pooled
    pooled.dispose()


def test_concurrent_reservations_never_exceed_limit(pooled_engine):
    user_id = create_account()
    workers = 25
    barrier = threading.Barrier(workers)

    def attempt(_):
        barrier.wait()
        try:
            reserve_operation(user_id, "ocr")
            return True
        except QuotaExceededError:
            return False

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(attempt, range(workers)))

    with get_db_session() as session:
        counted = session.execute(
            select(usage_counters.c.count).where(usage_counters.c.user_id == user_id)
        ).scalar()
    assert outcomes.count(True) == 10
    assert outcomes.count(False) == workers - 10
    assert counted == 10
