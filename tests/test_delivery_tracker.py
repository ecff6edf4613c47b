"""
Tests for vaisync/services/delivery_tracker.py - backoff table, failure and
success bookkeeping, due-row selection, and leases.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from vaisync.models import DeliveryStatus, OutboundDelivery
from vaisync.services import delivery_tracker
from vaisync.services.delivery_tracker import (
    BACKOFF_SCHEDULE_SECONDS,
    MAX_ATTEMPTS,
    backoff_delay,
    claim,
    due_for_retry,
    queue_stats,
    record_failure,
    record_success,
)
from vaisync.utils.exceptions import DeliveryError

TARGET = "https://partner.example.com/hooks/vai"
PAYLOAD = {"event": "vai.status_changed", "vai_number": "VAI-1"}
T0 = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


def _utc(dt):
    """SQLite returns naive datetimes; values were written as UTC."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


async def _make_row(db, status=DeliveryStatus.RETRYING, attempts=1, next_at=None, target=TARGET):
    row = OutboundDelivery(
        target_endpoint=target,
        payload=PAYLOAD,
        status=status,
        attempt_count=attempts,
        max_attempts=MAX_ATTEMPTS,
        next_attempt_at=next_at,
    )
    db.add(row)
    await db.commit()
    return row


# ---------------------------------------------------------------------------
# Backoff table
# ---------------------------------------------------------------------------


class TestBackoff:
    def test_table_values(self):
        assert BACKOFF_SCHEDULE_SECONDS == (30, 120, 480, 1920, 7200)

    @pytest.mark.parametrize("attempt,seconds", [(1, 30), (2, 120), (3, 480), (4, 1920), (5, 7200)])
    def test_delay_per_attempt(self, attempt, seconds):
        assert backoff_delay(attempt) == timedelta(seconds=seconds)

    def test_strictly_increasing(self):
        delays = [backoff_delay(n) for n in range(1, MAX_ATTEMPTS + 1)]
        assert all(a < b for a, b in zip(delays, delays[1:]))

    def test_clamped_at_both_ends(self):
        assert backoff_delay(0) == timedelta(seconds=30)
        assert backoff_delay(99) == timedelta(seconds=7200)


# ---------------------------------------------------------------------------
# record_failure
# ---------------------------------------------------------------------------


class TestRecordFailure:
    async def test_first_failure_creates_row(self, db):
        row = await record_failure(db, TARGET, PAYLOAD, "connection refused", event_type="vai.status", now=T0)
        await db.commit()

        assert row.attempt_count == 1
        assert row.status == DeliveryStatus.RETRYING
        assert row.last_error == "connection refused"
        assert row.event_type == "vai.status"
        assert _utc(row.next_attempt_at) == T0 + timedelta(seconds=30)

    async def test_follows_backoff_table_then_exhausts(self, db):
        row = await record_failure(db, TARGET, PAYLOAD, "boom", now=T0)
        gaps = [row.next_attempt_at - T0]

        now = T0
        for attempt in range(2, MAX_ATTEMPTS):
            now = now + timedelta(hours=3)
            row = await record_failure(db, TARGET, PAYLOAD, "boom", delivery=row, now=now)
            assert row.attempt_count == attempt
            assert row.status == DeliveryStatus.RETRYING
            gaps.append(row.next_attempt_at - now)

        assert [g.total_seconds() for g in gaps] == [30, 120, 480, 1920]

        row = await record_failure(db, TARGET, PAYLOAD, "boom", delivery=row, now=now)
        assert row.attempt_count == MAX_ATTEMPTS
        assert row.status == DeliveryStatus.EXHAUSTED
        assert row.next_attempt_at is None
        assert row.completed_at is not None

    async def test_attempt_count_never_exceeds_max(self, db):
        row = await _make_row(db, status=DeliveryStatus.EXHAUSTED, attempts=MAX_ATTEMPTS)
        row = await record_failure(db, TARGET, PAYLOAD, "again", delivery=row, now=T0)
        assert row.attempt_count == MAX_ATTEMPTS
        assert row.next_attempt_at is None

    async def test_custom_max_attempts(self, db):
        row = await record_failure(db, TARGET, PAYLOAD, "boom", max_attempts=1, now=T0)
        assert row.status == DeliveryStatus.EXHAUSTED

    async def test_copies_response_details_from_delivery_error(self, db):
        error = DeliveryError(
            "HTTP 503: unavailable",
            response_status=503,
            response_body="x" * 5000,
            response_time_ms=812,
        )
        row = await record_failure(db, TARGET, PAYLOAD, error, now=T0)

        assert row.last_error == "HTTP 503: unavailable"
        assert row.response_status == 503
        assert len(row.response_body) == 1000
        assert row.response_time_ms == 812


class TestRecordSuccess:
    async def test_marks_delivered_and_unschedules(self, db):
        row = await record_failure(db, TARGET, PAYLOAD, "boom", now=T0)
        row = await record_success(db, row, response_status=200, response_body="ok", response_time_ms=40)
        await db.commit()

        assert row.status == DeliveryStatus.DELIVERED
        assert row.next_attempt_at is None
        assert row.last_error is None
        assert row.completed_at is not None
        assert row.response_status == 200
        assert row.is_terminal is True


# ---------------------------------------------------------------------------
# due_for_retry
# ---------------------------------------------------------------------------


class TestDueForRetry:
    async def test_selects_only_due_rows_oldest_first(self, db):
        now = datetime.now(timezone.utc)
        late = await _make_row(db, next_at=now - timedelta(minutes=1), target="https://a.example")
        early = await _make_row(db, next_at=now - timedelta(minutes=10), target="https://b.example")
        await _make_row(db, next_at=now + timedelta(minutes=5))
        await _make_row(db, status=DeliveryStatus.DELIVERED, next_at=None)
        await _make_row(db, status=DeliveryStatus.EXHAUSTED, attempts=MAX_ATTEMPTS, next_at=None)

        due = await due_for_retry(db, limit=50)

        assert [r.id for r in due] == [early.id, late.id]

    async def test_pending_rows_are_due(self, db):
        now = datetime.now(timezone.utc)
        row = await _make_row(db, status=DeliveryStatus.PENDING, attempts=0, next_at=now - timedelta(seconds=1))
        assert [r.id for r in await due_for_retry(db, limit=50)] == [row.id]

    async def test_respects_limit(self, db):
        now = datetime.now(timezone.utc)
        for i in range(5):
            await _make_row(db, next_at=now - timedelta(minutes=i + 1))
        assert len(await due_for_retry(db, limit=3)) == 3

    async def test_in_flight_row_due_only_after_lease_expires(self, db):
        now = datetime.now(timezone.utc)
        leased = await _make_row(db, status=DeliveryStatus.IN_FLIGHT, next_at=now + timedelta(minutes=2))
        expired = await _make_row(db, status=DeliveryStatus.IN_FLIGHT, next_at=now - timedelta(minutes=2))

        due_ids = [r.id for r in await due_for_retry(db, limit=50)]
        assert expired.id in due_ids
        assert leased.id not in due_ids


# ---------------------------------------------------------------------------
# claim
# ---------------------------------------------------------------------------


class TestClaim:
    async def test_claim_leases_row(self, db):
        now = datetime.now(timezone.utc)
        row = await _make_row(db, next_at=now - timedelta(seconds=5))

        assert await claim(db, row, lease_seconds=120, now=now) is True
        assert row.status == DeliveryStatus.IN_FLIGHT
        assert _utc(row.next_attempt_at) == now + timedelta(seconds=120)
        assert row.id not in [r.id for r in await due_for_retry(db, limit=50)]

    async def test_second_claim_loses(self, db):
        now = datetime.now(timezone.utc)
        row = await _make_row(db, next_at=now - timedelta(seconds=5))

        assert await claim(db, row, lease_seconds=120, now=now) is True
        assert await claim(db, row, lease_seconds=120, now=now) is False

    async def test_terminal_row_cannot_be_claimed(self, db):
        row = await _make_row(db, status=DeliveryStatus.DELIVERED, next_at=None)
        assert await claim(db, row, lease_seconds=120) is False


class TestQueueViews:
    async def test_queue_stats_zero_filled(self, db):
        now = datetime.now(timezone.utc)
        await _make_row(db, next_at=now)
        await _make_row(db, next_at=now)
        await _make_row(db, status=DeliveryStatus.DELIVERED, next_at=None)

        stats = await queue_stats(db)
        assert stats == {
            "pending": 0,
            "retrying": 2,
            "in_flight": 0,
            "delivered": 1,
            "exhausted": 0,
        }

    async def test_list_deliveries_filters_status(self, db):
        await _make_row(db, next_at=datetime.now(timezone.utc))
        delivered = await _make_row(db, status=DeliveryStatus.DELIVERED, next_at=None)

        rows = await delivery_tracker.list_deliveries(db, status=DeliveryStatus.DELIVERED)
        assert [r.id for r in rows] == [delivered.id]

    async def test_rows_are_never_deleted(self, db):
        row = await record_failure(db, TARGET, PAYLOAD, "boom", now=T0)
        await record_success(db, row)
        await db.commit()

        result = await db.execute(select(OutboundDelivery))
        assert len(result.scalars().all()) == 1
