"""
Expiry scheduler: release seats of bookings that were never paid.

Every reservation commits an `expiry_tasks` row next to its booking, so the
schedule survives restarts. A worker polls for due tasks and, per task:

  claim     armed/evaluated -> evaluated, attempts += 1, lease taken.
            Conditional UPDATE, so only one worker evaluates a task at a
            time; a crashed worker's lease lapses and the task is re-claimed.
  evaluate  fresh read of the booking. Missing, paid or already cancelled
            -> noop. Pending -> conditional pending -> cancelled, then
            remove the booked labels from the seat map.
  finish    task -> done with its outcome, in the same transaction as the
            booking update and seat removal.

A failed evaluation is rolled back and the task re-armed with a backoff.
Past EXPIRY_ALERT_AFTER_ATTEMPTS every further failure is logged as an
alert: an unpaid booking holding seats blocks sales for that show.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from showbook.core.config import get_settings
from showbook.core.exceptions import ReleaseTaskFailure, TransientStorageFailure
from showbook.core.logging import get_logger
from showbook.core.metrics import expiry_alerts, expiry_failures, record_expiry_outcome, record_seat_map_retry
from showbook.db.base import utcnow
from showbook.models.booking import Booking, BookingStatus
from showbook.models.expiry_task import ExpiryOutcome, ExpiryState, ExpiryTask
from showbook.models.show import Show

logger = get_logger(__name__)


def arm_expiry(db: AsyncSession, booking: Booking, now: datetime) -> ExpiryTask:
    """Schedule the one expiry check for a freshly created booking."""
    task = ExpiryTask(
        booking_id=booking.id,
        run_at=now + timedelta(minutes=get_settings().BOOKING_EXPIRY_MINUTES),
        state=ExpiryState.ARMED.value,
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    db.add(task)
    return task


async def suppress_expiry(db: AsyncSession, booking_id: int, now: datetime) -> None:
    """Paid bookings need no expiry check. Caller commits."""
    await db.execute(
        update(ExpiryTask)
        .where(ExpiryTask.booking_id == booking_id, ExpiryTask.state != ExpiryState.DONE.value)
        .values(
            state=ExpiryState.DONE.value,
            outcome=ExpiryOutcome.SUPPRESSED.value,
            locked_until=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )


def _due(now: datetime):
    return (
        ExpiryTask.state != ExpiryState.DONE.value,
        ExpiryTask.run_at <= now,
        or_(ExpiryTask.locked_until.is_(None), ExpiryTask.locked_until <= now),
    )


async def due_task_ids(db: AsyncSession, now: datetime, limit: int) -> list[int]:
    result = await db.execute(
        select(ExpiryTask.id).where(*_due(now)).order_by(ExpiryTask.run_at.asc()).limit(limit)
    )
    return list(result.scalars().all())


async def claim_task(db: AsyncSession, task_id: int, now: datetime) -> bool:
    """Take the lease on a due task. False if it is not due or someone else holds it."""
    lease = timedelta(seconds=get_settings().EXPIRY_LEASE_SECONDS)
    result = await db.execute(
        update(ExpiryTask)
        .where(ExpiryTask.id == task_id, *_due(now))
        .values(
            state=ExpiryState.EVALUATED.value,
            attempts=ExpiryTask.attempts + 1,
            locked_until=now + lease,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def release_seats(db: AsyncSession, show_id: int, seats: Sequence[str], now: datetime) -> list[str]:
    """
    Remove `seats` from the show's seat map. Caller commits.

    Holders are not checked: the reservation CAS guarantees only the booking
    being released can hold these labels. Labels already absent are skipped.
    Returns the labels actually removed.
    """
    to_remove = set(seats)
    max_attempts = get_settings().MAX_RETRY_ATTEMPTS

    for attempt in range(1, max_attempts + 1):
        result = await db.execute(select(Show.occupied_seats, Show.version).where(Show.id == show_id))
        show = result.one_or_none()
        if show is None:
            logger.warning("release_show_missing", show_id=show_id, seats=list(seats))
            return []

        seat_map = dict(show.occupied_seats or {})
        removed = [label for label in seats if label in seat_map]
        if not removed:
            return []

        remaining = {label: holder for label, holder in seat_map.items() if label not in to_remove}
        update_result = await db.execute(
            update(Show)
            .where(Show.id == show_id, Show.version == show.version)
            .values(occupied_seats=remaining, version=Show.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if update_result.rowcount == 1:
            return removed

        logger.info("release_retry", show_id=show_id, attempt=attempt, reason="version_conflict")
        record_seat_map_retry("release")

    raise TransientStorageFailure(f"Seat map for show {show_id} is busy")


async def evaluate_task(db: AsyncSession, task_id: int, now: datetime) -> str:
    """Decide and apply the outcome for a claimed task. Commits on success."""
    task = (
        await db.execute(
            select(ExpiryTask).where(ExpiryTask.id == task_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if task is None:
        # Booking was deleted and the task went with it
        return ExpiryOutcome.NOOP.value

    booking = (
        await db.execute(
            select(Booking).where(Booking.id == task.booking_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()

    outcome = ExpiryOutcome.NOOP.value
    released: list[str] = []
    if booking is not None and booking.status == BookingStatus.PENDING.value:
        # Re-checked in the WHERE clause: a confirmation that committed after
        # the read above wins and this becomes a noop.
        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING.value)
            .values(status=BookingStatus.CANCELLED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            released = await release_seats(db, booking.show_id, booking.booked_seats, now)
            outcome = ExpiryOutcome.RELEASED.value

    # A confirmation may already have closed the task as suppressed
    await db.execute(
        update(ExpiryTask)
        .where(ExpiryTask.id == task_id, ExpiryTask.state != ExpiryState.DONE.value)
        .values(state=ExpiryState.DONE.value, outcome=outcome, locked_until=None, last_error=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    record_expiry_outcome(outcome)
    if outcome == ExpiryOutcome.RELEASED.value:
        logger.info(
            "booking_expired",
            booking_id=task.booking_id,
            show_id=booking.show_id,
            seats_released=released,
        )
    else:
        logger.info(
            "expiry_noop",
            booking_id=task.booking_id,
            status=booking.status if booking is not None else None,
        )
    return outcome


async def reschedule_failed_task(db: AsyncSession, task_id: int, error: BaseException, now: datetime) -> None:
    settings = get_settings()
    await db.execute(
        update(ExpiryTask)
        .where(ExpiryTask.id == task_id, ExpiryTask.state != ExpiryState.DONE.value)
        .values(
            state=ExpiryState.ARMED.value,
            run_at=now + timedelta(seconds=settings.EXPIRY_RETRY_BACKOFF_SECONDS),
            locked_until=None,
            last_error=str(error)[:1000],
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    row = (
        await db.execute(select(ExpiryTask.booking_id, ExpiryTask.attempts).where(ExpiryTask.id == task_id))
    ).one_or_none()
    booking_id, attempts = (row.booking_id, row.attempts) if row is not None else (None, 0)
    failure = ReleaseTaskFailure(task_id, booking_id, error)

    expiry_failures.inc()
    logger.error("expiry_task_failed", task_id=task_id, booking_id=booking_id, attempts=attempts, error=str(failure))
    if attempts >= settings.EXPIRY_ALERT_AFTER_ATTEMPTS:
        expiry_alerts.inc()
        logger.error(
            "expiry_release_alert",
            task_id=task_id,
            booking_id=booking_id,
            attempts=attempts,
            message="Unpaid booking is still holding seats",
        )


async def run_due_tasks(
    session_factory: async_sessionmaker,
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> dict[str, int]:
    """
    One polling pass: claim and evaluate every due task.
    Each task gets its own session so one failure cannot roll back another.
    Returns outcome counts, e.g. {"released": 2, "noop": 1, "failed": 0}.
    """
    now = now or utcnow()
    limit = limit or get_settings().EXPIRY_BATCH_SIZE

    async with session_factory() as db:
        task_ids = await due_task_ids(db, now, limit)

    outcomes: Counter = Counter()
    for task_id in task_ids:
        async with session_factory() as db:
            if not await claim_task(db, task_id, now):
                continue
            try:
                outcomes[await evaluate_task(db, task_id, now)] += 1
            except Exception as e:
                await db.rollback()
                await reschedule_failed_task(db, task_id, e, now)
                outcomes["failed"] += 1

    if task_ids:
        logger.info("expiry_pass_completed", due=len(task_ids), **outcomes)
    return dict(outcomes)
