"""
Booking service with concurrency-safe seat reservation.

CONCURRENCY STRATEGY: Compare-and-swap on the show's seat map
=============================================================

Problem:
  Two users pick overlapping seats for the same show at the same moment.
  Both read the seat map, both see A2 free, both write A2 -> themselves.
  Result: the same seat sold twice.

Solution:
  Each show row carries `occupied_seats` (label -> holder) and a `version`.

  1. Read occupied_seats and version for the show
  2. If any requested label is already a key -> SeatConflict, no write
  3. UPDATE shows SET occupied_seats = :map_with_claims, version = version + 1
     WHERE id = :show_id AND version = :read_version
  4. If rows_affected == 0, the map changed under us -> re-read and re-check

  The version predicate means the write only lands on the exact map that
  was checked, so "every requested seat is free" holds at commit time and
  the claim is all-or-nothing. Contention is scoped to one show row; no
  process-wide lock is taken.

  The booking row and its expiry task are inserted in the same transaction
  as the claim. If anything fails before commit nothing is persisted, which
  is what makes a blind client retry safe.
"""

import time
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from showbook.core.config import get_settings
from showbook.core.exceptions import (
    BookingNotFound,
    Forbidden,
    InvalidRequest,
    SeatConflict,
    ShowNotFound,
    TransientStorageFailure,
)
from showbook.core.logging import get_logger
from showbook.core.metrics import reservation_latency, record_reservation_attempt, record_seat_map_retry
from showbook.db.base import utcnow
from showbook.models.booking import Booking, BookingStatus
from showbook.models.show import Show
from showbook.services.expiry_service import arm_expiry
from showbook.services.seat_map import occupied_labels, price_for_seats, validate_seat_labels

logger = get_logger(__name__)


async def reserve_seats(
    db: AsyncSession,
    show_id: int,
    seats: Sequence[str],
    user_id: str,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Atomically claim `seats` on `show_id` for `user_id`.

    Returns the new pending booking. Raises InvalidRequest, ShowNotFound,
    SeatConflict or TransientStorageFailure; on any of them nothing was
    written.
    """
    settings = get_settings()
    try:
        labels = validate_seat_labels(seats, settings.MAX_SEATS_PER_BOOKING)
    except InvalidRequest:
        record_reservation_attempt("invalid")
        raise

    now = now or utcnow()
    start = time.perf_counter()
    try:
        booking = await _claim_and_record(db, show_id, labels, user_id, now, settings.MAX_RETRY_ATTEMPTS)
    except SeatConflict:
        await db.rollback()
        record_reservation_attempt("conflict")
        raise
    except ShowNotFound:
        await db.rollback()
        record_reservation_attempt("not_found")
        raise
    except TransientStorageFailure:
        await db.rollback()
        record_reservation_attempt("error")
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        record_reservation_attempt("error")
        logger.error("reservation_storage_error", show_id=show_id, user_id=user_id, error=str(e))
        raise TransientStorageFailure("Storage is temporarily unavailable, please retry")
    finally:
        reservation_latency.observe(time.perf_counter() - start)

    record_reservation_attempt("success")
    return booking


async def _claim_and_record(
    db: AsyncSession,
    show_id: int,
    labels: list[str],
    user_id: str,
    now: datetime,
    max_attempts: int,
) -> Booking:
    for attempt in range(1, max_attempts + 1):
        # Step 1: Read current seat map
        result = await db.execute(
            select(Show.occupied_seats, Show.version, Show.price, Show.tier_prices).where(Show.id == show_id)
        )
        show = result.one_or_none()
        if show is None:
            raise ShowNotFound(show_id)

        seat_map = dict(show.occupied_seats or {})
        conflicting = [label for label in labels if label in seat_map]
        if conflicting:
            logger.warning(
                "reservation_conflict",
                show_id=show_id,
                user_id=user_id,
                requested=labels,
                conflicting=conflicting,
            )
            raise SeatConflict(show_id, conflicting, occupied_labels(seat_map))

        # Step 2: Compare-and-swap - write only if nobody touched the map since step 1
        claimed = {**seat_map, **{label: user_id for label in labels}}
        update_result = await db.execute(
            update(Show)
            .where(Show.id == show_id, Show.version == show.version)
            .values(occupied_seats=claimed, version=Show.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        if update_result.rowcount == 0:
            logger.info("reservation_retry", show_id=show_id, attempt=attempt, reason="version_conflict")
            record_seat_map_retry("claim")
            continue

        # Step 3: Booking record and expiry task, committed with the claim
        booking = Booking(
            show_id=show_id,
            user_id=user_id,
            booked_seats=labels,
            amount=price_for_seats(labels, show.price, show.tier_prices),
            status=BookingStatus.PENDING.value,
            refund_required=False,
            created_at=now,
            updated_at=now,
        )
        db.add(booking)
        await db.flush()
        arm_expiry(db, booking, now)
        await db.commit()

        logger.info(
            "booking_created",
            booking_id=booking.id,
            user_id=user_id,
            show_id=show_id,
            seats=labels,
            amount=str(booking.amount),
            attempt=attempt,
        )
        return booking

    logger.warning("reservation_contention_exhausted", show_id=show_id, attempts=max_attempts)
    raise TransientStorageFailure("Seat map is busy, please retry")


async def get_occupied_seats(db: AsyncSession, show_id: int) -> list[str]:
    """Labels currently held on a show, as of the last committed write."""
    result = await db.execute(select(Show.occupied_seats).where(Show.id == show_id))
    row = result.one_or_none()
    if row is None:
        raise ShowNotFound(show_id)
    return occupied_labels(row.occupied_seats)


async def load_booking(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    """Fresh read, bypassing whatever the session's identity map holds."""
    result = await db.execute(
        select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_booking_status(db: AsyncSession, booking_id: int, user_id: str) -> Booking:
    booking = await load_booking(db, booking_id)
    if booking is None:
        raise BookingNotFound(booking_id)
    if booking.user_id != user_id:
        logger.warning("booking_access_denied", booking_id=booking_id, user_id=user_id)
        raise Forbidden("You do not have access to this booking")
    return booking


async def get_user_bookings(db: AsyncSession, user_id: str) -> list[Booking]:
    """Get all bookings for a user, newest first."""
    result = await db.execute(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())


def booking_expires_at(booking: Booking) -> Optional[datetime]:
    if booking.status != BookingStatus.PENDING.value or booking.created_at is None:
        return None
    return booking.created_at + timedelta(minutes=get_settings().BOOKING_EXPIRY_MINUTES)
