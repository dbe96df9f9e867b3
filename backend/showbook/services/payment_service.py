"""
Payment confirmation bridge.

Turns "the provider says this was paid" into the pending -> paid transition,
from either the provider's webhook or a client-initiated verify poll.

- pending -> paid is a conditional UPDATE, so it races safely with the
  expiry worker's pending -> cancelled: whichever commits first wins.
- paid -> paid (duplicate webhook delivery, poll after webhook) is a success.
- cancelled + payment = the payment landed after expiry already released
  the seats. The seats are not taken back, since someone else may hold
  them now. The booking is flagged refund_required for reconciliation.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from showbook.core.exceptions import BookingNotFound, InvalidRequest
from showbook.core.logging import get_logger
from showbook.core.metrics import record_payment_confirmation
from showbook.db.base import utcnow
from showbook.models.booking import Booking, BookingStatus
from showbook.services.booking_service import get_booking_status, load_booking
from showbook.services.expiry_service import suppress_expiry
from showbook.services.interfaces.payment import PaymentGateway

logger = get_logger(__name__)


async def attach_payment_session(db: AsyncSession, gateway: PaymentGateway, booking: Booking) -> Booking:
    """Open a checkout session and store its reference on a pending booking."""
    session = await gateway.create_session(booking)
    await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING.value)
        .values(payment_session_id=session.session_id, payment_url=session.url, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("payment_session_created", booking_id=booking.id, session_id=session.session_id)
    return await load_booking(db, booking.id)


async def confirm_payment(db: AsyncSession, booking_id: int, now: Optional[datetime] = None) -> Booking:
    """Mark a booking paid. Safe to call any number of times."""
    now = now or utcnow()
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING.value)
        .values(
            status=BookingStatus.PAID.value,
            paid_at=now,
            payment_session_id=None,
            payment_url=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await suppress_expiry(db, booking_id, now)
        await db.commit()
        record_payment_confirmation("paid")
        logger.info("booking_paid", booking_id=booking_id)
        return await load_booking(db, booking_id)

    booking = await load_booking(db, booking_id)
    if booking is None:
        raise BookingNotFound(booking_id)

    if booking.status == BookingStatus.PAID.value:
        record_payment_confirmation("duplicate")
        logger.info("duplicate_confirmation", booking_id=booking_id)
        return booking

    # Cancelled: expiry released the seats before the payment arrived
    await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.CANCELLED.value)
        .values(refund_required=True, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    record_payment_confirmation("late")
    logger.warning(
        "late_payment_refund_required",
        booking_id=booking_id,
        user_id=booking.user_id,
        amount=str(booking.amount),
    )
    return await load_booking(db, booking_id)


async def verify_payment(db: AsyncSession, gateway: PaymentGateway, booking_id: int, user_id: str) -> Booking:
    """
    Client-side poll after returning from checkout.
    Only the owner may ask; a pending booking stays pending until the
    provider reports the session paid.
    """
    booking = await get_booking_status(db, booking_id, user_id)
    if booking.status != BookingStatus.PENDING.value or not booking.payment_session_id:
        return booking

    if await gateway.is_session_paid(booking.payment_session_id):
        logger.info("payment_verified_by_poll", booking_id=booking_id)
        return await confirm_payment(db, booking_id)
    return booking


async def retry_payment(db: AsyncSession, gateway: PaymentGateway, booking_id: int, user_id: str) -> Booking:
    """Payment link for an owned pending booking, opening a session if none exists."""
    booking = await get_booking_status(db, booking_id, user_id)
    if booking.status != BookingStatus.PENDING.value:
        raise InvalidRequest(f"Booking is {booking.status}; payment is not possible")
    if booking.payment_url:
        return booking
    return await attach_payment_session(db, gateway, booking)


async def handle_webhook(
    db: AsyncSession,
    gateway: PaymentGateway,
    payload: bytes,
    signature: Optional[str],
) -> Optional[Booking]:
    """
    Provider callback. Returns the confirmed booking, or None when the event
    is not a completed checkout or cannot be tied to a booking.
    """
    event = gateway.parse_webhook(payload, signature)
    if not event.confirms_payment:
        logger.info("webhook_ignored", event_type=event.type)
        return None

    booking_id = event.booking_id
    if booking_id is None and event.session_id:
        result = await db.execute(select(Booking.id).where(Booking.payment_session_id == event.session_id))
        booking_id = result.scalar_one_or_none()

    if booking_id is None:
        logger.warning("webhook_without_booking", event_type=event.type, session_id=event.session_id)
        return None

    try:
        return await confirm_payment(db, booking_id)
    except BookingNotFound:
        # Acknowledged so the provider stops redelivering
        logger.warning("webhook_booking_missing", booking_id=booking_id)
        return None
