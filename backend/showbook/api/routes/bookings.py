"""
Booking endpoints: seat reservation, occupancy, status and payment retries.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from showbook.db.session import get_db
from showbook.core.exceptions import PaymentGatewayError
from showbook.models.booking import Booking
from showbook.schemas.booking import BookingCreate, BookingResponse, OccupiedSeatsResponse
from showbook.services.booking_service import (
    booking_expires_at,
    get_booking_status,
    get_occupied_seats,
    get_user_bookings,
    reserve_seats,
)
from showbook.services.interfaces.payment import PaymentGateway
from showbook.services.payment_service import attach_payment_session, retry_payment, verify_payment
from showbook.services.strategy_factory import get_payment_gateway
from showbook.core.security import get_current_user_id
from showbook.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


def to_booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        show_id=booking.show_id,
        user_id=booking.user_id,
        seats=list(booking.booked_seats),
        amount=float(booking.amount),
        status=booking.status,
        payment_url=booking.payment_url,
        refund_required=bool(booking.refund_required),
        created_at=booking.created_at,
        paid_at=booking.paid_at,
        expires_at=booking_expires_at(booking),
    )


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Hold seats for a show and open a payment session.

    The hold is released automatically if the booking is not paid within
    the expiry window. On 409 the body lists the conflicting seats and the
    show's current occupancy so the client can pick again.
    """
    booking = await reserve_seats(db, booking_data.show_id, booking_data.seats, user_id)
    try:
        booking = await attach_payment_session(db, gateway, booking)
    except PaymentGatewayError as e:
        # Hold stands; POST /bookings/{id}/pay opens the session later
        logger.error("payment_session_deferred", booking_id=booking.id, error=e.message)
    return to_booking_response(booking)


@router.get("/seats/{show_id}", response_model=OccupiedSeatsResponse)
async def occupied_seats_endpoint(
    show_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Seat labels currently held on a show."""
    seats = await get_occupied_seats(db, show_id)
    return OccupiedSeatsResponse(show_id=show_id, occupied_seats=seats)


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user."""
    bookings = await get_user_bookings(db, user_id)
    return [to_booking_response(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def booking_status_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Status of one of the caller's bookings."""
    booking = await get_booking_status(db, booking_id, user_id)
    return to_booking_response(booking)


@router.post("/{booking_id}/pay", response_model=BookingResponse)
async def retry_payment_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Payment link for a pending booking."""
    booking = await retry_payment(db, gateway, booking_id, user_id)
    return to_booking_response(booking)


@router.post("/{booking_id}/verify", response_model=BookingResponse)
async def verify_payment_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Ask the payment provider whether a pending booking has been paid."""
    booking = await verify_payment(db, gateway, booking_id, user_id)
    return to_booking_response(booking)
