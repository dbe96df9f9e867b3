"""
Booking model: the ledger entry for one reservation.

Key design decisions:
- Status moves pending -> paid or pending -> cancelled, never anything else.
  Every transition is a conditional UPDATE ... WHERE status = 'pending'.
- `booked_seats` keeps the request order; the show's seat map is the source
  of truth for occupancy, this is what the booking claimed.
- `refund_required` flags a payment that arrived after expiry already
  released the seats.
"""

import enum

from sqlalchemy import Boolean, Column, Integer, String, DateTime, Numeric, JSON, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship

from showbook.db.base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    show_id = Column(Integer, ForeignKey("shows.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    booked_seats = Column(JSON, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    payment_session_id = Column(String(255), nullable=True, index=True)
    payment_url = Column(String(1024), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    refund_required = Column(Boolean, nullable=False, default=False)

    show = relationship("Show", back_populates="bookings")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_booking_amount_non_negative"),
        CheckConstraint("status IN ('pending', 'paid', 'cancelled')", name="check_booking_status"),
        Index("ix_bookings_user_created", "user_id", "created_at"),
    )

    @property
    def seat_count(self) -> int:
        return len(self.booked_seats or [])

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, show={self.show_id}, status={self.status})>"
