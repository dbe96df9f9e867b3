"""
Show model: one scheduled screening and its seat map.

Key design decisions:
- `occupied_seats` maps seat label -> holder id. A label is present only
  while some booking holds it; absence means the seat is free.
- `version` is bumped on every seat map write. Writers read the map, then
  UPDATE ... WHERE version = :read_version, so a write can only land on the
  exact map it was computed from (compare-and-swap).
- `tier_prices` optionally overrides `price` per seat row, e.g. {"A": 15}.
"""

from sqlalchemy import Column, Integer, String, DateTime, Numeric, JSON, Index, CheckConstraint
from sqlalchemy.orm import relationship

from showbook.db.base import Base, TimestampMixin


class Show(Base, TimestampMixin):
    __tablename__ = "shows"

    id = Column(Integer, primary_key=True, index=True)
    movie_id = Column(String(64), nullable=False, index=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    tier_prices = Column(JSON, nullable=True)
    occupied_seats = Column(JSON, nullable=False, default=dict)

    # Compare-and-swap token for seat map writes
    version = Column(Integer, nullable=False, default=1)

    bookings = relationship("Booking", back_populates="show", lazy="raise")

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_show_price_non_negative"),
        Index("ix_shows_starts_at", "starts_at"),
    )

    def __repr__(self) -> str:
        return f"<Show(id={self.id}, movie={self.movie_id}, starts_at={self.starts_at})>"
