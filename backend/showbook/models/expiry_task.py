"""
Durable expiry task, one per booking.

armed      -> waiting for run_at
evaluated  -> claimed by a worker, lease held until locked_until
done       -> terminal, `outcome` says what happened

A worker that dies mid-evaluation leaves the task `evaluated` with a lapsed
lease; the next poll claims it again.
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint

from showbook.db.base import Base, TimestampMixin


class ExpiryState(str, enum.Enum):
    ARMED = "armed"
    EVALUATED = "evaluated"
    DONE = "done"


class ExpiryOutcome(str, enum.Enum):
    RELEASED = "released"
    NOOP = "noop"
    SUPPRESSED = "suppressed"


class ExpiryTask(Base, TimestampMixin):
    __tablename__ = "expiry_tasks"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True)
    run_at = Column(DateTime(timezone=True), nullable=False)
    state = Column(String(20), nullable=False, default=ExpiryState.ARMED.value)
    outcome = Column(String(20), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(String(1000), nullable=True)

    __table_args__ = (
        CheckConstraint("state IN ('armed', 'evaluated', 'done')", name="check_expiry_state"),
        # Poll query: state != 'done' AND run_at <= now
        Index("ix_expiry_tasks_state_run_at", "state", "run_at"),
    )

    def __repr__(self) -> str:
        return f"<ExpiryTask(id={self.id}, booking={self.booking_id}, state={self.state}, run_at={self.run_at})>"
