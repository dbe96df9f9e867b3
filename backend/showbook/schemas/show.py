"""
Pydantic schemas for show-related request/response validation.
"""

from datetime import date, datetime
from typing import Annotated, Optional
from pydantic import BaseModel, Field, StringConstraints

from showbook.services.seat_map import occupied_labels

Price = Annotated[float, Field(ge=0, le=100000, allow_inf_nan=False)]
RowLabel = Annotated[str, StringConstraints(pattern=r"^[A-Za-z]{1,3}$")]
ClockTime = Annotated[str, StringConstraints(pattern=r"^([01][0-9]|2[0-3]):[0-5][0-9]$")]


class ShowCreate(BaseModel):
    movie_id: str = Field(..., min_length=1, max_length=64)
    starts_at: datetime
    price: Price
    tier_prices: Optional[dict[RowLabel, Price]] = Field(
        None, description="Per-row price overrides, e.g. {\"A\": 15.0}"
    )


class ShowDay(BaseModel):
    day: date
    times: list[ClockTime] = Field(..., min_length=1, max_length=24, description="UTC, HH:MM")


class ShowBatchCreate(BaseModel):
    """Several showtimes of one movie at one price. Times already past are skipped."""

    movie_id: str = Field(..., min_length=1, max_length=64)
    price: Price
    tier_prices: Optional[dict[RowLabel, Price]] = None
    days: list[ShowDay] = Field(..., min_length=1, max_length=31)


class ShowSummary(BaseModel):
    id: int
    movie_id: str
    starts_at: datetime
    price: float
    tier_prices: Optional[dict[str, float]] = None

    @classmethod
    def from_show(cls, show) -> "ShowSummary":
        return cls(
            id=show.id,
            movie_id=show.movie_id,
            starts_at=show.starts_at,
            price=float(show.price),
            tier_prices={row: float(p) for row, p in (show.tier_prices or {}).items()} or None,
        )


class ShowResponse(ShowSummary):
    occupied_seats: list[str]
    created_at: datetime

    @classmethod
    def from_show(cls, show) -> "ShowResponse":
        return cls(
            **ShowSummary.from_show(show).model_dump(),
            occupied_seats=occupied_labels(show.occupied_seats),
            created_at=show.created_at,
        )


class ShowBatchResponse(BaseModel):
    movie_id: str
    created: list[ShowSummary]
    skipped_past: int


class ShowListResponse(BaseModel):
    shows: list[ShowSummary]
    total: int
    page: int
    page_size: int
    cached: bool = False


class ScheduleSlot(BaseModel):
    time: str
    show_id: int
    price: float


class MovieScheduleResponse(BaseModel):
    movie_id: str
    schedule: dict[str, list[ScheduleSlot]] = Field(..., description="UTC date -> showtimes that day")
    cached: bool = False
