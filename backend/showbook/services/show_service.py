"""
Show service handling scheduling and lookups.
"""

from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from showbook.core.exceptions import InvalidRequest, MovieNotFound, ShowNotFound
from showbook.db.base import utcnow
from showbook.models.show import Show
from showbook.schemas.show import ShowBatchCreate, ShowCreate
from showbook.core.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _tier_map(tier_prices: Optional[dict]) -> Optional[dict[str, str]]:
    if not tier_prices:
        return None
    return {row.upper(): str(Decimal(str(price))) for row, price in tier_prices.items()}


def _new_show(movie_id: str, starts_at: datetime, price: float, tier_prices: Optional[dict]) -> Show:
    return Show(
        movie_id=movie_id,
        starts_at=starts_at,
        price=Decimal(str(price)),
        tier_prices=_tier_map(tier_prices),
        occupied_seats={},
        version=1,
    )


async def create_show(db: AsyncSession, show_data: ShowCreate, now: Optional[datetime] = None) -> Show:
    """Schedule a show with an empty seat map."""
    starts_at = _as_utc(show_data.starts_at)
    if starts_at <= (now or utcnow()):
        raise InvalidRequest("Show time must be in the future")

    show = _new_show(show_data.movie_id, starts_at, show_data.price, show_data.tier_prices)
    db.add(show)
    await db.flush()
    await db.refresh(show)

    logger.info("show_created", show_id=show.id, movie_id=show.movie_id, starts_at=str(starts_at))
    return show


async def create_shows(
    db: AsyncSession,
    batch: ShowBatchCreate,
    now: Optional[datetime] = None,
) -> tuple[list[Show], int]:
    """
    Schedule every (day, time) pair in `batch`, all in UTC.

    Past times are skipped rather than rejected, so an admin can paste a
    week's timetable mid-week. Raises InvalidRequest only when nothing is
    left. Returns (created shows, number skipped as past).
    """
    now = now or utcnow()
    requested = sorted({
        datetime.combine(entry.day, time.fromisoformat(clock), tzinfo=timezone.utc)
        for entry in batch.days
        for clock in entry.times
    })
    upcoming = [starts_at for starts_at in requested if starts_at > now]
    if not upcoming:
        raise InvalidRequest("All provided show times are in the past")

    shows = [_new_show(batch.movie_id, starts_at, batch.price, batch.tier_prices) for starts_at in upcoming]
    db.add_all(shows)
    await db.flush()
    for show in shows:
        await db.refresh(show)

    skipped = len(requested) - len(upcoming)
    logger.info("shows_created", movie_id=batch.movie_id, created=len(shows), skipped_past=skipped)
    return shows, skipped


async def get_show(db: AsyncSession, show_id: int) -> Show:
    """Get a single show by ID."""
    result = await db.execute(
        select(Show).where(Show.id == show_id).execution_options(populate_existing=True)
    )
    show = result.scalar_one_or_none()

    if not show:
        raise ShowNotFound(show_id)
    return show


async def list_shows(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
) -> tuple[list[Show], int]:
    """
    List shows with pagination, soonest first.
    Uses the ix_shows_starts_at index for the date filter and ordering.
    """
    query = select(Show)

    if upcoming_only:
        query = query.where(Show.starts_at >= datetime.now(timezone.utc))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    shows_query = (
        query
        .order_by(Show.starts_at.asc(), Show.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(shows_query)
    shows = list(result.scalars().all())

    return shows, total


async def get_movie_schedule(
    db: AsyncSession,
    movie_id: str,
    now: Optional[datetime] = None,
) -> dict[str, list[dict]]:
    """
    A movie's shows from the start of today (UTC), grouped by date:
        {"2026-10-21": [{"time": "18:30", "show_id": 7, "price": 10.0}, ...]}
    Raises MovieNotFound when the movie never had a show.
    """
    now = now or utcnow()
    known = await db.execute(select(Show.id).where(Show.movie_id == movie_id).limit(1))
    if known.scalar_one_or_none() is None:
        raise MovieNotFound(movie_id)

    start_of_today = datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
    result = await db.execute(
        select(Show.id, Show.starts_at, Show.price)
        .where(Show.movie_id == movie_id, Show.starts_at >= start_of_today)
        .order_by(Show.starts_at.asc(), Show.id.asc())
    )

    schedule: dict[str, list[dict]] = {}
    for row in result:
        starts_at = _as_utc(row.starts_at)
        schedule.setdefault(starts_at.date().isoformat(), []).append(
            {"time": starts_at.strftime("%H:%M"), "show_id": row.id, "price": float(row.price)}
        )
    return schedule
