"""
Show endpoints with Redis caching on the schedule views.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from showbook.db.session import get_db
from showbook.db.base import utcnow
from showbook.schemas.show import (
    MovieScheduleResponse,
    ShowBatchCreate,
    ShowBatchResponse,
    ShowCreate,
    ShowListResponse,
    ShowResponse,
    ShowSummary,
)
from showbook.services.show_service import create_show, create_shows, get_movie_schedule, get_show, list_shows
from showbook.services.cache_service import ScheduleCache, get_schedule_cache
from showbook.core.security import get_current_admin_id
from showbook.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/shows", tags=["Shows"])


@router.post("/", response_model=ShowResponse, status_code=status.HTTP_201_CREATED)
async def create_show_endpoint(
    show_data: ShowCreate,
    admin_id: str = Depends(get_current_admin_id),
    db: AsyncSession = Depends(get_db),
    cache: ScheduleCache = Depends(get_schedule_cache),
):
    """Schedule a show. Admin only."""
    show = await create_show(db, show_data)
    await db.commit()
    await cache.shows_scheduled(show.movie_id)
    logger.info("show_scheduled_by_admin", show_id=show.id, admin_id=admin_id)
    return ShowResponse.from_show(show)


@router.post("/batch", response_model=ShowBatchResponse, status_code=status.HTTP_201_CREATED)
async def create_shows_endpoint(
    batch: ShowBatchCreate,
    admin_id: str = Depends(get_current_admin_id),
    db: AsyncSession = Depends(get_db),
    cache: ScheduleCache = Depends(get_schedule_cache),
):
    """
    Schedule several showtimes of one movie. Admin only.
    Times already in the past are skipped; 400 if every time is past.
    """
    shows, skipped = await create_shows(db, batch)
    await db.commit()
    await cache.shows_scheduled(batch.movie_id)
    logger.info("shows_scheduled_by_admin", movie_id=batch.movie_id, created=len(shows), admin_id=admin_id)
    return ShowBatchResponse(
        movie_id=batch.movie_id,
        created=[ShowSummary.from_show(s) for s in shows],
        skipped_past=skipped,
    )


@router.get("/", response_model=ShowListResponse)
async def list_shows_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    cache: ScheduleCache = Depends(get_schedule_cache),
):
    """
    List scheduled shows with pagination.
    Results are cached in Redis; seat maps are not part of the listing.
    """
    cached = await cache.get_listing(page, page_size, upcoming_only)
    if cached:
        logger.info("shows_list_cache_hit", page=page)
        return ShowListResponse(**{**cached, "cached": True})

    shows, total = await list_shows(db, page, page_size, upcoming_only)
    response = ShowListResponse(
        shows=[ShowSummary.from_show(s) for s in shows],
        total=total,
        page=page,
        page_size=page_size,
    )
    await cache.put_listing(page, page_size, upcoming_only, response.model_dump(mode="json"))
    return response


@router.get("/movie/{movie_id}", response_model=MovieScheduleResponse)
async def movie_schedule_endpoint(
    movie_id: str,
    db: AsyncSession = Depends(get_db),
    cache: ScheduleCache = Depends(get_schedule_cache),
):
    """A movie's shows from today on, grouped by UTC date."""
    today = utcnow().date()
    cached = await cache.get_movie_schedule(movie_id, today)
    if cached is not None:
        return MovieScheduleResponse(movie_id=movie_id, schedule=cached, cached=True)

    schedule = await get_movie_schedule(db, movie_id)
    await cache.put_movie_schedule(movie_id, today, schedule)
    return MovieScheduleResponse(movie_id=movie_id, schedule=schedule)


@router.get("/{show_id}", response_model=ShowResponse)
async def get_show_endpoint(
    show_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single show with its current occupancy. Never cached."""
    show = await get_show(db, show_id)
    return ShowResponse.from_show(show)
