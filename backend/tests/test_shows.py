"""
Tests for show scheduling and listing endpoints.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient


def _future(days=7) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.mark.asyncio
async def test_admin_creates_show(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/v1/shows/",
        json={"movie_id": "603", "starts_at": _future(), "price": 12.5, "tier_prices": {"a": 18}},
        headers=admin_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["movie_id"] == "603"
    assert data["price"] == 12.5
    assert data["tier_prices"] == {"A": 18.0}
    assert data["occupied_seats"] == []


@pytest.mark.asyncio
async def test_non_admin_cannot_create_show(client: AsyncClient, auth_headers):
    response = await client.post(
        "/api/v1/shows/",
        json={"movie_id": "603", "starts_at": _future(), "price": 12.5},
        headers=auth_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_show_in_past(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/v1/shows/",
        json={"movie_id": "603", "starts_at": _future(days=-1), "price": 12.5},
        headers=admin_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_show_negative_price(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/v1/shows/",
        json={"movie_id": "603", "starts_at": _future(), "price": -1},
        headers=admin_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_shows(client: AsyncClient, make_show):
    soon = await make_show(starts_at=datetime.now(timezone.utc) + timedelta(days=1))
    later = await make_show(starts_at=datetime.now(timezone.utc) + timedelta(days=3))
    await make_show(starts_at=datetime.now(timezone.utc) - timedelta(days=1))

    response = await client.get("/api/v1/shows/?page=1&page_size=10")
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [s["id"] for s in data["shows"]] == [soon.id, later.id]
    assert data["cached"] is False

    everything = await client.get("/api/v1/shows/?upcoming_only=false")
    assert everything.json()["total"] == 3


@pytest.mark.asyncio
async def test_get_show_with_occupancy(client: AsyncClient, make_show):
    show = await make_show(occupied_seats={"B2": "user_1", "A1": "legacy"})

    response = await client.get(f"/api/v1/shows/{show.id}")
    assert response.status_code == 200
    assert response.json()["occupied_seats"] == ["A1", "B2"]


@pytest.mark.asyncio
async def test_get_show_not_found(client: AsyncClient):
    response = await client.get("/api/v1/shows/999999")
    assert response.status_code == 404
    assert response.json() == {"error": "show_not_found", "detail": "Show 999999 not found"}


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "tier_prices",
    [{"A": -50}, {"A": "nan"}, {"A": "inf"}, {"A1": 15}, {"": 15}, {"ROWS": 15}],
)
async def test_create_show_rejects_bad_tiers(client: AsyncClient, admin_headers, tier_prices):
    response = await client.post(
        "/api/v1/shows/",
        json={"movie_id": "603", "starts_at": _future(), "price": 10, "tier_prices": tier_prices},
        headers=admin_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_tiered_show_books_at_tier_price(client: AsyncClient, admin_headers, auth_headers):
    created = await client.post(
        "/api/v1/shows/",
        json={"movie_id": "603", "starts_at": _future(), "price": 10, "tier_prices": {"A": 0}},
        headers=admin_headers,
    )
    booking = await client.post(
        "/api/v1/bookings/",
        json={"show_id": created.json()["id"], "seats": ["A1", "B1"]},
        headers=auth_headers,
    )
    assert booking.status_code == 201
    assert booking.json()["amount"] == 10.0


def _day(days: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).date().isoformat()


@pytest.mark.asyncio
async def test_batch_schedule_skips_past_times(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/v1/shows/batch",
        json={
            "movie_id": "603",
            "price": 9.5,
            "days": [
                {"day": _day(-1), "times": ["10:00", "20:00"]},
                {"day": _day(1), "times": ["21:15", "18:30"]},
                {"day": _day(2), "times": ["18:30"]},
            ],
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["skipped_past"] == 2
    assert [s["starts_at"][11:16] for s in data["created"]] == ["18:30", "21:15", "18:30"]
    assert all(s["price"] == 9.5 for s in data["created"])


@pytest.mark.asyncio
async def test_batch_schedule_all_past(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/v1/shows/batch",
        json={"movie_id": "603", "price": 9.5, "days": [{"day": _day(-2), "times": ["10:00"]}]},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "All provided show times are in the past"


@pytest.mark.asyncio
@pytest.mark.parametrize("times", [[], ["25:00"], ["9:30"], ["noon"]])
async def test_batch_schedule_rejects_bad_times(client: AsyncClient, admin_headers, times):
    response = await client.post(
        "/api/v1/shows/batch",
        json={"movie_id": "603", "price": 9.5, "days": [{"day": _day(1), "times": times}]},
        headers=admin_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_batch_schedule_admin_only(client: AsyncClient, auth_headers):
    response = await client.post(
        "/api/v1/shows/batch",
        json={"movie_id": "603", "price": 9.5, "days": [{"day": _day(1), "times": ["18:00"]}]},
        headers=auth_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_movie_schedule_grouped_by_date(client: AsyncClient, make_show):
    tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).replace(hour=18, minute=30, second=0, microsecond=0)
    late = await make_show(movie_id="603", starts_at=tomorrow.replace(hour=21, minute=0))
    early = await make_show(movie_id="603", starts_at=tomorrow)
    next_day = await make_show(movie_id="603", starts_at=tomorrow + timedelta(days=1), price=12)
    await make_show(movie_id="603", starts_at=tomorrow - timedelta(days=3))
    await make_show(movie_id="999", starts_at=tomorrow)

    response = await client.get("/api/v1/shows/movie/603")
    assert response.status_code == 200
    data = response.json()
    assert data["movie_id"] == "603"
    assert data["schedule"] == {
        tomorrow.date().isoformat(): [
            {"time": "18:30", "show_id": early.id, "price": 10.0},
            {"time": "21:00", "show_id": late.id, "price": 10.0},
        ],
        (tomorrow + timedelta(days=1)).date().isoformat(): [
            {"time": "18:30", "show_id": next_day.id, "price": 12.0},
        ],
    }


@pytest.mark.asyncio
async def test_movie_schedule_only_past_shows(client: AsyncClient, make_show):
    await make_show(movie_id="603", starts_at=datetime.now(timezone.utc) - timedelta(days=3))

    response = await client.get("/api/v1/shows/movie/603")
    assert response.status_code == 200
    assert response.json()["schedule"] == {}


@pytest.mark.asyncio
async def test_movie_schedule_unknown_movie(client: AsyncClient):
    response = await client.get("/api/v1/shows/movie/424242")
    assert response.status_code == 404
    assert response.json()["error"] == "movie_not_found"
