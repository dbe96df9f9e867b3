"""
Tests for the expiry scheduler: unpaid holds are released once, paid ones
never, and failed evaluations are retried.
"""

from datetime import timedelta

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select

from showbook.core.config import get_settings
from showbook.db.base import utcnow
from showbook.models.booking import Booking, BookingStatus
from showbook.models.expiry_task import ExpiryOutcome, ExpiryState, ExpiryTask
from showbook.services import expiry_service
from showbook.services.booking_service import get_occupied_seats, load_booking, reserve_seats
from showbook.services.expiry_service import claim_task, evaluate_task, release_seats, run_due_tasks
from showbook.services.payment_service import confirm_payment
from showbook.workers.expiry_worker import ExpiryWorker


async def _task_for(session_factory, booking_id) -> ExpiryTask:
    async with session_factory() as db:
        return (await db.execute(select(ExpiryTask).where(ExpiryTask.booking_id == booking_id))).scalar_one()


async def _booking(session_factory, booking_id) -> Booking:
    async with session_factory() as db:
        return await load_booking(db, booking_id)


async def _occupied(session_factory, show_id):
    async with session_factory() as db:
        return await get_occupied_seats(db, show_id)


@pytest.mark.asyncio
async def test_unpaid_booking_released_after_window(db_session, session_factory, test_show):
    t0 = utcnow()
    booking = await reserve_seats(db_session, test_show.id, ["A1", "A2"], "user_1", now=t0)

    outcomes = await run_due_tasks(session_factory, now=t0 + timedelta(minutes=8))

    assert outcomes == {"released": 1}
    assert (await _booking(session_factory, booking.id)).status == BookingStatus.CANCELLED.value
    assert await _occupied(session_factory, test_show.id) == []

    task = await _task_for(session_factory, booking.id)
    assert task.state == ExpiryState.DONE.value
    assert task.outcome == ExpiryOutcome.RELEASED.value
    assert task.locked_until is None


@pytest.mark.asyncio
async def test_nothing_released_before_deadline(db_session, session_factory, test_show):
    t0 = utcnow()
    booking = await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)

    outcomes = await run_due_tasks(session_factory, now=t0 + timedelta(minutes=6, seconds=59))

    assert outcomes == {}
    assert (await _booking(session_factory, booking.id)).status == BookingStatus.PENDING.value
    assert await _occupied(session_factory, test_show.id) == ["A1"]


@pytest.mark.asyncio
async def test_paid_booking_keeps_seats(db_session, session_factory, test_show):
    t0 = utcnow()
    booking = await reserve_seats(db_session, test_show.id, ["A1", "A2"], "user_1", now=t0)
    await confirm_payment(db_session, booking.id, now=t0 + timedelta(minutes=1))

    outcomes = await run_due_tasks(session_factory, now=t0 + timedelta(minutes=8))

    assert outcomes == {}
    assert (await _booking(session_factory, booking.id)).status == BookingStatus.PAID.value
    assert await _occupied(session_factory, test_show.id) == ["A1", "A2"]
    task = await _task_for(session_factory, booking.id)
    assert task.outcome == ExpiryOutcome.SUPPRESSED.value


@pytest.mark.asyncio
async def test_release_leaves_other_bookings_alone(db_session, session_factory, test_show):
    t0 = utcnow()
    expiring = await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)
    later = await reserve_seats(db_session, test_show.id, ["B1"], "user_2", now=t0 + timedelta(minutes=5))

    await run_due_tasks(session_factory, now=t0 + timedelta(minutes=8))

    assert (await _booking(session_factory, expiring.id)).status == BookingStatus.CANCELLED.value
    assert (await _booking(session_factory, later.id)).status == BookingStatus.PENDING.value
    assert await _occupied(session_factory, test_show.id) == ["B1"]


@pytest.mark.asyncio
async def test_released_seats_can_be_booked_again(db_session, session_factory, test_show):
    t0 = utcnow()
    await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)
    await run_due_tasks(session_factory, now=t0 + timedelta(minutes=8))

    rebooked = await reserve_seats(db_session, test_show.id, ["A1"], "user_2")
    assert rebooked.status == BookingStatus.PENDING.value
    assert await _occupied(session_factory, test_show.id) == ["A1"]


@pytest.mark.asyncio
async def test_second_pass_is_a_noop(db_session, session_factory, test_show):
    t0 = utcnow()
    await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)

    first = await run_due_tasks(session_factory, now=t0 + timedelta(minutes=8))
    second = await run_due_tasks(session_factory, now=t0 + timedelta(minutes=9))

    assert first == {"released": 1}
    assert second == {}


@pytest.mark.asyncio
async def test_payment_between_claim_and_evaluate_wins(db_session, session_factory, test_show):
    t0 = utcnow()
    due = t0 + timedelta(minutes=8)
    booking = await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)
    task = await _task_for(session_factory, booking.id)

    async with session_factory() as worker_db:
        assert await claim_task(worker_db, task.id, due)
        await confirm_payment(db_session, booking.id, now=due)
        outcome = await evaluate_task(worker_db, task.id, due)

    assert outcome == ExpiryOutcome.NOOP.value
    assert (await _booking(session_factory, booking.id)).status == BookingStatus.PAID.value
    assert await _occupied(session_factory, test_show.id) == ["A1"]

    # The confirmation closed the task first; evaluation must not overwrite it
    finished = await _task_for(session_factory, booking.id)
    assert finished.state == ExpiryState.DONE.value
    assert finished.outcome == ExpiryOutcome.SUPPRESSED.value


@pytest.mark.asyncio
async def test_claimed_task_not_claimed_twice(db_session, session_factory, test_show):
    t0 = utcnow()
    due = t0 + timedelta(minutes=8)
    booking = await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)
    task = await _task_for(session_factory, booking.id)

    async with session_factory() as first, session_factory() as second:
        assert await claim_task(first, task.id, due) is True
        assert await claim_task(second, task.id, due) is False


@pytest.mark.asyncio
async def test_lapsed_lease_is_reclaimed(db_session, session_factory, test_show):
    """A worker that claimed a task and died does not strand the hold."""
    t0 = utcnow()
    due = t0 + timedelta(minutes=8)
    booking = await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)
    task = await _task_for(session_factory, booking.id)

    async with session_factory() as crashed:
        assert await claim_task(crashed, task.id, due)

    assert await run_due_tasks(session_factory, now=due + timedelta(seconds=30)) == {}
    assert await _occupied(session_factory, test_show.id) == ["A1"]

    outcomes = await run_due_tasks(session_factory, now=due + timedelta(minutes=2))
    assert outcomes == {"released": 1}
    assert (await _task_for(session_factory, booking.id)).attempts == 2


@pytest.mark.asyncio
async def test_failed_release_is_rolled_back_and_retried(db_session, session_factory, test_show, monkeypatch):
    t0 = utcnow()
    due = t0 + timedelta(minutes=8)
    booking = await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)

    async def broken_release(*args, **kwargs):
        raise RuntimeError("seat map unavailable")

    monkeypatch.setattr(expiry_service, "release_seats", broken_release)
    assert await run_due_tasks(session_factory, now=due) == {"failed": 1}

    # The cancel was rolled back with the failed release
    assert (await _booking(session_factory, booking.id)).status == BookingStatus.PENDING.value
    assert await _occupied(session_factory, test_show.id) == ["A1"]

    task = await _task_for(session_factory, booking.id)
    assert task.state == ExpiryState.ARMED.value
    assert task.attempts == 1
    assert "seat map unavailable" in task.last_error

    monkeypatch.setattr(expiry_service, "release_seats", release_seats)
    backoff = get_settings().EXPIRY_RETRY_BACKOFF_SECONDS
    assert await run_due_tasks(session_factory, now=due + timedelta(seconds=backoff - 1)) == {}
    assert await run_due_tasks(session_factory, now=due + timedelta(seconds=backoff)) == {"released": 1}
    assert await _occupied(session_factory, test_show.id) == []


@pytest.mark.asyncio
async def test_repeated_failures_raise_alert(db_session, session_factory, test_show, monkeypatch):
    t0 = utcnow()
    booking = await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=t0)

    async def broken_release(*args, **kwargs):
        raise RuntimeError("seat map unavailable")

    monkeypatch.setattr(expiry_service, "release_seats", broken_release)
    monkeypatch.setattr(get_settings(), "EXPIRY_ALERT_AFTER_ATTEMPTS", 2)
    alerts_before = REGISTRY.get_sample_value("expiry_task_alerts_total") or 0

    now = t0 + timedelta(minutes=8)
    for _ in range(3):
        await run_due_tasks(session_factory, now=now)
        now += timedelta(seconds=get_settings().EXPIRY_RETRY_BACKOFF_SECONDS)

    assert (await _task_for(session_factory, booking.id)).attempts == 3
    assert REGISTRY.get_sample_value("expiry_task_alerts_total") - alerts_before == 2


@pytest.mark.asyncio
async def test_release_seats_skips_labels_already_gone(db_session, session_factory, make_show):
    show = await make_show(occupied_seats={"A1": "user_1", "A2": "user_2"})
    removed = await release_seats(db_session, show.id, ["A1", "A9"], utcnow())
    await db_session.commit()

    assert removed == ["A1"]
    assert await _occupied(session_factory, show.id) == ["A2"]


@pytest.mark.asyncio
async def test_release_seats_unknown_show(db_session):
    assert await release_seats(db_session, 424242, ["A1"], utcnow()) == []


@pytest.mark.asyncio
async def test_worker_pass_releases_due_holds(db_session, session_factory, test_show):
    long_ago = utcnow() - timedelta(minutes=30)
    booking = await reserve_seats(db_session, test_show.id, ["A1"], "user_1", now=long_ago)

    worker = ExpiryWorker(session_factory, poll_interval=0.01, batch_size=10)
    assert await worker.run_once() == {"released": 1}
    assert (await _booking(session_factory, booking.id)).status == BookingStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_worker_stops_cleanly(session_factory):
    worker = ExpiryWorker(session_factory, poll_interval=0.01)
    worker.start()
    await worker.stop()
    assert worker._task is None
