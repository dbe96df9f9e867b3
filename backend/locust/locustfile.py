"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention   # Many users, same seats
  locust -f locustfile.py --tags throughput   # Test cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests

Tokens are minted locally with the service's SECRET_KEY, so run with the
same environment as the API (backend/ on PYTHONPATH).
"""

import random
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

from showbook.core.security import create_access_token

# Shared state
SHOW_IDS = []
CONTENTION_SHOW_ID = None
ROWS = "ABCDEFGH"


def user_headers(role=None):
    claims = {"sub": f"load_{random.randint(10000, 99999)}"}
    if role:
        claims["role"] = role
    token = create_access_token(data=claims, expires_delta=timedelta(hours=2))
    return {"Authorization": f"Bearer {token}"}


def random_seats(count, rows=ROWS, per_row=12):
    labels = {f"{random.choice(rows)}{random.randint(1, per_row)}" for _ in range(count)}
    return sorted(labels)


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: contention show is created by the first ContentionUser")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - 100 users fight over one 2x6 block of seats

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify no seat was sold twice:
      SELECT occupied_seats FROM shows WHERE id = X;
      SELECT booked_seats FROM bookings WHERE show_id = X AND status <> 'cancelled';
    Every label must appear in at most one live booking.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = user_headers()

        if not CONTENTION_SHOW_ID:
            future = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
            resp = self.client.post(
                "/api/v1/shows/",
                json={"movie_id": "load-test", "starts_at": future, "price": 10},
                headers=user_headers(role="admin"),
            )
            if resp.status_code == 201:
                globals()["CONTENTION_SHOW_ID"] = resp.json()["id"]
                print(f"\nCreated contention show {CONTENTION_SHOW_ID}\n")

    @tag("contention")
    @task
    def claim_overlapping_seats(self):
        """Everybody picks from rows A and B, seats 1-6."""
        if not CONTENTION_SHOW_ID:
            return

        with self.client.post(
            "/api/v1/bookings/",
            json={"show_id": CONTENTION_SHOW_ID, "seats": random_seats(2, rows="AB", per_row=6)},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: seats already held
            elif resp.status_code == 503:
                resp.success()  # Seat map busy, client would retry
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_shows_cached(self):
        """Hammer the cached endpoint."""
        page = random.randint(1, 5)
        self.client.get(f"/api/v1/shows/?page={page}&page_size=20",
            name="/api/v1/shows/ [cached]")

    @tag("throughput", "read")
    @task(3)
    def get_seat_map(self):
        """Occupancy is always read from the database."""
        if SHOW_IDS:
            show_id = random.choice(SHOW_IDS)
            self.client.get(f"/api/v1/bookings/seats/{show_id}",
                name="/api/v1/bookings/seats/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = user_headers()

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_show(self):
        with self.client.post("/api/v1/bookings/",
            json={"show_id": 999999, "seats": ["A1"]},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def malformed_labels(self):
        with self.client.post("/api/v1/bookings/",
            json={"show_id": 1, "seats": ["1A", "seat"]},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 404])

    @tag("edge")
    @task
    def duplicate_labels(self):
        with self.client.post("/api/v1/bookings/",
            json={"show_id": 1, "seats": ["A1", "A1"]},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 404])

    @tag("edge")
    @task
    def empty_selection(self):
        with self.client.post("/api/v1/bookings/",
            json={"show_id": 1, "seats": []},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/bookings/",
            json={"show_id": 1, "seats": ["A1"]},
            catch_response=True
        ) as resp:
            self._expect(resp, [401])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing the schedule and seat maps
      - Some bookings, a few of them paid via the verify poll
      - Rare show scheduling by an admin
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = user_headers()
        self.admin_headers = user_headers(role="admin")

    @task(50)
    def browse_shows(self):
        resp = self.client.get("/api/v1/shows/?page=1&page_size=20")
        if resp.status_code == 200:
            for show in resp.json().get("shows", []):
                if show["id"] not in SHOW_IDS:
                    SHOW_IDS.append(show["id"])

    @task(20)
    def view_seat_map(self):
        if SHOW_IDS:
            self.client.get(f"/api/v1/bookings/seats/{random.choice(SHOW_IDS)}",
                name="/api/v1/bookings/seats/{id}")

    @task(10)
    def book_seats(self):
        if not SHOW_IDS:
            return
        with self.client.post("/api/v1/bookings/",
            json={"show_id": random.choice(SHOW_IDS), "seats": random_seats(random.randint(1, 3))},
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()
                if resp.status_code == 201:
                    self.client.post(f"/api/v1/bookings/{resp.json()['id']}/verify",
                        headers=self.headers,
                        name="/api/v1/bookings/{id}/verify")

    @task(3)
    def create_show(self):
        future = (datetime.now(timezone.utc) + timedelta(days=random.randint(1, 90))).isoformat()
        resp = self.client.post("/api/v1/shows/",
            json={
                "movie_id": str(random.randint(1, 10000)),
                "starts_at": future,
                "price": random.choice([8, 10, 12.5]),
                "tier_prices": {"A": 15},
            },
            headers=self.admin_headers)
        if resp.status_code == 201:
            SHOW_IDS.append(resp.json()["id"])
