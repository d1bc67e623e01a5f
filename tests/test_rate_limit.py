from app.core.rate_limit import SlidingWindowRateLimiter
from app.main import app as fastapi_app
from tests.conftest import ADULT_DOB


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_allows_up_to_limit_then_denies():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(3, 60, clock=clock)

    results = [limiter.check("quote:1.2.3.4") for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert results[-1].retry_after == 60


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(1, 60, clock=clock)
    assert limiter.check("k").allowed
    assert not limiter.check("k").allowed

    clock.now += 60
    assert limiter.check("k").allowed


def test_keys_are_independent():
    limiter = SlidingWindowRateLimiter(1, 60, clock=FakeClock())
    assert limiter.check("quote:a").allowed
    assert limiter.check("quote:b").allowed
    assert not limiter.check("quote:a").allowed


def test_expired_windows_are_cleaned_up():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(5, 10, clock=clock, cleanup_interval=30)
    limiter.check("old")
    clock.now += 31
    limiter.check("new")
    assert "old" not in limiter._windows


def test_endpoint_returns_429_with_retry_after(client, event):
    fastapi_app.state.rate_limiter = SlidingWindowRateLimiter(2, 60)
    body = {"event_id": event.id, "date_of_birth": ADULT_DOB.isoformat(), "is_full_duration": True}
    headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}

    statuses = [client.post("/pricing/quote", json=body, headers=headers).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
    response = client.post("/pricing/quote", json=body, headers=headers)
    assert int(response.headers["Retry-After"]) >= 1
    assert response.json()["success"] is False

    other = client.post("/pricing/quote", json=body, headers={"X-Forwarded-For": "198.51.100.2"})
    assert other.status_code == 200
