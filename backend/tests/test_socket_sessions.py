import asyncio

import pytest

from ridefleet.core.errors import Unauthorized
from ridefleet.services.socket_sessions import TOKEN_REFRESH_REQUIRED, SocketSessionTracker


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TokenTable:
    def __init__(self):
        self.payloads: dict[str, dict] = {}

    def add(self, token: str, sub: str, exp: float, **claims) -> str:
        self.payloads[token] = {"sub": sub, "exp": exp, "type": "access", **claims}
        return token

    def __call__(self, token: str) -> dict:
        if token not in self.payloads:
            raise Unauthorized("Invalid token", reason="token_invalid")
        return self.payloads[token]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def table():
    return TokenTable()


@pytest.fixture
def tracker(table, clock):
    return SocketSessionTracker(table, expiry_warning_seconds=120, sweep_interval_seconds=60, clock=clock)


def test_authenticate_tracks_connection(tracker, table, clock):
    table.add("t1", "user-1", clock.now + 900, roles=["driver"], profileId="p-1", permissions=["rides:view"])
    assert tracker.authenticate("c1", "t1")
    assert "c1" in tracker
    assert tracker.is_authenticated("c1")

    user = tracker.get_user("c1")
    assert user.user_id == "user-1"
    assert user.roles == ["driver"]
    assert user.profile_id == "p-1"


@pytest.mark.parametrize("token", [None, "", "unknown"])
def test_authenticate_rejects_bad_tokens(tracker, token):
    assert tracker.authenticate("c1", token) is False
    assert len(tracker) == 0


def test_refresh_same_subject_extends_expiry(tracker, table, clock):
    table.add("t1", "user-1", clock.now + 60)
    table.add("t2", "user-1", clock.now + 900)
    tracker.authenticate("c1", "t1")

    assert tracker.refresh("c1", "t2")
    clock.now += 300
    assert tracker.is_authenticated("c1")


def test_refresh_for_other_subject_leaves_state_untouched(tracker, table, clock):
    table.add("t1", "user-1", clock.now + 900)
    table.add("t2", "user-2", clock.now + 9000)
    tracker.authenticate("c1", "t1")

    assert tracker.refresh("c1", "t2") is False
    assert tracker.get_user("c1").user_id == "user-1"
    clock.now += 901
    assert tracker.is_authenticated("c1") is False


def test_refresh_of_untracked_connection_fails(tracker, table, clock):
    table.add("t1", "user-1", clock.now + 900)
    assert tracker.refresh("c9", "t1") is False
    assert "c9" not in tracker


def test_expired_connection_is_not_authenticated(tracker, table, clock):
    table.add("t1", "user-1", clock.now + 30)
    tracker.authenticate("c1", "t1")
    clock.now += 30
    assert tracker.is_authenticated("c1") is False
    assert tracker.get_user("c1") is None


def test_sweep_removes_only_expired(tracker, table, clock):
    table.add("short", "user-1", clock.now + 10)
    table.add("long", "user-2", clock.now + 900)
    tracker.authenticate("c1", "short")
    tracker.authenticate("c2", "long")

    clock.now += 11
    assert tracker.sweep() == 1
    assert "c1" not in tracker
    assert "c2" in tracker


def test_stats(tracker, table, clock):
    table.add("a", "user-1", clock.now - 1)
    table.add("b", "user-2", clock.now + 60)
    table.add("c", "user-3", clock.now + 900)
    for cid, token in (("c1", "a"), ("c2", "b"), ("c3", "c")):
        tracker.authenticate(cid, token)
    assert tracker.stats() == {"total": 3, "expiring_soon": 1, "expired": 1}


def test_disconnect_is_idempotent(tracker, table, clock):
    table.add("t1", "user-1", clock.now + 900)
    tracker.authenticate("c1", "t1")
    tracker.disconnect("c1")
    tracker.disconnect("c1")
    assert len(tracker) == 0


def test_expiry_warning_is_sent_before_expiry(table, clock):
    tracker = SocketSessionTracker(table, expiry_warning_seconds=120, clock=clock)
    table.add("t1", "user-1", clock.now + 120.05)
    received = []

    async def notify(event, data):
        received.append((event, data))

    async def scenario():
        tracker.authenticate("c1", "t1", notify=notify)
        await asyncio.sleep(0.3)

    asyncio.run(scenario())
    assert len(received) == 1
    event, data = received[0]
    assert event == TOKEN_REFRESH_REQUIRED
    assert data["expiresIn"] == 120
    assert data["expiresAt"].endswith("+00:00")


def test_warning_task_is_held_until_done(table, clock):
    tracker = SocketSessionTracker(table, expiry_warning_seconds=120, clock=clock)
    table.add("t1", "user-1", clock.now + 120.05)
    in_flight = []

    async def notify(event, data):
        in_flight.append(len(tracker._warning_tasks))
        await asyncio.sleep(0.05)

    async def scenario():
        tracker.authenticate("c1", "t1", notify=notify)
        await asyncio.sleep(0.3)
        return len(tracker._warning_tasks)

    assert asyncio.run(scenario()) == 0
    assert in_flight == [1]


def test_warning_is_dropped_after_disconnect(table, clock):
    tracker = SocketSessionTracker(table, expiry_warning_seconds=120, clock=clock)
    table.add("t1", "user-1", clock.now + 120.05)
    received = []

    async def notify(event, data):
        received.append(event)

    async def scenario():
        tracker.authenticate("c1", "t1", notify=notify)
        tracker.disconnect("c1")
        await asyncio.sleep(0.3)

    asyncio.run(scenario())
    assert received == []


def test_sweep_loop_runs_between_start_and_stop(table, clock):
    tracker = SocketSessionTracker(table, sweep_interval_seconds=0.05, clock=clock)
    table.add("t1", "user-1", clock.now - 1)
    tracker.authenticate("c1", "t1")

    async def scenario():
        await tracker.start()
        await asyncio.sleep(0.2)
        swept = "c1" not in tracker
        await tracker.stop()
        return swept

    assert asyncio.run(scenario()) is True


@pytest.mark.parametrize(
    "query, header, expected",
    [
        ("abc", None, "abc"),
        (None, "Bearer xyz", "xyz"),
        ("abc", "Bearer xyz", "abc"),
        (None, "Basic xyz", None),
        (None, "Bearer ", None),
        (None, None, None),
    ],
)
def test_extract_token(query, header, expected):
    assert SocketSessionTracker.extract_token(query, header) == expected
