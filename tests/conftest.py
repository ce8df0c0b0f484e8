"""Shared fixtures for tournament engine tests."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from pokerclub.config import Settings
from pokerclub.tournament.collaborators import (
    InMemoryMembershipDirectory,
    Membership,
    SystemRole,
)
from pokerclub.tournament.engine import TournamentEngine
from pokerclub.tournament.models import BlindLevel
from pokerclub.tournament.permissions import Authorizer

CLUB_ID = "club-1"
OWNER = "owner"

TEST_LEVELS = [
    BlindLevel(1, 25, 50, 0, 20),
    BlindLevel(2, 50, 100, 0, 20),
    BlindLevel(3, 50, 100, 0, 10, is_break=True),
    BlindLevel(4, 100, 200, 25, 20),
]


class MockRedis:
    """Mock Redis client covering the commands the engine uses."""

    def __init__(self):
        self._data = {}
        self._expiry = {}
        self._streams = {}
        self._stream_seq = 0

    async def set(self, key, value, nx=False, px=None):
        if nx and key in self._data:
            return None
        self._data[key] = value
        if px is not None:
            self._expiry[key] = px
        return True

    async def get(self, key):
        return self._data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
            self._expiry.pop(key, None)
        return removed

    async def exists(self, key):
        return 1 if key in self._data else 0

    def register_script(self, script):
        async def mock_script(keys=None, args=None):
            key, token = keys[0], args[0]
            if self._data.get(key) != token:
                return 0
            if "pexpire" in script:
                self._expiry[key] = int(args[1])
                return 1
            self._data.pop(key, None)
            self._expiry.pop(key, None)
            return 1

        return mock_script

    async def xadd(self, stream, data, maxlen=None, approximate=False):
        self._stream_seq += 1
        stream_id = f"{self._stream_seq}-0"
        entries = self._streams.setdefault(stream, [])
        entries.append((stream_id, dict(data)))
        if maxlen is not None and len(entries) > maxlen:
            del entries[: len(entries) - maxlen]
        return stream_id

    async def xrevrange(self, stream, max="+", min="-", count=None):
        entries = list(reversed(self._streams.get(stream, [])))
        return entries[:count] if count else entries


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 5, 19, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotificationSink:
    def __init__(self):
        self.sent = []

    async def notify(self, person_id, title, body):
        self.sent.append((person_id, title, body))

    def titles_for(self, person_id):
        return [title for pid, title, _ in self.sent if pid == person_id]


class FailingNotificationSink:
    async def notify(self, person_id, title, body):
        raise ConnectionError("push gateway unavailable")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return RecordingNotificationSink()


@pytest.fixture
def failing_notifier():
    return FailingNotificationSink()


@pytest.fixture
def settings():
    return Settings(
        app_env="test",
        level_overflow_policy="increment",
        default_max_seats=9,
        final_table_size=9,
        lock_acquire_timeout_ms=200,
    )


@pytest.fixture
def memberships():
    return InMemoryMembershipDirectory(
        [
            Membership(CLUB_ID, OWNER, SystemRole.OWNER),
            Membership(
                CLUB_ID,
                "dealer",
                SystemRole.MEMBER,
                frozenset({"pause_timer", "eliminate_players"}),
            ),
            Membership(CLUB_ID, "accountant", SystemRole.MEMBER, frozenset({"view_financials"})),
            Membership(CLUB_ID, "clerk", SystemRole.MEMBER, frozenset({"post_expense_only"})),
            Membership(CLUB_ID, "player", SystemRole.MEMBER),
            Membership(
                CLUB_ID, "suspended", SystemRole.ADMIN, frozenset(), status="SUSPENDED"
            ),
        ]
    )


@pytest.fixture
def engine(settings, memberships, notifier, clock):
    return TournamentEngine(
        authorizer=Authorizer(memberships),
        notifier=notifier,
        settings=settings,
        clock=clock,
    )


@pytest_asyncio.fixture
async def game(engine):
    """Club night game: 50.00 buy-in, 50.00 rebuy, 25.00 add-on, 10.00 bounty."""
    return await engine.create_game(
        CLUB_ID,
        OWNER,
        name="Thursday Night",
        structure=TEST_LEVELS,
        buy_in_amount=5000,
        rebuy_amount=5000,
        add_on_amount=2500,
        bounty_amount=1000,
    )


@pytest.fixture
def check_in_players(engine):
    async def _check_in(game_id, count, start=1):
        return [
            await engine.check_in(game_id, f"p{i}", OWNER)
            for i in range(start, start + count)
        ]

    return _check_in


@pytest.fixture
def buy_in_all(engine):
    async def _buy_in(game_id, person_ids, amount=None):
        return [
            await engine.record_buy_in(game_id, person_id, OWNER, amount)
            for person_id in person_ids
        ]

    return _buy_in
