"""
Lock manager tests.

The distributed manager runs against MockRedis; the local manager uses
real asyncio locks.
"""

import asyncio

import pytest

OWNER = "owner"
CLUB_ID = "club-1"


class TestLockKeys:
    def test_lock_key_per_scope(self):
        from pokerclub.tournament.locks import LockScope, make_lock_key

        assert make_lock_key(LockScope.GAME, "g1") == "lock:game:g1"
        assert make_lock_key(LockScope.TABLES, "g1") == "lock:game:g1:tables"
        assert make_lock_key(LockScope.TREASURY, "c1") == "lock:club:c1:treasury"
        assert make_lock_key(LockScope.NETWORK) == "lock:network"


class TestLocalLockManager:
    @pytest.mark.asyncio
    async def test_held_lock_times_out(self):
        from pokerclub.tournament.locks import LocalLockManager, LockScope
        from pokerclub.utils.errors import ErrorCode, LockAcquisitionError

        locks = LocalLockManager()
        async with locks.lock(LockScope.GAME, "g1"):
            assert await locks.is_locked(LockScope.GAME, "g1")
            with pytest.raises(LockAcquisitionError) as exc_info:
                await locks.acquire(LockScope.GAME, "g1", acquire_timeout_ms=20)

        assert exc_info.value.code == ErrorCode.LOCK_TIMEOUT.value
        assert exc_info.value.details == {"lockKey": "lock:game:g1", "timeoutMs": 20}
        assert not await locks.is_locked(LockScope.GAME, "g1")

    @pytest.mark.asyncio
    async def test_lock_many_sorts_and_deduplicates(self):
        from pokerclub.tournament.locks import LocalLockManager, LockScope

        locks = LocalLockManager()
        requests = [
            (LockScope.GAME, "g1"),
            (LockScope.NETWORK, None),
            (LockScope.TREASURY, "c1"),
            (LockScope.GAME, "g1"),
        ]
        async with locks.lock_many(requests) as held:
            assert [info.lock_key for info in held] == [
                "lock:club:c1:treasury",
                "lock:game:g1",
                "lock:network",
            ]

        assert not await locks.is_locked(LockScope.NETWORK)

    @pytest.mark.asyncio
    async def test_lock_many_releases_a_partial_acquisition(self):
        from pokerclub.tournament.locks import LocalLockManager, LockScope
        from pokerclub.utils.errors import LockAcquisitionError

        locks = LocalLockManager(default_acquire_timeout_ms=20)
        async with locks.lock(LockScope.GAME, "g1"):
            with pytest.raises(LockAcquisitionError):
                # Treasury sorts first and is taken; the game lock then times out
                async with locks.lock_many(
                    [(LockScope.GAME, "g1"), (LockScope.TREASURY, "c1")]
                ):
                    pass
            assert not await locks.is_locked(LockScope.TREASURY, "c1")

    @pytest.mark.asyncio
    async def test_waiter_gets_the_lock_after_release(self):
        from pokerclub.tournament.locks import LocalLockManager, LockScope

        locks = LocalLockManager()
        order = []

        async def worker(name):
            async with locks.lock(LockScope.GAME, "g1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        from pokerclub.tournament.locks import LocalLockManager, LockScope
        from pokerclub.utils.errors import LockAcquisitionError

        locks = LocalLockManager()
        async with locks.lock(LockScope.GAME, "g1"):
            with pytest.raises(LockAcquisitionError):
                await locks.acquire(LockScope.GAME, "g1", acquire_timeout_ms=20)
            assert list(locks._locks) == ["lock:game:g1"]

        for i in range(50):
            async with locks.lock(LockScope.GAME, f"g{i}"):
                pass

        assert locks._locks == {}
        assert locks._users == {}


class TestDistributedLockManager:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, mock_redis):
        from pokerclub.tournament.locks import DistributedLockManager, LockScope

        locks = DistributedLockManager(mock_redis)
        info = await locks.acquire(LockScope.TREASURY, "c1")

        assert info.lock_key == "lock:club:c1:treasury"
        assert await mock_redis.get("lock:club:c1:treasury") == info.owner_id
        assert await locks.is_locked(LockScope.TREASURY, "c1")

        assert await locks.release(info) is True
        assert not await locks.is_locked(LockScope.TREASURY, "c1")
        # Second release finds nothing to delete
        assert await locks.release(info) is False

    @pytest.mark.asyncio
    async def test_contention_between_instances(self, mock_redis):
        from pokerclub.tournament.locks import DistributedLockManager, LockScope
        from pokerclub.utils.errors import LockAcquisitionError

        first = DistributedLockManager(mock_redis)
        second = DistributedLockManager(mock_redis, retry_interval_ms=5)

        held = await first.acquire(LockScope.GAME, "g1")
        with pytest.raises(LockAcquisitionError):
            await second.acquire(LockScope.GAME, "g1", acquire_timeout_ms=30)

        # A foreign token cannot release someone else's lock
        stolen = await second.acquire(LockScope.GAME, "g2")
        forged = type(stolen)(
            lock_key=held.lock_key,
            owner_id=stolen.owner_id,
            acquired_at=stolen.acquired_at,
            expires_at=stolen.expires_at,
            scope=held.scope,
        )
        assert await second.release(forged) is False
        assert await mock_redis.get("lock:game:g1") == held.owner_id

    @pytest.mark.asyncio
    async def test_renew_only_while_owned(self, mock_redis):
        from pokerclub.tournament.locks import DistributedLockManager, LockScope

        locks = DistributedLockManager(mock_redis, default_lock_timeout_ms=1000)
        info = await locks.acquire(LockScope.NETWORK)

        assert await locks.renew(info, additional_time_ms=5000) is True
        assert mock_redis._expiry["lock:network"] == 5000

        await locks.release(info)
        assert await locks.renew(info) is False

    @pytest.mark.asyncio
    async def test_cleanup_all_drops_tracked_locks(self, mock_redis):
        from pokerclub.tournament.locks import DistributedLockManager, LockScope

        locks = DistributedLockManager(mock_redis)
        await locks.acquire(LockScope.GAME, "g1")
        await locks.acquire(LockScope.GAME, "g2")

        assert await locks.cleanup_all() == 2
        assert not await locks.is_locked(LockScope.GAME, "g1")


class TestConcurrentOperations:
    @pytest.mark.asyncio
    async def test_concurrent_buy_ins_keep_exact_totals(
        self, engine, game, check_in_players
    ):
        players = [f"p{i}" for i in range(1, 13)]
        await check_in_players(game.game_id, len(players))

        await asyncio.gather(
            *(engine.record_buy_in(game.game_id, person_id, OWNER) for person_id in players)
        )

        assert engine.get_game(game.game_id).prize_pool == 60000
        assert (await engine.get_treasury_balance(CLUB_ID, OWNER)).current_balance == 60000
        assert all(engine.store.get_session(game.game_id, p).buy_in_paid for p in players)

    @pytest.mark.asyncio
    async def test_concurrent_money_over_distributed_locks(
        self, mock_redis, settings, memberships, clock
    ):
        from pokerclub.tournament.engine import TournamentEngine
        from pokerclub.tournament.locks import DistributedLockManager
        from pokerclub.tournament.permissions import Authorizer

        engine = TournamentEngine(
            locks=DistributedLockManager(
                mock_redis, default_acquire_timeout_ms=2000, retry_interval_ms=1
            ),
            authorizer=Authorizer(memberships),
            settings=settings,
            clock=clock,
        )
        game = await engine.create_game(CLUB_ID, OWNER, buy_in_amount=1000)
        for i in range(1, 7):
            await engine.check_in(game.game_id, f"p{i}", OWNER)

        await asyncio.gather(
            *(engine.record_buy_in(game.game_id, f"p{i}", OWNER) for i in range(1, 7)),
            engine.record_expense(CLUB_ID, 500, "EXPENSE_DRINKS", "Water", OWNER),
            engine.record_dues_payment(CLUB_ID, "p1", 300, OWNER),
        )

        treasury = await engine.get_treasury_balance(CLUB_ID, OWNER)
        assert treasury.current_balance == 6000 - 500 + 300
        page = await engine.get_treasury_ledger(CLUB_ID, OWNER)
        assert page.entries[0].running_balance == treasury.current_balance
        assert page.entries[-1].running_balance == page.entries[-1].transaction.treasury_delta
        # Nothing left locked
        assert not [k for k in mock_redis._data if k.startswith("lock:")]

    @staticmethod
    def _engine(lock_kind, mock_redis, settings, memberships, clock):
        from pokerclub.tournament.engine import TournamentEngine
        from pokerclub.tournament.locks import DistributedLockManager, LocalLockManager
        from pokerclub.tournament.permissions import Authorizer

        if lock_kind == "redis":
            locks = DistributedLockManager(
                mock_redis, default_acquire_timeout_ms=5000, retry_interval_ms=1
            )
        else:
            locks = LocalLockManager(default_acquire_timeout_ms=5000)
        return TournamentEngine(
            locks=locks,
            authorizer=Authorizer(memberships),
            settings=settings,
            clock=clock,
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lock_kind", ["local", "redis"])
    async def test_concurrent_check_ins_never_share_a_seat(
        self, lock_kind, mock_redis, settings, memberships, clock
    ):
        engine = self._engine(lock_kind, mock_redis, settings, memberships, clock)
        game = await engine.create_game(CLUB_ID, OWNER, buy_in_amount=1000)

        sessions = await asyncio.gather(
            *(engine.check_in(game.game_id, f"p{i}", OWNER) for i in range(1, 26))
        )

        seats = [
            (s.table_number, s.seat_number)
            for s in engine.store.active_sessions(game.game_id)
        ]
        assert len(seats) == 25
        assert len(set(seats)) == 25
        assert sorted(s.check_in_order for s in sessions) == list(range(1, 26))
        assert not [k for k in mock_redis._data if k.startswith("lock:")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lock_kind", ["local", "redis"])
    async def test_racing_clock_controls_leave_a_consistent_game(
        self, lock_kind, mock_redis, settings, memberships, clock
    ):
        from pokerclub.tournament.locks import LockScope
        from pokerclub.tournament.models import GameStatus
        from pokerclub.utils.errors import InvalidTransitionError

        engine = self._engine(lock_kind, mock_redis, settings, memberships, clock)
        game = await engine.create_game(CLUB_ID, OWNER)
        await engine.check_in(game.game_id, "p1", OWNER)
        await engine.check_in(game.game_id, "p2", OWNER)
        await engine.start_game(game.game_id, OWNER)

        calls = [
            engine.pause_game,
            engine.advance_level,
            engine.resume_game,
            engine.pause_game,
            engine.advance_level,
            engine.resume_game,
            engine.pause_game,
        ]
        results = await asyncio.gather(
            *(call(game.game_id, OWNER) for call in calls), return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(r, InvalidTransitionError) for r in failures)
        advances = sum(
            1
            for call, result in zip(calls, results)
            if call == engine.advance_level and not isinstance(result, Exception)
        )

        final = engine.get_game(game.game_id)
        assert final.status in {GameStatus.ACTIVE, GameStatus.PAUSED, GameStatus.BREAK}
        assert final.current_level == 1 + advances
        assert (final.paused_at is not None) == (final.status == GameStatus.PAUSED)
        assert final.level_started_at is not None
        assert final.total_paused_ms >= 0
        assert not await engine.locks.is_locked(LockScope.GAME, game.game_id)
