"""
Game clock and lifecycle tests.
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings, strategies as st

OWNER = "owner"
LEVEL_MS = 20 * 60_000


def _pure_game(levels=None):
    from pokerclub.tournament.models import BlindLevel, BlindStructure, Game

    levels = levels or [BlindLevel(1, 25, 50, 0, 20), BlindLevel(2, 50, 100, 0, 20)]
    return Game(club_id="club-1", structure=BlindStructure(tuple(levels)))


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_sets_level_one_and_counts_players(self, engine, game, check_in_players):
        from pokerclub.tournament.models import GameStatus

        await check_in_players(game.game_id, 5)
        state = await engine.start_game(game.game_id, OWNER)

        assert state.game.status == GameStatus.ACTIVE
        assert state.game.current_level == 1
        assert state.game.players_registered == 5
        assert state.game.players_remaining == 5
        assert state.time_remaining_ms == LEVEL_MS
        assert state.current_blind.big_blind == 50
        assert state.next_blind.big_blind == 100

    @pytest.mark.asyncio
    async def test_start_twice_is_rejected(self, engine, game):
        from pokerclub.utils.errors import InvalidTransitionError

        await engine.start_game(game.game_id, OWNER)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.start_game(game.game_id, OWNER)
        assert exc_info.value.current == "ACTIVE"

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, engine, game):
        from pokerclub.utils.errors import InvalidTransitionError

        await engine.start_game(game.game_id, OWNER)
        with pytest.raises(InvalidTransitionError):
            await engine.resume_game(game.game_id, OWNER)

    @pytest.mark.asyncio
    async def test_pause_on_pending_game_is_rejected(self, engine, game):
        from pokerclub.utils.errors import InvalidTransitionError

        with pytest.raises(InvalidTransitionError):
            await engine.pause_game(game.game_id, OWNER)

    @pytest.mark.asyncio
    async def test_time_remaining_counts_down_with_the_clock(self, engine, game, clock):
        await engine.start_game(game.game_id, OWNER)
        clock.advance(minutes=7, seconds=30)

        state = engine.get_game_state(game.game_id)
        assert state.time_remaining_ms == LEVEL_MS - 450_000

        clock.advance(hours=1)
        assert engine.get_game_state(game.game_id).time_remaining_ms == 0

    @pytest.mark.asyncio
    async def test_pause_freezes_the_clock(self, engine, game, clock):
        from pokerclub.tournament.models import GameStatus

        await engine.start_game(game.game_id, OWNER)
        clock.advance(minutes=5)
        paused = await engine.pause_game(game.game_id, OWNER)
        assert paused.game.status == GameStatus.PAUSED

        clock.advance(minutes=30)
        assert engine.get_game_state(game.game_id).time_remaining_ms == 15 * 60_000

        resumed = await engine.resume_game(game.game_id, OWNER)
        assert resumed.game.total_paused_ms == 30 * 60_000
        assert resumed.time_remaining_ms == 15 * 60_000

        clock.advance(minutes=1)
        assert engine.get_game_state(game.game_id).time_remaining_ms == 14 * 60_000

    @pytest.mark.asyncio
    async def test_advance_resets_pause_tracking(self, engine, game, clock):
        await engine.start_game(game.game_id, OWNER)
        await engine.pause_game(game.game_id, OWNER)
        clock.advance(minutes=3)
        await engine.resume_game(game.game_id, OWNER)
        clock.advance(minutes=2)

        state = await engine.advance_level(game.game_id, OWNER)
        assert state.game.current_level == 2
        assert state.game.total_paused_ms == 0
        assert state.game.level_started_at == clock.now
        assert state.time_remaining_ms == LEVEL_MS

    @pytest.mark.asyncio
    async def test_advance_into_break_level(self, engine, game):
        from pokerclub.tournament.models import GameStatus

        await engine.start_game(game.game_id, OWNER)
        await engine.advance_level(game.game_id, OWNER)
        state = await engine.advance_level(game.game_id, OWNER)

        assert state.game.status == GameStatus.BREAK
        assert state.current_blind.is_break
        assert state.level_duration_ms == 10 * 60_000

        # A break can be paused, and resuming returns to play
        await engine.pause_game(game.game_id, OWNER)
        resumed = await engine.resume_game(game.game_id, OWNER)
        assert resumed.game.status == GameStatus.ACTIVE

        after_break = await engine.advance_level(game.game_id, OWNER)
        assert after_break.game.status == GameStatus.ACTIVE
        assert after_break.current_blind.ante == 25

    @pytest.mark.asyncio
    async def test_status_changes_are_audited(self, engine, game):
        await engine.start_game(game.game_id, OWNER)
        await engine.pause_game(game.game_id, OWNER)

        entries, total = await engine.get_audit_log("club-1", OWNER, entity_type="Game")
        statuses = [e.after.get("status") for e in entries]
        assert statuses[:2] == ["PAUSED", "ACTIVE"]
        assert total == 3  # create + start + pause


class TestOverflowPolicies:
    """Advancing past the last blind level."""

    def test_increment_keeps_counting_without_level_data(self):
        from pokerclub.tournament.clock import ClockEngine
        from pokerclub.tournament.models import GameStatus, LevelOverflowPolicy

        engine = ClockEngine(LevelOverflowPolicy.INCREMENT)
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        game = engine.start(_pure_game(), [], now)
        game = engine.advance_level(game, [], now).game
        game = engine.advance_level(game, [], now).game

        assert game.status == GameStatus.ACTIVE
        assert game.current_level == 3
        assert game.current_blind is None
        assert engine.time_remaining_ms(game, now) == 0

    def test_clamp_restarts_the_last_level(self):
        from pokerclub.tournament.clock import ClockEngine
        from pokerclub.tournament.models import LevelOverflowPolicy

        engine = ClockEngine(LevelOverflowPolicy.CLAMP)
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        game = engine.start(_pure_game(), [], start)
        game = engine.advance_level(game, [], start).game

        later = start + timedelta(minutes=25)
        game = engine.advance_level(game, [], later).game
        assert game.current_level == 2
        assert game.level_started_at == later
        assert engine.time_remaining_ms(game, later) == LEVEL_MS

    def test_complete_ends_the_game(self):
        from pokerclub.tournament.clock import ClockEngine
        from pokerclub.tournament.models import GameSession, GameStatus, LevelOverflowPolicy

        engine = ClockEngine(LevelOverflowPolicy.COMPLETE)
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        game = engine.start(_pure_game(), [], now)
        game = engine.advance_level(game, [], now).game

        survivor = GameSession(game_id=game.game_id, person_id="p1")
        transition = engine.advance_level(game, [survivor], now)
        assert transition.game.status == GameStatus.COMPLETED
        assert transition.winner.person_id == "p1"
        assert transition.winner.finish_position == 1

    def test_reject_refuses_the_transition(self):
        from pokerclub.tournament.clock import ClockEngine
        from pokerclub.tournament.models import LevelOverflowPolicy
        from pokerclub.utils.errors import InvalidTransitionError

        engine = ClockEngine(LevelOverflowPolicy.REJECT)
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        game = engine.start(_pure_game(), [], now)
        game = engine.advance_level(game, [], now).game

        with pytest.raises(InvalidTransitionError):
            engine.advance_level(game, [], now)


class TestPauseProperty:
    @given(
        st.lists(
            st.tuples(st.integers(0, 300_000), st.integers(0, 600_000)),
            min_size=1,
            max_size=8,
        )
    )
    @settings(max_examples=100, deadline=None)
    def test_paused_time_never_counts_against_the_level(self, segments):
        """Any run/pause sequence leaves remaining = duration - running time."""
        from pokerclub.tournament.clock import ClockEngine

        engine = ClockEngine()
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        game = engine.start(_pure_game(), [], now)

        running_ms = 0
        for run_ms, pause_ms in segments:
            now += timedelta(milliseconds=run_ms)
            running_ms += run_ms
            game = engine.pause(game, now)
            now += timedelta(milliseconds=pause_ms)
            assert engine.time_remaining_ms(game, now) == max(0, LEVEL_MS - running_ms)
            game = engine.resume(game, now)

        assert game.total_paused_ms == sum(p for _, p in segments)
        assert engine.time_remaining_ms(game, now) == max(0, LEVEL_MS - running_ms)


class TestElimination:
    @pytest.mark.asyncio
    async def test_finish_positions_count_down_to_the_winner(
        self, engine, game, check_in_players, notifier
    ):
        from pokerclub.tournament.models import GameStatus, SessionStatus

        await check_in_players(game.game_id, 4)
        await engine.start_game(game.game_id, OWNER)

        await engine.eliminate_player(game.game_id, "p4", OWNER, eliminated_by="p1")
        await engine.eliminate_player(game.game_id, "p3", OWNER)
        state = await engine.eliminate_player(game.game_id, "p2", OWNER, eliminated_by="p1")
        assert state.game.players_remaining == 1

        final = await engine.end_game(game.game_id, OWNER)
        assert final.game.status == GameStatus.COMPLETED
        assert final.time_remaining_ms == 0

        positions = {s.person_id: (s.finish_position, s.status) for s in final.players}
        assert positions == {
            "p1": (1, SessionStatus.WINNER),
            "p2": (2, SessionStatus.ELIMINATED),
            "p3": (3, SessionStatus.ELIMINATED),
            "p4": (4, SessionStatus.ELIMINATED),
        }
        assert engine.store.get_session(game.game_id, "p4").eliminated_by == "p1"
        assert "Winner!" in notifier.titles_for("p1")
        assert "You're out" in notifier.titles_for("p4")

    @pytest.mark.asyncio
    async def test_ending_with_several_players_left_crowns_nobody(
        self, engine, game, check_in_players
    ):
        await check_in_players(game.game_id, 3)
        await engine.start_game(game.game_id, OWNER)
        final = await engine.end_game(game.game_id, OWNER)

        assert all(s.finish_position is None for s in final.players)

    @pytest.mark.asyncio
    async def test_last_player_cannot_be_eliminated(self, engine, game, check_in_players):
        from pokerclub.utils.errors import ValidationError

        await check_in_players(game.game_id, 2)
        await engine.start_game(game.game_id, OWNER)
        await engine.eliminate_player(game.game_id, "p2", OWNER)

        with pytest.raises(ValidationError):
            await engine.eliminate_player(game.game_id, "p1", OWNER)

    @pytest.mark.asyncio
    async def test_double_elimination_is_rejected(self, engine, game, check_in_players):
        from pokerclub.utils.errors import ValidationError

        await check_in_players(game.game_id, 3)
        await engine.start_game(game.game_id, OWNER)
        await engine.eliminate_player(game.game_id, "p3", OWNER)

        with pytest.raises(ValidationError):
            await engine.eliminate_player(game.game_id, "p3", OWNER)
        assert engine.get_game(game.game_id).players_remaining == 2

    @pytest.mark.asyncio
    async def test_self_elimination_is_rejected(self, engine, game, check_in_players):
        from pokerclub.utils.errors import ValidationError

        await check_in_players(game.game_id, 3)
        await engine.start_game(game.game_id, OWNER)
        with pytest.raises(ValidationError):
            await engine.eliminate_player(game.game_id, "p2", OWNER, eliminated_by="p2")

    @pytest.mark.asyncio
    async def test_elimination_requires_a_running_game(self, engine, game, check_in_players):
        from pokerclub.utils.errors import InvalidTransitionError

        await check_in_players(game.game_id, 3)
        with pytest.raises(InvalidTransitionError):
            await engine.eliminate_player(game.game_id, "p3", OWNER)

    @pytest.mark.asyncio
    async def test_unknown_player_is_not_found(self, engine, game, check_in_players):
        from pokerclub.utils.errors import NotFoundError

        await check_in_players(game.game_id, 2)
        await engine.start_game(game.game_id, OWNER)
        with pytest.raises(NotFoundError):
            await engine.eliminate_player(game.game_id, "ghost", OWNER)

    @pytest.mark.asyncio
    async def test_failed_notification_does_not_undo_elimination(
        self, settings, memberships, clock, failing_notifier
    ):
        from pokerclub.tournament.engine import TournamentEngine
        from pokerclub.tournament.models import SessionStatus
        from pokerclub.tournament.permissions import Authorizer

        engine = TournamentEngine(
            authorizer=Authorizer(memberships),
            notifier=failing_notifier,
            settings=settings,
            clock=clock,
        )
        game = await engine.create_game("club-1", OWNER)
        for person_id in ("a", "b", "c"):
            await engine.check_in(game.game_id, person_id, OWNER)
        await engine.start_game(game.game_id, OWNER)

        await engine.eliminate_player(game.game_id, "c", OWNER)
        assert engine.store.get_session(game.game_id, "c").status == SessionStatus.ELIMINATED


class TestPlayers:
    @pytest.mark.asyncio
    async def test_check_in_is_idempotent(self, engine, game):
        first = await engine.check_in(game.game_id, "p1", OWNER)
        second = await engine.check_in(game.game_id, "p1", OWNER)

        assert first.session_id == second.session_id
        assert engine.get_game(game.game_id).players_registered == 1

    @pytest.mark.asyncio
    async def test_check_in_after_completion_is_rejected(self, engine, game):
        from pokerclub.utils.errors import InvalidTransitionError

        await engine.start_game(game.game_id, OWNER)
        await engine.end_game(game.game_id, OWNER)
        with pytest.raises(InvalidTransitionError):
            await engine.check_in(game.game_id, "late", OWNER)

    @pytest.mark.asyncio
    async def test_update_stack(self, engine, game):
        from pokerclub.utils.errors import ValidationError

        await engine.check_in(game.game_id, "p1", OWNER)
        session = await engine.update_player_stack(game.game_id, "p1", 23500, OWNER)
        assert session.current_stack == 23500

        with pytest.raises(ValidationError):
            await engine.update_player_stack(game.game_id, "p1", -1, OWNER)

    @pytest.mark.asyncio
    async def test_create_game_rejects_empty_structure(self, engine):
        from pokerclub.utils.errors import ValidationError

        with pytest.raises(ValidationError):
            await engine.create_game("club-1", OWNER, structure=[])

    @pytest.mark.asyncio
    async def test_default_structure_has_breaks(self, engine):
        game = await engine.create_game("club-1", OWNER)
        assert any(level.is_break for level in game.structure.levels)
        assert [lvl.level for lvl in game.structure.levels] == list(
            range(1, len(game.structure) + 1)
        )
