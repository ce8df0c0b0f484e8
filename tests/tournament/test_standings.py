"""
Points, standings and played-together network tests.
"""

import pytest

OWNER = "owner"
CLUB_ID = "club-1"


async def _play_out(engine, game_id, players, bust_order, payouts):
    """Run a game from check-in to locked books."""
    for person_id in players:
        await engine.check_in(game_id, person_id, OWNER)
        await engine.record_buy_in(game_id, person_id, OWNER)
    await engine.start_game(game_id, OWNER)
    for person_id in bust_order:
        await engine.eliminate_player(game_id, person_id, OWNER)
    await engine.end_game(game_id, OWNER)
    for person_id, amount in payouts:
        await engine.record_payout(game_id, person_id, amount, OWNER)
    await engine.lock_financials(game_id, OWNER)


class TestCalculatePoints:
    @pytest.mark.parametrize(
        "position,bounties,expected",
        [
            (1, 2, 70),
            (2, 0, 40),
            (3, 1, 35),
            (5, 0, 15),
            (7, 0, 12),
            (10, 0, 12),
            (11, 0, 10),
            (None, 0, 10),
            (None, 3, 25),
        ],
    )
    def test_points_formula(self, position, bounties, expected):
        from pokerclub.tournament.standings import calculate_points

        assert calculate_points(position, bounties) == expected


class TestFinalizeResults:
    @pytest.mark.asyncio
    async def test_points_are_written_once(self, engine, game, notifier):
        from pokerclub.tournament.models import SessionStatus

        players = ["p1", "p2", "p3"]
        await engine.check_in(game.game_id, "p1", OWNER)
        await engine.check_in(game.game_id, "p2", OWNER)
        await engine.check_in(game.game_id, "p3", OWNER)
        for person_id in players:
            await engine.record_buy_in(game.game_id, person_id, OWNER)
        await engine.start_game(game.game_id, OWNER)
        await engine.record_bounty(game.game_id, "p1", "p3", OWNER)
        await engine.eliminate_player(game.game_id, "p3", OWNER, eliminated_by="p1")
        await engine.eliminate_player(game.game_id, "p2", OWNER)
        await engine.end_game(game.game_id, OWNER)
        await engine.record_payout(game.game_id, "p1", 10000, OWNER)
        await engine.record_payout(game.game_id, "p2", 5000, OWNER)
        await engine.lock_financials(game.game_id, OWNER)

        rows = await engine.finalize_results(game.game_id, OWNER)

        assert [(r.person_id, r.finish_position, r.points_earned) for r in rows] == [
            ("p1", 1, 65),
            ("p2", 2, 40),
            ("p3", 3, 30),
        ]
        assert rows[0].status == SessionStatus.WINNER
        assert rows[0].to_dict()["net"] == 5000
        assert engine.get_game(game.game_id).results_finalized_at is not None
        assert "Thursday Night results" in notifier.titles_for("p2")

        # A second run changes nothing
        again = await engine.finalize_results(game.game_id, OWNER)
        assert [r.points_earned for r in again] == [65, 40, 30]
        assert [row["games_shared"] for row in engine.get_played_with("p1")] == [1, 1]

    @pytest.mark.asyncio
    async def test_finalize_needs_a_completed_game(self, engine, game, check_in_players):
        from pokerclub.utils.errors import InvalidTransitionError

        await check_in_players(game.game_id, 2)
        await engine.start_game(game.game_id, OWNER)

        with pytest.raises(InvalidTransitionError):
            await engine.finalize_results(game.game_id, OWNER)

    @pytest.mark.asyncio
    async def test_finalize_needs_locked_books(self, engine, game, check_in_players):
        from pokerclub.utils.errors import ValidationError

        await check_in_players(game.game_id, 2)
        await engine.start_game(game.game_id, OWNER)
        await engine.end_game(game.game_id, OWNER)

        with pytest.raises(ValidationError):
            await engine.finalize_results(game.game_id, OWNER)
        assert engine.get_game(game.game_id).results_finalized_at is None


class TestClubStandings:
    @pytest.mark.asyncio
    async def test_season_table_sums_finalized_games(self, engine, game):
        await _play_out(
            engine,
            game.game_id,
            ["p1", "p2", "p3"],
            ["p3", "p2"],
            [("p1", 10000), ("p2", 5000)],
        )
        await engine.finalize_results(game.game_id, OWNER)

        second = await engine.create_game(CLUB_ID, OWNER, name="Friday", buy_in_amount=2000)
        await _play_out(engine, second.game_id, ["p1", "p2"], ["p1"], [("p2", 4000)])
        await engine.finalize_results(second.game_id, OWNER)

        # Unfinalized games do not count
        third = await engine.create_game(CLUB_ID, OWNER, name="Saturday", buy_in_amount=2000)
        await _play_out(engine, third.game_id, ["p3", "p4"], ["p4"], [("p3", 4000)])

        standings = engine.get_club_standings(CLUB_ID)
        assert [(r.person_id, r.points, r.games_played, r.wins) for r in standings] == [
            ("p1", 100, 2, 1),
            ("p2", 100, 2, 1),
            ("p3", 30, 1, 0),
        ]

    @pytest.mark.asyncio
    async def test_played_with_counts_each_game_once(self, engine, game):
        await _play_out(
            engine,
            game.game_id,
            ["p1", "p2", "p3"],
            ["p3", "p2"],
            [("p1", 15000)],
        )
        await engine.finalize_results(game.game_id, OWNER)

        second = await engine.create_game(CLUB_ID, OWNER, buy_in_amount=2000)
        await _play_out(engine, second.game_id, ["p1", "p2"], ["p2"], [("p1", 4000)])
        await engine.finalize_results(second.game_id, OWNER)

        rows = engine.get_played_with("p1")
        assert [(r["person_id"], r["games_shared"]) for r in rows] == [("p2", 2), ("p3", 1)]
        assert engine.get_played_with("nobody") == []


class TestPlayerNetwork:
    def test_record_pairs_skips_known_games(self):
        from datetime import datetime, timezone

        from pokerclub.tournament.standings import PlayerNetwork
        from pokerclub.tournament.store import ChangeSet, GameStore

        store = GameStore()
        network = PlayerNetwork(store)
        now = datetime(2026, 3, 5, tzinfo=timezone.utc)

        edges = network.record_pairs("g1", ["b", "a", "c", "a"], now)
        assert [(e.person_a_id, e.person_b_id) for e in edges] == [
            ("a", "b"),
            ("a", "c"),
            ("b", "c"),
        ]
        store.apply(ChangeSet(edges=edges))

        assert network.record_pairs("g1", ["a", "b"], now) == []
        repeat = network.record_pairs("g2", ["a", "b"], now)
        assert repeat[0].games_shared == 2
