"""
Suggested payout tests.
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st


class TestCalculatePayouts:
    def test_first_place_absorbs_rounding(self):
        from pokerclub.tournament.payouts import calculate_payouts

        lines = calculate_payouts(55000, ["65", "30", "5"], rounding_unit=100)

        assert [line.position for line in lines] == [1, 2, 3]
        assert [line.amount for line in lines] == [35800, 16500, 2700]
        assert lines[0].percentage == Decimal("65")

    def test_fractional_percentages(self):
        from pokerclub.tournament.payouts import calculate_payouts

        lines = calculate_payouts(10000, ["33.34", "33.33", "33.33"], rounding_unit=1)
        assert [line.amount for line in lines] == [3334, 3333, 3333]

    def test_small_pool_never_goes_negative(self):
        from pokerclub.tournament.payouts import calculate_payouts

        lines = calculate_payouts(160, [2, 49, 49], rounding_unit=100)
        assert [line.amount for line in lines] == [160, 0, 0]

    def test_empty_pool_pays_nothing(self):
        from pokerclub.tournament.payouts import calculate_payouts

        lines = calculate_payouts(0, [50, 30, 20])
        assert [line.amount for line in lines] == [0, 0, 0]

    @pytest.mark.parametrize(
        "percentages",
        [[50, 30], [60, 30, 20], [], [100, 0], [110, -10], ["abc"]],
    )
    def test_invalid_percentages(self, percentages):
        from pokerclub.tournament.payouts import calculate_payouts
        from pokerclub.utils.errors import ValidationError

        with pytest.raises(ValidationError):
            calculate_payouts(10000, percentages)

    def test_negative_pool(self):
        from pokerclub.tournament.payouts import calculate_payouts
        from pokerclub.utils.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            calculate_payouts(-100, [100])
        assert exc_info.value.details == {"netPrizePool": -100}

    @given(
        pool=st.integers(0, 10_000_000),
        cuts=st.sets(st.integers(1, 99), max_size=7),
        unit=st.sampled_from([1, 5, 100, 500]),
    )
    @settings(max_examples=200, deadline=None)
    def test_payouts_sum_to_the_pool_and_stay_non_negative(self, pool, cuts, unit):
        from pokerclub.tournament.payouts import calculate_payouts

        bounds = [0] + sorted(cuts) + [100]
        percentages = [high - low for low, high in zip(bounds, bounds[1:])]

        lines = calculate_payouts(pool, percentages, rounding_unit=unit)
        assert sum(line.amount for line in lines) == pool
        assert all(line.amount >= 0 for line in lines)
        for line in lines[1:]:
            assert line.amount % unit == 0


class TestDefaultPercentages:
    @pytest.mark.parametrize(
        "players,expected",
        [
            (1, ["100"]),
            (3, ["100"]),
            (6, ["70", "30"]),
            (11, ["50", "30", "20"]),
            (40, ["50", "25", "15", "10"]),
        ],
    )
    def test_tiers_follow_field_size(self, players, expected):
        from pokerclub.tournament.payouts import default_percentages

        assert [str(p) for p in default_percentages(players)] == expected

    def test_every_tier_totals_one_hundred(self):
        from pokerclub.tournament.payouts import DEFAULT_PAYOUT_TIERS

        for _, _, split in DEFAULT_PAYOUT_TIERS:
            assert sum(split) == 100


class TestAssignFinishers:
    def test_known_positions_get_names(self):
        from pokerclub.tournament.models import GameSession
        from pokerclub.tournament.payouts import assign_finishers, calculate_payouts

        sessions = [
            GameSession(game_id="g", person_id="alice", finish_position=1),
            GameSession(game_id="g", person_id="bob", finish_position=3),
            GameSession(game_id="g", person_id="carol"),
        ]
        lines = assign_finishers(calculate_payouts(10000, [50, 30, 20]), sessions)

        assert [line.person_id for line in lines] == ["alice", None, "bob"]
        assert lines[0].to_dict() == {
            "position": 1,
            "percentage": "50",
            "amount": 5000,
            "person_id": "alice",
        }
