"""
Standings, points and the played-together network.

Points per player for one finalized game:

    points = BASE_POINTS + BOUNTY_POINTS * bounties_won + POSITION_BONUS[position]

Results are finalized once, after the game is completed and its
financials are locked.
"""

import itertools
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pokerclub.utils.errors import InvalidTransitionError, ValidationError
from .models import (
    Game,
    GameSession,
    GameStatus,
    NetworkEdge,
    SessionStatus,
    pair_key,
)
from .store import GameStore

BASE_POINTS = 10
BOUNTY_POINTS = 5
POSITION_BONUS: Dict[int, int] = {1: 50, 2: 30, 3: 20, 4: 10, 5: 5}
POSITION_BONUS.update({position: 2 for position in range(6, 11)})


def calculate_points(finish_position: Optional[int], bounties_won: int) -> int:
    bonus = POSITION_BONUS.get(finish_position, 0) if finish_position else 0
    return BASE_POINTS + BOUNTY_POINTS * bounties_won + bonus


# =============================================================================
# Played-together network
# =============================================================================


class PlayerNetwork:
    """
    Symmetric "played together" edges keyed by unordered person pair.

    Each edge remembers the games it has counted, so the same pair
    is counted at most once per game no matter how often it is recorded.
    """

    def __init__(self, store: GameStore):
        self.store = store

    def record_pairs(
        self, game_id: str, person_ids: Iterable[str], now: datetime
    ) -> List[NetworkEdge]:
        """New edge versions for every unique pair in ``person_ids``."""
        edges = []
        for a, b in itertools.combinations(sorted(set(person_ids)), 2):
            edge = self._count(game_id, pair_key(a, b), now)
            if edge is not None:
                edges.append(edge)
        return edges

    def record_elimination(
        self, game_id: str, person_id: str, still_active: Iterable[str], now: datetime
    ) -> List[NetworkEdge]:
        """Pair a busted player with everyone still in the game."""
        edges = []
        for other in sorted(set(still_active)):
            if other == person_id:
                continue
            edge = self._count(game_id, pair_key(person_id, other), now)
            if edge is not None:
                edges.append(edge)
        return edges

    def _count(
        self, game_id: str, key: Tuple[str, str], now: datetime
    ) -> Optional[NetworkEdge]:
        edge = self.store.find_edge(key)
        if edge is None:
            return NetworkEdge(
                person_a_id=key[0],
                person_b_id=key[1],
                games_shared=1,
                game_ids=frozenset({game_id}),
                first_played_at=now,
                last_played_at=now,
            )
        if game_id in edge.game_ids:
            return None
        return replace(
            edge,
            games_shared=edge.games_shared + 1,
            game_ids=edge.game_ids | {game_id},
            last_played_at=now,
        )

    def played_with(self, person_id: str) -> List[Dict[str, Any]]:
        """Everyone ``person_id`` has shared a game with, most games first."""
        rows = []
        for edge in self.store.edges_for(person_id):
            other = edge.person_b_id if edge.person_a_id == person_id else edge.person_a_id
            rows.append(
                {
                    "person_id": other,
                    "games_shared": edge.games_shared,
                    "last_played_at": edge.last_played_at.isoformat()
                    if edge.last_played_at
                    else None,
                }
            )
        rows.sort(key=lambda r: (-r["games_shared"], r["person_id"]))
        return rows


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class FinalizedResults:
    game: Game
    sessions: Tuple[GameSession, ...]
    edges: Tuple[NetworkEdge, ...]


@dataclass(frozen=True)
class ResultRow:
    person_id: str
    finish_position: Optional[int]
    status: SessionStatus
    points_earned: int
    bounties_won: int
    total_paid: int
    payout: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "person_id": self.person_id,
            "finish_position": self.finish_position,
            "status": self.status.value,
            "points_earned": self.points_earned,
            "bounties_won": self.bounties_won,
            "total_paid": self.total_paid,
            "payout": self.payout,
            "net": self.payout - self.total_paid,
        }


@dataclass(frozen=True)
class StandingRow:
    person_id: str
    points: int = 0
    games_played: int = 0
    wins: int = 0
    bounties: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "person_id": self.person_id,
            "points": self.points,
            "games_played": self.games_played,
            "wins": self.wins,
            "bounties": self.bounties,
        }


def _result_order(session: GameSession) -> Tuple[bool, int, int]:
    return (session.finish_position is None, session.finish_position or 0, session.check_in_order)


class StandingsEvaluator:
    def __init__(self, store: GameStore, network: PlayerNetwork):
        self.store = store
        self.network = network

    def finalize(
        self, game: Game, sessions: Sequence[GameSession], now: datetime
    ) -> Optional[FinalizedResults]:
        """
        Score every session and count every pair once.

        Returns None if the game was already finalized.
        """
        if game.status != GameStatus.COMPLETED:
            raise InvalidTransitionError(game.status.value, "finalize results for")
        if not game.is_financially_locked:
            raise ValidationError(
                "Financials must be locked before results are finalized",
                details={"gameId": game.game_id},
            )
        if game.results_finalized_at is not None:
            return None

        scored = tuple(
            replace(s, points_earned=calculate_points(s.finish_position, s.bounties_won))
            for s in sessions
        )
        edges = self.network.record_pairs(game.game_id, (s.person_id for s in sessions), now)
        return FinalizedResults(
            game=replace(game, results_finalized_at=now),
            sessions=scored,
            edges=tuple(edges),
        )

    def game_results(self, game_id: str) -> List[ResultRow]:
        return [
            ResultRow(
                person_id=s.person_id,
                finish_position=s.finish_position,
                status=s.status,
                points_earned=s.points_earned,
                bounties_won=s.bounties_won,
                total_paid=s.total_paid,
                payout=s.payout,
            )
            for s in sorted(self.store.sessions_for(game_id), key=_result_order)
        ]

    def club_standings(self, club_id: str) -> List[StandingRow]:
        """Season table over every finalized game of the club, most points first."""
        totals: Dict[str, StandingRow] = {}
        for game in self.store.list_games(club_id):
            if game.results_finalized_at is None:
                continue
            for s in self.store.sessions_for(game.game_id):
                row = totals.get(s.person_id) or StandingRow(person_id=s.person_id)
                totals[s.person_id] = replace(
                    row,
                    points=row.points + s.points_earned,
                    games_played=row.games_played + 1,
                    wins=row.wins + (1 if s.finish_position == 1 else 0),
                    bounties=row.bounties + s.bounties_won,
                )
        return sorted(totals.values(), key=lambda r: (-r.points, -r.wins, r.person_id))
