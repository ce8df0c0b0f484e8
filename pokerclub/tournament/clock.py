"""
Game clock and lifecycle.

State machine:
─────────────────────────────────────────────────────────────────
    PENDING ──start──▶ ACTIVE ◀──resume── PAUSED
                         │  ▲               ▲
                 advance │  │ advance       │ pause
                         ▼  │               │
                        BREAK ──────────────┘
    ACTIVE / BREAK / PAUSED ──end──▶ COMPLETED
─────────────────────────────────────────────────────────────────

Time remaining is never stored. It is recomputed on every read from the
level start, the pause marker and the pause time accrued in this level:

    elapsed   = (paused_at or now) - level_started_at - total_paused_ms
    remaining = max(0, level_duration - elapsed)

so a restart, a slow client or a missed tick cannot make it drift.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pokerclub.utils.errors import InvalidTransitionError, NotFoundError, ValidationError
from .models import (
    ACTIVE_STATUSES,
    BlindLevel,
    Completed,
    Game,
    GameSession,
    GameStatus,
    LevelOverflowPolicy,
    OnBreak,
    Paused,
    Running,
    SessionStatus,
    elapsed_ms,
)


@dataclass(frozen=True)
class ClockTransition:
    """Result of a lifecycle operation: the new game plus any changed sessions."""

    game: Game
    sessions: Tuple[GameSession, ...] = ()
    winner: Optional[GameSession] = None


@dataclass(frozen=True)
class Elimination:
    game: Game
    session: GameSession
    finish_position: int
    still_active: Tuple[str, ...]  # person ids left in the game


@dataclass(frozen=True)
class GameStateView:
    """Everything a tournament clock display needs in one read."""

    game: Game
    time_remaining_ms: int
    level_duration_ms: int
    current_blind: Optional[BlindLevel]
    next_blind: Optional[BlindLevel]
    players: Tuple[GameSession, ...]
    server_time: datetime
    balance_suggestions: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.game.to_dict(),
            "time_remaining_ms": self.time_remaining_ms,
            "level_duration_ms": self.level_duration_ms,
            "current_blind": self.current_blind.to_dict() if self.current_blind else None,
            "next_blind": self.next_blind.to_dict() if self.next_blind else None,
            "players": [s.to_dict() for s in self.players],
            "server_time": self.server_time.isoformat(),
            "balance_suggestions": list(self.balance_suggestions),
        }


def _require(game: Game, allowed, attempted: str) -> None:
    if game.status not in allowed:
        raise InvalidTransitionError(game.status.value, attempted)


class ClockEngine:
    """
    Pure clock transitions over immutable ``Game`` records.

    Each method validates the current state, then returns new records. It
    never touches the store; the caller commits the result under the game lock.
    """

    def __init__(
        self,
        overflow_policy: LevelOverflowPolicy = LevelOverflowPolicy.INCREMENT,
    ):
        self.overflow_policy = overflow_policy

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, game: Game, sessions: Sequence[GameSession], now: datetime) -> Game:
        _require(game, {GameStatus.PENDING}, "start")
        count = len(sessions)
        return replace(
            game,
            clock=Running(level=1, level_started_at=now, total_paused_ms=0),
            started_at=now,
            players_registered=count,
            players_remaining=count,
        )

    def pause(self, game: Game, now: datetime) -> Game:
        _require(game, {GameStatus.ACTIVE, GameStatus.BREAK}, "pause")
        return game.with_clock(
            Paused(
                level=game.current_level,
                level_started_at=game.level_started_at,
                paused_at=now,
                total_paused_ms=game.total_paused_ms,
            )
        )

    def resume(self, game: Game, now: datetime) -> Game:
        _require(game, {GameStatus.PAUSED}, "resume")
        paused_for = max(0, elapsed_ms(game.paused_at, now))
        return game.with_clock(
            Running(
                level=game.current_level,
                level_started_at=game.level_started_at,
                total_paused_ms=game.total_paused_ms + paused_for,
            )
        )

    def advance_level(
        self, game: Game, sessions: Sequence[GameSession], now: datetime
    ) -> ClockTransition:
        """Move to the next level. Pause tracking restarts with the new level."""
        _require(game, ACTIVE_STATUSES, "advance level")

        next_number = game.current_level + 1
        next_level = game.structure.get(next_number)

        if next_level is None:
            policy = self.overflow_policy
            if policy == LevelOverflowPolicy.REJECT:
                raise InvalidTransitionError(
                    game.status.value,
                    "advance level",
                    f"No blind level after level {game.current_level}",
                )
            if policy == LevelOverflowPolicy.COMPLETE:
                return self.end(game, sessions, now)
            if policy == LevelOverflowPolicy.CLAMP:
                next_number = game.current_level
                next_level = game.current_blind

        if next_level is not None and next_level.is_break:
            clock = OnBreak(level=next_number, level_started_at=now, total_paused_ms=0)
        else:
            clock = Running(level=next_number, level_started_at=now, total_paused_ms=0)
        return ClockTransition(game=game.with_clock(clock))

    def end(
        self, game: Game, sessions: Sequence[GameSession], now: datetime
    ) -> ClockTransition:
        """Complete the game, crowning the sole survivor if there is one."""
        _require(game, ACTIVE_STATUSES, "end")

        active = [s for s in sessions if s.status == SessionStatus.ACTIVE]
        winner = active[0].crowned() if len(active) == 1 else None

        completed = game.with_clock(Completed(level=game.current_level, completed_at=now))
        return ClockTransition(
            game=completed,
            sessions=(winner,) if winner else (),
            winner=winner,
        )

    # =========================================================================
    # Players
    # =========================================================================

    def eliminate(
        self,
        game: Game,
        sessions: Sequence[GameSession],
        person_id: str,
        now: datetime,
        eliminated_by: Optional[str] = None,
    ) -> Elimination:
        """
        Bust a player.

        The finish position is the number of players still in, this one
        included: in a 9-handed game the first bust finishes 9th and the last
        bust before the winner finishes 2nd. Position 1 only comes from ``end``.
        """
        _require(game, ACTIVE_STATUSES, "eliminate player from")

        by_person = {s.person_id: s for s in sessions}
        session = by_person.get(person_id)
        if session is None:
            raise NotFoundError(
                "GameSession", f"{game.game_id}:{person_id}", "Player session not found"
            )
        if not session.is_active:
            raise ValidationError(
                f"Player is already {session.status.value.lower()}",
                details={"personId": person_id, "status": session.status.value},
            )

        if eliminated_by is not None:
            if eliminated_by == person_id:
                raise ValidationError("A player cannot eliminate themselves")
            if eliminated_by not in by_person:
                raise ValidationError(
                    "Eliminating player is not in this game",
                    details={"eliminatedBy": eliminated_by},
                )

        active = [s for s in sessions if s.is_active]
        if len(active) <= 1:
            raise ValidationError(
                "The last remaining player is crowned by ending the game",
                details={"personId": person_id},
            )

        position = len(active)
        busted = session.eliminated(position, now, eliminated_by)
        still_active = tuple(s.person_id for s in active if s.person_id != person_id)

        return Elimination(
            game=replace(game, players_remaining=max(0, game.players_remaining - 1)),
            session=busted,
            finish_position=position,
            still_active=still_active,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    @staticmethod
    def time_remaining_ms(game: Game, now: datetime) -> int:
        if game.status in (GameStatus.PENDING, GameStatus.COMPLETED):
            return 0
        level = game.current_blind
        if level is None or game.level_started_at is None:
            return 0

        reference = game.paused_at if game.paused_at is not None else now
        elapsed = elapsed_ms(game.level_started_at, reference) - game.total_paused_ms
        return max(0, level.duration_ms - elapsed)

    def state_view(
        self,
        game: Game,
        sessions: Sequence[GameSession],
        now: datetime,
        balance_suggestions: Sequence[Dict[str, Any]] = (),
    ) -> GameStateView:
        current = game.current_blind
        return GameStateView(
            game=game,
            time_remaining_ms=self.time_remaining_ms(game, now),
            level_duration_ms=current.duration_ms if current else 0,
            current_blind=current,
            next_blind=game.next_blind,
            players=tuple(sorted(sessions, key=_player_order)),
            server_time=now,
            balance_suggestions=tuple(balance_suggestions),
        )


def _player_order(session: GameSession) -> List[Any]:
    """Active players by table/seat, then finishers best first."""
    if session.is_active:
        return [0, session.table_number or 0, session.seat_number or 0]
    return [1, session.finish_position or 10**6, 0]
