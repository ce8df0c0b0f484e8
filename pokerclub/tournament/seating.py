"""
Seat assignment and table balancing.

Design rules:
1. Greedy, deterministic placement: fewest players first, lowest table number on ties.
2. Balancing is two-phase. ``balance`` only proposes moves; ``apply_moves``
   runs after an operator approves them, because moving a player mid-hand is
   disruptive and must be deliberate.
3. At most one move out of each over-full table per proposal.
4. A table sitting exactly one below the ideal count is neither a source nor
   a target, which gives a fixed point instead of players bouncing around.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import uuid4

from pokerclub.utils.errors import InvalidTransitionError, ValidationError
from .models import ACTIVE_STATUSES, Game, GameSession, GameStatus, GameTable


@dataclass(frozen=True)
class PlayerMove:
    """Single player move instruction."""

    person_id: str
    from_table: int
    from_seat: int
    to_table: int
    to_seat: int
    move_id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "move_id": self.move_id,
            "person_id": self.person_id,
            "from_table": self.from_table,
            "from_seat": self.from_seat,
            "to_table": self.to_table,
            "to_seat": self.to_seat,
        }


@dataclass(frozen=True)
class SeatChange:
    """New records produced by a seating operation."""

    game: Game
    sessions: Tuple[GameSession, ...] = ()
    tables: Tuple[GameTable, ...] = ()
    moved: Tuple[GameSession, ...] = ()  # sessions whose table or seat changed


@dataclass(frozen=True)
class TableView:
    table_number: int
    max_seats: int
    is_active: bool
    seats: Tuple[Optional[str], ...]  # person id per seat, index 0 = seat 1

    @property
    def player_count(self) -> int:
        return sum(1 for s in self.seats if s is not None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_number": self.table_number,
            "max_seats": self.max_seats,
            "is_active": self.is_active,
            "player_count": self.player_count,
            "seats": [
                {"seat_number": i + 1, "person_id": person_id}
                for i, person_id in enumerate(self.seats)
            ],
        }


@dataclass(frozen=True)
class TableLayoutView:
    game_id: str
    tables: Tuple[TableView, ...]
    unseated: Tuple[str, ...] = ()
    moves: Tuple[PlayerMove, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "tables": [t.to_dict() for t in self.tables],
            "unseated": list(self.unseated),
            "moves": [m.to_dict() for m in self.moves],
        }


def _occupancy(sessions: Iterable[GameSession]) -> Dict[int, Dict[int, str]]:
    """table -> seat -> person id, active players only."""
    seats: Dict[int, Dict[int, str]] = {}
    for s in sessions:
        if s.is_active and s.table_number is not None and s.seat_number is not None:
            seats.setdefault(s.table_number, {})[s.seat_number] = s.person_id
    return seats


def _lowest_free_seat(taken: Set[int], max_seats: int) -> Optional[int]:
    for seat in range(1, max_seats + 1):
        if seat not in taken:
            return seat
    return None


class SeatingEngine:
    """Pure seating computations over immutable records."""

    def __init__(self, max_seats: int = 9, final_table_size: int = 9):
        self.max_seats = max_seats
        self.final_table_size = final_table_size

    # =========================================================================
    # Assignment
    # =========================================================================

    def assign_seat(
        self,
        game: Game,
        tables: Sequence[GameTable],
        sessions: Sequence[GameSession],
        session: GameSession,
    ) -> SeatChange:
        """Place one player. A player who already holds a seat keeps it."""
        if game.status == GameStatus.COMPLETED:
            raise InvalidTransitionError(game.status.value, "assign seat in")
        if not session.is_active:
            raise ValidationError(
                "Only active players can be seated",
                details={"personId": session.person_id, "status": session.status.value},
            )
        if session.table_number is not None and session.seat_number is not None:
            return SeatChange(game=game)

        occupancy = _occupancy(sessions)
        active_tables = [t for t in tables if t.is_active]
        new_tables: List[GameTable] = []

        if not active_tables:
            first = GameTable(game.game_id, self._next_table_number(tables), self.max_seats)
            new_tables.append(first)
            active_tables = [first]

        target: Optional[GameTable] = None
        for table in sorted(active_tables, key=lambda t: t.table_number):
            count = len(occupancy.get(table.table_number, {}))
            if count >= table.max_seats:
                continue
            if target is None or count < len(occupancy.get(target.table_number, {})):
                target = table

        if target is None:
            target = GameTable(
                game.game_id,
                self._next_table_number(list(tables) + new_tables),
                self.max_seats,
            )
            new_tables.append(target)

        taken = set(occupancy.get(target.table_number, {}))
        seat = _lowest_free_seat(taken, target.max_seats)

        sequence = game.seat_sequence + 1
        seated = session.at_seat(target.table_number, seat, sequence)
        return SeatChange(
            game=replace(game, seat_sequence=sequence),
            sessions=(seated,),
            tables=tuple(new_tables),
            moved=(seated,),
        )

    @staticmethod
    def _next_table_number(tables: Sequence[GameTable]) -> int:
        return max((t.table_number for t in tables), default=0) + 1

    # =========================================================================
    # Balancing
    # =========================================================================

    def balance(
        self, tables: Sequence[GameTable], sessions: Sequence[GameSession]
    ) -> List[PlayerMove]:
        """
        Propose moves from over-full tables to short ones.

        ─────────────────────────────────────────────────────────────
        ideal  = ceil(active players / active tables)
        source = table with more than ideal players (one move each)
        target = table with fewer than ideal - 1 players
        mover  = the most recently seated player at the source
        seat   = lowest free seat at the emptiest target
        ─────────────────────────────────────────────────────────────

        Occupancy is updated as moves are planned, so two proposals never
        share a destination seat.
        """
        active_tables = sorted(
            (t for t in tables if t.is_active), key=lambda t: t.table_number
        )
        if len(active_tables) < 2:
            return []

        occupancy = _occupancy(sessions)
        counts = {t.table_number: len(occupancy.get(t.table_number, {})) for t in active_tables}
        total = sum(counts.values())
        if total == 0:
            return []

        ideal = math.ceil(total / len(active_tables))
        by_person = {s.person_id: s for s in sessions if s.is_active}
        max_seats = {t.table_number: t.max_seats for t in active_tables}

        sources = sorted(
            (n for n, c in counts.items() if c > ideal),
            key=lambda n: (-counts[n], n),
        )

        moves: List[PlayerMove] = []
        for source in sources:
            targets = [n for n, c in counts.items() if c < ideal - 1 and n != source]
            if not targets:
                break
            target = min(targets, key=lambda n: (counts[n], n))

            seated_here = [by_person[p] for p in occupancy.get(source, {}).values()]
            mover = max(seated_here, key=lambda s: s.seated_sequence)
            to_seat = _lowest_free_seat(set(occupancy.get(target, {})), max_seats[target])
            if to_seat is None:
                continue

            moves.append(
                PlayerMove(
                    person_id=mover.person_id,
                    from_table=source,
                    from_seat=mover.seat_number,
                    to_table=target,
                    to_seat=to_seat,
                )
            )

            del occupancy[source][mover.seat_number]
            occupancy.setdefault(target, {})[to_seat] = mover.person_id
            counts[source] -= 1
            counts[target] += 1

        return moves

    def apply_moves(
        self,
        game: Game,
        tables: Sequence[GameTable],
        sessions: Sequence[GameSession],
        moves: Sequence[PlayerMove],
    ) -> SeatChange:
        """Validate the whole batch first, then seat every mover."""
        self._require_active(game, "approve table moves for")

        by_person = {s.person_id: s for s in sessions}
        table_map = {t.table_number: t for t in tables}
        occupancy = _occupancy(sessions)
        seen: Set[str] = set()

        for move in moves:
            session = by_person.get(move.person_id)
            if session is None or not session.is_active:
                raise ValidationError(
                    "Player in move is not active in this game",
                    details={"personId": move.person_id},
                )
            if move.person_id in seen:
                raise ValidationError(
                    "Player appears in more than one move",
                    details={"personId": move.person_id},
                )
            seen.add(move.person_id)

            current = occupancy.get(move.from_table, {}).get(move.from_seat)
            if current != move.person_id:
                raise ValidationError(
                    "Player is no longer at the proposed source seat",
                    details=move.to_dict(),
                )

            target = table_map.get(move.to_table)
            if target is None or not target.is_active:
                raise ValidationError(
                    f"Table {move.to_table} is not an active table",
                    details=move.to_dict(),
                )
            if not 1 <= move.to_seat <= target.max_seats:
                raise ValidationError(
                    f"Seat {move.to_seat} does not exist at table {move.to_table}",
                    details=move.to_dict(),
                )

            del occupancy[move.from_table][move.from_seat]
            if move.to_seat in occupancy.get(move.to_table, {}):
                raise ValidationError(
                    f"Seat {move.to_seat} at table {move.to_table} is taken",
                    details=move.to_dict(),
                )
            occupancy.setdefault(move.to_table, {})[move.to_seat] = move.person_id

        sequence = game.seat_sequence
        moved: List[GameSession] = []
        for move in moves:
            sequence += 1
            moved.append(by_person[move.person_id].at_seat(move.to_table, move.to_seat, sequence))

        return SeatChange(
            game=replace(game, seat_sequence=sequence),
            sessions=tuple(moved),
            moved=tuple(moved),
        )

    # =========================================================================
    # Final table
    # =========================================================================

    def form_final_table(
        self,
        game: Game,
        tables: Sequence[GameTable],
        sessions: Sequence[GameSession],
    ) -> SeatChange:
        """Collapse every remaining player onto table 1, seats 1..N in check-in order."""
        self._require_active(game, "form final table for")

        active = sorted((s for s in sessions if s.is_active), key=lambda s: s.check_in_order)
        table_one = next((t for t in tables if t.table_number == 1), None)
        capacity = min(
            self.final_table_size,
            table_one.max_seats if table_one else self.max_seats,
        )
        if len(active) > capacity:
            raise ValidationError(
                f"{len(active)} players remain; the final table seats {capacity}",
                details={"activePlayers": len(active), "capacity": capacity},
            )

        changed_tables: List[GameTable] = []
        if table_one is None:
            changed_tables.append(GameTable(game.game_id, 1, self.max_seats))
        elif not table_one.is_active:
            changed_tables.append(replace(table_one, is_active=True))
        for table in tables:
            if table.table_number != 1 and table.is_active:
                changed_tables.append(replace(table, is_active=False))

        sequence = game.seat_sequence
        reseated: List[GameSession] = []
        moved: List[GameSession] = []
        for seat, session in enumerate(active, start=1):
            sequence += 1
            new = session.at_seat(1, seat, sequence)
            reseated.append(new)
            if (session.table_number, session.seat_number) != (1, seat):
                moved.append(new)

        return SeatChange(
            game=replace(game, seat_sequence=sequence),
            sessions=tuple(reseated),
            tables=tuple(changed_tables),
            moved=tuple(moved),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    @staticmethod
    def layout(
        game_id: str,
        tables: Sequence[GameTable],
        sessions: Sequence[GameSession],
        moves: Sequence[PlayerMove] = (),
    ) -> TableLayoutView:
        occupancy = _occupancy(sessions)
        views = tuple(
            TableView(
                table_number=t.table_number,
                max_seats=t.max_seats,
                is_active=t.is_active,
                seats=tuple(
                    occupancy.get(t.table_number, {}).get(seat)
                    for seat in range(1, t.max_seats + 1)
                ),
            )
            for t in sorted(tables, key=lambda t: t.table_number)
        )
        unseated = tuple(
            s.person_id for s in sessions if s.is_active and s.table_number is None
        )
        return TableLayoutView(
            game_id=game_id, tables=views, unseated=unseated, moves=tuple(moves)
        )

    @staticmethod
    def _require_active(game: Game, attempted: str) -> None:
        if game.status not in ACTIVE_STATUSES:
            raise InvalidTransitionError(game.status.value, attempted)
