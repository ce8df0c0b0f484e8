"""
In-process state store for games, seating and money records.

One authoritative process owns each running game. Reads return frozen
records; writes arrive as a ``ChangeSet`` that ``apply`` swaps in with no
``await`` in between, so a half-applied operation is never observable.
"""

import itertools
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pokerclub.utils.errors import NotFoundError
from .models import (
    BonusChipGrant,
    Game,
    GameSession,
    GameTable,
    NetworkEdge,
    PlayerBalance,
    Transaction,
    TreasuryBalance,
)


@dataclass
class ChangeSet:
    """New record versions produced by one operation."""

    games: List[Game] = field(default_factory=list)
    sessions: List[GameSession] = field(default_factory=list)
    tables: List[GameTable] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    treasuries: List[TreasuryBalance] = field(default_factory=list)
    player_balances: List[PlayerBalance] = field(default_factory=list)
    edges: List[NetworkEdge] = field(default_factory=list)
    bonus_grants: List[BonusChipGrant] = field(default_factory=list)


class GameStore:
    """Keyed maps of the latest version of every record."""

    def __init__(self) -> None:
        self._games: Dict[str, Game] = {}
        self._sessions: Dict[str, Dict[str, GameSession]] = {}
        self._tables: Dict[str, Dict[int, GameTable]] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._club_transactions: Dict[str, List[str]] = {}
        self._treasuries: Dict[str, TreasuryBalance] = {}
        self._player_balances: Dict[Tuple[str, str], PlayerBalance] = {}
        self._edges: Dict[Tuple[str, str], NetworkEdge] = {}
        self._bonus_grants: List[BonusChipGrant] = []
        self._sequence = itertools.count(1)

    def next_sequence(self) -> int:
        """Monotonic ordering key for transactions."""
        return next(self._sequence)

    # =========================================================================
    # Games
    # =========================================================================

    def get_game(self, game_id: str) -> Game:
        game = self._games.get(game_id)
        if game is None:
            raise NotFoundError("Game", game_id, "Game not found")
        return game

    def list_games(self, club_id: Optional[str] = None) -> List[Game]:
        return [
            g for g in self._games.values() if club_id is None or g.club_id == club_id
        ]

    # =========================================================================
    # Sessions
    # =========================================================================

    def find_session(self, game_id: str, person_id: str) -> Optional[GameSession]:
        return self._sessions.get(game_id, {}).get(person_id)

    def get_session(self, game_id: str, person_id: str) -> GameSession:
        session = self.find_session(game_id, person_id)
        if session is None:
            raise NotFoundError(
                "GameSession", f"{game_id}:{person_id}", "Player session not found"
            )
        return session

    def sessions_for(self, game_id: str) -> List[GameSession]:
        """All sessions of a game in check-in order."""
        return sorted(
            self._sessions.get(game_id, {}).values(), key=lambda s: s.check_in_order
        )

    def active_sessions(self, game_id: str) -> List[GameSession]:
        return [s for s in self.sessions_for(game_id) if s.is_active]

    # =========================================================================
    # Tables
    # =========================================================================

    def tables_for(self, game_id: str) -> List[GameTable]:
        return sorted(
            self._tables.get(game_id, {}).values(), key=lambda t: t.table_number
        )

    # =========================================================================
    # Money
    # =========================================================================

    def get_transaction(self, transaction_id: str) -> Transaction:
        tx = self._transactions.get(transaction_id)
        if tx is None:
            raise NotFoundError("Transaction", transaction_id, "Transaction not found")
        return tx

    def club_transactions(self, club_id: str) -> List[Transaction]:
        """Every transaction of a club, oldest first."""
        return [self._transactions[tx_id] for tx_id in self._club_transactions.get(club_id, [])]

    def game_transactions(self, game_id: str) -> List[Transaction]:
        return sorted(
            (tx for tx in self._transactions.values() if tx.game_id == game_id),
            key=lambda tx: tx.sequence,
        )

    def get_treasury(self, club_id: str) -> TreasuryBalance:
        return self._treasuries.get(club_id) or TreasuryBalance(club_id=club_id)

    def find_player_balance(self, club_id: str, person_id: str) -> Optional[PlayerBalance]:
        return self._player_balances.get((club_id, person_id))

    def player_balances(self, club_id: str) -> List[PlayerBalance]:
        return [b for (c, _), b in self._player_balances.items() if c == club_id]

    # =========================================================================
    # Network and bonus chips
    # =========================================================================

    def find_edge(self, key: Tuple[str, str]) -> Optional[NetworkEdge]:
        return self._edges.get(key)

    def edges_for(self, person_id: str) -> List[NetworkEdge]:
        return [e for k, e in self._edges.items() if person_id in k]

    def bonus_grants(
        self, game_id: str, person_id: Optional[str] = None
    ) -> List[BonusChipGrant]:
        return [
            g
            for g in self._bonus_grants
            if g.game_id == game_id and (person_id is None or g.person_id == person_id)
        ]

    # =========================================================================
    # Commit
    # =========================================================================

    def apply(self, changes: ChangeSet) -> None:
        """Swap every record of ``changes`` in without yielding to the event loop."""
        for game in changes.games:
            self._games[game.game_id] = game
        for session in changes.sessions:
            self._sessions.setdefault(session.game_id, {})[session.person_id] = session
        for table in changes.tables:
            self._tables.setdefault(table.game_id, {})[table.table_number] = table
        for tx in changes.transactions:
            is_new = tx.transaction_id not in self._transactions
            self._transactions[tx.transaction_id] = tx
            if is_new:
                ids = self._club_transactions.setdefault(tx.club_id, [])
                ids.append(tx.transaction_id)
                if len(ids) > 1 and self._transactions[ids[-2]].sequence > tx.sequence:
                    ids.sort(key=lambda tx_id: self._transactions[tx_id].sequence)
        for treasury in changes.treasuries:
            self._treasuries[treasury.club_id] = treasury
        for balance in changes.player_balances:
            self._player_balances[(balance.club_id, balance.person_id)] = balance
        for edge in changes.edges:
            self._edges[(edge.person_a_id, edge.person_b_id)] = edge
        self._bonus_grants.extend(changes.bonus_grants)
