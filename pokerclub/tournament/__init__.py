"""
Live tournament engine for poker clubs.

This module provides:
- Game clock with pause-neutral, recompute-on-read level timing
- Greedy seat assignment and two-phase table balancing
- Settlement ledger with exact void reversal and running-balance history
- Standings, points and the played-together network
"""

from .engine import TournamentEngine
from .models import (
    BlindLevel,
    BlindStructure,
    Game,
    GameSession,
    GameStatus,
    GameTable,
    SessionStatus,
    Transaction,
    TransactionType,
    TreasuryBalance,
)
from .clock import ClockEngine
from .seating import SeatingEngine
from .ledger import SettlementLedger
from .standings import PlayerNetwork, StandingsEvaluator
from .locks import DistributedLockManager, LocalLockManager

__all__ = [
    "TournamentEngine",
    "BlindLevel",
    "BlindStructure",
    "Game",
    "GameSession",
    "GameStatus",
    "GameTable",
    "SessionStatus",
    "Transaction",
    "TransactionType",
    "TreasuryBalance",
    "ClockEngine",
    "SeatingEngine",
    "SettlementLedger",
    "PlayerNetwork",
    "StandingsEvaluator",
    "DistributedLockManager",
    "LocalLockManager",
]
