"""
Tournament Data Models.

Immutable state representations for the live tournament engine.
All mutations go through the engine, which builds new records with
``dataclasses.replace`` and swaps them into the store in one step.

Money is always an ``int`` in minor currency units (cents).
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Optional, Tuple, Union
from uuid import uuid4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Read a datetime without tzinfo as UTC so it compares with stored timestamps."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds between two instants."""
    return (end - start) // timedelta(milliseconds=1)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =============================================================================
# Enums
# =============================================================================


class GameStatus(str, Enum):
    """Game lifecycle states."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    BREAK = "BREAK"
    COMPLETED = "COMPLETED"


ACTIVE_STATUSES: FrozenSet[GameStatus] = frozenset(
    {GameStatus.ACTIVE, GameStatus.PAUSED, GameStatus.BREAK}
)


class SessionStatus(str, Enum):
    """Player participation states. Set once, never reopened."""

    ACTIVE = "ACTIVE"
    ELIMINATED = "ELIMINATED"
    WINNER = "WINNER"


class TransactionType(str, Enum):
    BUY_IN = "BUY_IN"
    REBUY = "REBUY"
    ADD_ON = "ADD_ON"
    PAYOUT = "PAYOUT"
    BOUNTY_COLLECTED = "BOUNTY_COLLECTED"
    EXPENSE = "EXPENSE"
    DUES_PAYMENT = "DUES_PAYMENT"
    TREASURY_ADJUSTMENT = "TREASURY_ADJUSTMENT"
    PLAYER_BALANCE_ADJUSTMENT = "PLAYER_BALANCE_ADJUSTMENT"


class TreasuryEffect(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    NEUTRAL = "NEUTRAL"


# TREASURY_ADJUSTMENT is absent: it carries its own direction.
TREASURY_EFFECTS: Dict[TransactionType, TreasuryEffect] = {
    TransactionType.BUY_IN: TreasuryEffect.CREDIT,
    TransactionType.REBUY: TreasuryEffect.CREDIT,
    TransactionType.ADD_ON: TreasuryEffect.CREDIT,
    TransactionType.DUES_PAYMENT: TreasuryEffect.CREDIT,
    TransactionType.PAYOUT: TreasuryEffect.DEBIT,
    TransactionType.EXPENSE: TreasuryEffect.DEBIT,
    TransactionType.BOUNTY_COLLECTED: TreasuryEffect.NEUTRAL,
    TransactionType.PLAYER_BALANCE_ADJUSTMENT: TreasuryEffect.NEUTRAL,
}


class TransactionCategory(str, Enum):
    GAME = "GAME"
    DUES = "DUES"
    TREASURY = "TREASURY"
    PLAYER_BALANCE = "PLAYER_BALANCE"
    EXPENSE_FOOD = "EXPENSE_FOOD"
    EXPENSE_DRINKS = "EXPENSE_DRINKS"
    EXPENSE_VENUE = "EXPENSE_VENUE"
    EXPENSE_DEALER_TIP = "EXPENSE_DEALER_TIP"
    EXPENSE_OTHER = "EXPENSE_OTHER"


EXPENSE_CATEGORIES: Tuple[TransactionCategory, ...] = (
    TransactionCategory.EXPENSE_FOOD,
    TransactionCategory.EXPENSE_DRINKS,
    TransactionCategory.EXPENSE_VENUE,
    TransactionCategory.EXPENSE_DEALER_TIP,
    TransactionCategory.EXPENSE_OTHER,
)


class LevelOverflowPolicy(str, Enum):
    """What advancing past the last blind level does."""

    INCREMENT = "increment"  # level number still increments, no level data
    CLAMP = "clamp"  # stay on the last level and restart its timer
    COMPLETE = "complete"  # end the game
    REJECT = "reject"  # refuse the transition


class BonusChipMode(str, Enum):
    TRACKED = "TRACKED"
    SELF_REPORT = "SELF_REPORT"
    OFF = "OFF"


# =============================================================================
# Blind structure
# =============================================================================


@dataclass(frozen=True)
class BlindLevel:
    """One step of a blind structure."""

    level: int
    small_blind: int
    big_blind: int
    ante: int = 0
    duration_minutes: int = 15
    is_break: bool = False

    @property
    def duration_ms(self) -> int:
        return self.duration_minutes * 60_000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "small_blind": self.small_blind,
            "big_blind": self.big_blind,
            "ante": self.ante,
            "duration_minutes": self.duration_minutes,
            "is_break": self.is_break,
        }


@dataclass(frozen=True)
class BlindStructure:
    """Ordered blind levels, numbered from 1."""

    levels: Tuple[BlindLevel, ...] = ()

    def get(self, level: int) -> Optional[BlindLevel]:
        for candidate in self.levels:
            if candidate.level == level:
                return candidate
        return None

    @property
    def last_level(self) -> int:
        return max((lvl.level for lvl in self.levels), default=0)

    def __len__(self) -> int:
        return len(self.levels)

    def to_list(self) -> list:
        return [lvl.to_dict() for lvl in self.levels]


def create_standard_blind_structure(
    starting_sb: int = 25,
    levels: int = 12,
    duration_minutes: int = 20,
    break_every: int = 4,
    break_minutes: int = 10,
) -> BlindStructure:
    """Build a club-night structure with a break after every ``break_every`` levels.

    Blinds grow roughly 1.5x per playing level, rounded to chip denominations.
    Break levels occupy their own level number and repeat the blinds before them.
    """
    result = []
    sb = starting_sb
    number = 1
    played = 0

    while played < levels:
        ante = max(sb // 4, 25) if played >= 4 else 0
        result.append(BlindLevel(number, sb, sb * 2, ante, duration_minutes))
        number += 1
        played += 1

        if break_every and played % break_every == 0 and played < levels:
            result.append(BlindLevel(number, sb, sb * 2, ante, break_minutes, is_break=True))
            number += 1

        if sb < 100:
            sb = (int(sb * 1.5) + 12) // 25 * 25
        elif sb < 500:
            sb = (int(sb * 1.4) + 25) // 50 * 50
        else:
            sb = (int(sb * 1.3) + 50) // 100 * 100

    return BlindStructure(tuple(result))


# =============================================================================
# Clock state (tagged)
# =============================================================================


@dataclass(frozen=True)
class Pending:
    status: ClassVar[GameStatus] = GameStatus.PENDING
    level: int = 0


@dataclass(frozen=True)
class Running:
    status: ClassVar[GameStatus] = GameStatus.ACTIVE
    level: int
    level_started_at: datetime
    total_paused_ms: int = 0


@dataclass(frozen=True)
class OnBreak:
    status: ClassVar[GameStatus] = GameStatus.BREAK
    level: int
    level_started_at: datetime
    total_paused_ms: int = 0


@dataclass(frozen=True)
class Paused:
    status: ClassVar[GameStatus] = GameStatus.PAUSED
    level: int
    level_started_at: datetime
    paused_at: datetime
    total_paused_ms: int = 0


@dataclass(frozen=True)
class Completed:
    status: ClassVar[GameStatus] = GameStatus.COMPLETED
    level: int
    completed_at: datetime


ClockState = Union[Pending, Running, OnBreak, Paused, Completed]


# =============================================================================
# Game aggregate
# =============================================================================


@dataclass(frozen=True)
class Game:
    """One live tournament instance owned by a club."""

    club_id: str
    game_id: str = field(default_factory=lambda: str(uuid4()))
    name: str = "Game"
    structure: BlindStructure = field(default_factory=create_standard_blind_structure)
    clock: ClockState = field(default_factory=Pending)

    buy_in_amount: int = 0
    starting_stack: int = 10000
    rebuy_amount: int = 0
    add_on_amount: int = 0
    rebuy_limit: Optional[int] = None  # None = unlimited
    add_on_limit: Optional[int] = None
    bounty_amount: int = 0

    players_registered: int = 0
    players_remaining: int = 0
    prize_pool: int = 0
    total_rebuys: int = 0
    total_add_ons: int = 0

    # Monotonic counters for seating order and check-in order
    seat_sequence: int = 0
    check_in_sequence: int = 0

    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    financial_locked_at: Optional[datetime] = None
    financial_locked_by: Optional[str] = None
    results_finalized_at: Optional[datetime] = None

    @property
    def status(self) -> GameStatus:
        return self.clock.status

    @property
    def current_level(self) -> int:
        return self.clock.level

    @property
    def level_started_at(self) -> Optional[datetime]:
        return getattr(self.clock, "level_started_at", None)

    @property
    def paused_at(self) -> Optional[datetime]:
        return getattr(self.clock, "paused_at", None)

    @property
    def total_paused_ms(self) -> int:
        return getattr(self.clock, "total_paused_ms", 0)

    @property
    def completed_at(self) -> Optional[datetime]:
        return getattr(self.clock, "completed_at", None)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_financially_locked(self) -> bool:
        return self.financial_locked_at is not None

    @property
    def current_blind(self) -> Optional[BlindLevel]:
        return self.structure.get(self.current_level)

    @property
    def next_blind(self) -> Optional[BlindLevel]:
        return self.structure.get(self.current_level + 1)

    def with_clock(self, clock: ClockState) -> "Game":
        return replace(self, clock=clock)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "club_id": self.club_id,
            "name": self.name,
            "status": self.status.value,
            "current_level": self.current_level,
            "level_started_at": _iso(self.level_started_at),
            "paused_at": _iso(self.paused_at),
            "total_paused_ms": self.total_paused_ms,
            "buy_in_amount": self.buy_in_amount,
            "starting_stack": self.starting_stack,
            "rebuy_limit": self.rebuy_limit,
            "add_on_limit": self.add_on_limit,
            "bounty_amount": self.bounty_amount,
            "players_registered": self.players_registered,
            "players_remaining": self.players_remaining,
            "prize_pool": self.prize_pool,
            "total_rebuys": self.total_rebuys,
            "total_add_ons": self.total_add_ons,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "financial_locked_at": _iso(self.financial_locked_at),
            "results_finalized_at": _iso(self.results_finalized_at),
        }


@dataclass(frozen=True)
class GameSession:
    """One player's participation in a game."""

    game_id: str
    person_id: str
    session_id: str = field(default_factory=lambda: str(uuid4()))
    status: SessionStatus = SessionStatus.ACTIVE

    table_number: Optional[int] = None
    seat_number: Optional[int] = None
    seated_sequence: int = 0
    check_in_order: int = 0

    starting_stack: int = 0
    current_stack: int = 0
    rebuys: int = 0
    add_ons: int = 0
    bounties_won: int = 0
    bounties_lost: int = 0

    buy_in_paid: bool = False
    total_paid: int = 0
    payout: int = 0

    finish_position: Optional[int] = None
    points_earned: int = 0
    checked_in_at: datetime = field(default_factory=utcnow)
    eliminated_at: Optional[datetime] = None
    eliminated_by: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    @property
    def net(self) -> int:
        return self.payout - self.total_paid

    def with_stack(self, stack: int) -> "GameSession":
        return replace(self, current_stack=stack)

    def at_seat(self, table_number: int, seat_number: int, sequence: int) -> "GameSession":
        return replace(
            self,
            table_number=table_number,
            seat_number=seat_number,
            seated_sequence=sequence,
        )

    def eliminated(
        self, position: int, at: datetime, by: Optional[str] = None
    ) -> "GameSession":
        return replace(
            self,
            status=SessionStatus.ELIMINATED,
            finish_position=position,
            eliminated_at=at,
            eliminated_by=by,
            current_stack=0,
        )

    def crowned(self) -> "GameSession":
        return replace(self, status=SessionStatus.WINNER, finish_position=1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "game_id": self.game_id,
            "person_id": self.person_id,
            "status": self.status.value,
            "table_number": self.table_number,
            "seat_number": self.seat_number,
            "starting_stack": self.starting_stack,
            "current_stack": self.current_stack,
            "rebuys": self.rebuys,
            "add_ons": self.add_ons,
            "bounties_won": self.bounties_won,
            "bounties_lost": self.bounties_lost,
            "buy_in_paid": self.buy_in_paid,
            "total_paid": self.total_paid,
            "payout": self.payout,
            "net": self.net,
            "finish_position": self.finish_position,
            "points_earned": self.points_earned,
            "checked_in_at": _iso(self.checked_in_at),
            "eliminated_at": _iso(self.eliminated_at),
            "eliminated_by": self.eliminated_by,
        }


@dataclass(frozen=True)
class GameTable:
    """A physical table. Deactivated, never deleted."""

    game_id: str
    table_number: int
    max_seats: int = 9
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_number": self.table_number,
            "max_seats": self.max_seats,
            "is_active": self.is_active,
        }


# =============================================================================
# Money
# =============================================================================


@dataclass(frozen=True)
class Transaction:
    """Immutable financial event. Only the void fields ever change."""

    club_id: str
    type: TransactionType
    amount: int  # non-negative magnitude
    actor_id: str
    sequence: int
    transaction_id: str = field(default_factory=lambda: str(uuid4()))
    game_id: Optional[str] = None
    person_id: Optional[str] = None
    # Sign for TREASURY_ADJUSTMENT (treasury) and PLAYER_BALANCE_ADJUSTMENT (player balance)
    direction: TreasuryEffect = TreasuryEffect.CREDIT
    category: TransactionCategory = TransactionCategory.GAME
    description: Optional[str] = None
    method: Optional[str] = None
    bounty_from_person_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    is_voided: bool = False
    voided_at: Optional[datetime] = None
    voided_by: Optional[str] = None
    void_reason: Optional[str] = None

    @property
    def treasury_effect(self) -> TreasuryEffect:
        if self.type == TransactionType.TREASURY_ADJUSTMENT:
            return self.direction
        return TREASURY_EFFECTS[self.type]

    @property
    def treasury_delta(self) -> int:
        """Signed change this transaction applies to the club treasury."""
        effect = self.treasury_effect
        if effect == TreasuryEffect.CREDIT:
            return self.amount
        if effect == TreasuryEffect.DEBIT:
            return -self.amount
        return 0

    @property
    def affects_treasury(self) -> bool:
        return self.treasury_effect != TreasuryEffect.NEUTRAL

    def voided(self, actor_id: str, at: datetime, reason: str) -> "Transaction":
        return replace(
            self,
            is_voided=True,
            voided_at=at,
            voided_by=actor_id,
            void_reason=reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "club_id": self.club_id,
            "game_id": self.game_id,
            "person_id": self.person_id,
            "type": self.type.value,
            "category": self.category.value,
            "amount": self.amount,
            "direction": self.direction.value,
            "treasury_delta": self.treasury_delta,
            "description": self.description,
            "method": self.method,
            "bounty_from_person_id": self.bounty_from_person_id,
            "actor_id": self.actor_id,
            "created_at": _iso(self.created_at),
            "is_voided": self.is_voided,
            "voided_at": _iso(self.voided_at),
            "voided_by": self.voided_by,
            "void_reason": self.void_reason,
        }


@dataclass(frozen=True)
class TreasuryBalance:
    """A club's cash on hand."""

    club_id: str
    current_balance: int = 0
    minimum_reserve: int = 0
    updated_at: Optional[datetime] = None

    @property
    def is_low(self) -> bool:
        return self.current_balance < self.minimum_reserve

    def to_dict(self) -> Dict[str, Any]:
        return {
            "club_id": self.club_id,
            "current_balance": self.current_balance,
            "minimum_reserve": self.minimum_reserve,
            "is_low": self.is_low,
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class PlayerBalance:
    """What a player owes the club (positive) or is owed (negative)."""

    club_id: str
    person_id: str
    balance: int = 0
    last_settled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "club_id": self.club_id,
            "person_id": self.person_id,
            "balance": self.balance,
            "last_settled_at": _iso(self.last_settled_at),
            "updated_at": _iso(self.updated_at),
        }


# =============================================================================
# Network, bonus chips, audit
# =============================================================================


def pair_key(person_a: str, person_b: str) -> Tuple[str, str]:
    """Unordered pair, lowest id first."""
    return (person_a, person_b) if person_a < person_b else (person_b, person_a)


@dataclass(frozen=True)
class NetworkEdge:
    """Symmetric "played together" relationship."""

    person_a_id: str
    person_b_id: str
    games_shared: int = 0
    game_ids: FrozenSet[str] = frozenset()
    first_played_at: Optional[datetime] = None
    last_played_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "person_a_id": self.person_a_id,
            "person_b_id": self.person_b_id,
            "games_shared": self.games_shared,
            "first_played_at": _iso(self.first_played_at),
            "last_played_at": _iso(self.last_played_at),
        }


@dataclass(frozen=True)
class BonusChipConfig:
    """Per-club bonus chip rules."""

    amount: int = 500
    mode: BonusChipMode = BonusChipMode.OFF
    max_per_night: int = 3
    trigger_food: bool = True
    trigger_drinks: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": self.amount,
            "mode": self.mode.value,
            "max_per_night": self.max_per_night,
            "trigger_food": self.trigger_food,
            "trigger_drinks": self.trigger_drinks,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BonusChipConfig":
        return cls(
            amount=int(data.get("amount", 500)),
            mode=BonusChipMode(data.get("mode", BonusChipMode.OFF.value)),
            max_per_night=int(data.get("max_per_night", 3)),
            trigger_food=bool(data.get("trigger_food", True)),
            trigger_drinks=bool(data.get("trigger_drinks", True)),
        )


@dataclass(frozen=True)
class BonusChipGrant:
    club_id: str
    game_id: str
    person_id: str
    amount: int
    mode: BonusChipMode
    grant_id: str = field(default_factory=lambda: str(uuid4()))
    verified_by: Optional[str] = None
    granted_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grant_id": self.grant_id,
            "club_id": self.club_id,
            "game_id": self.game_id,
            "person_id": self.person_id,
            "amount": self.amount,
            "mode": self.mode.value,
            "verified_by": self.verified_by,
            "granted_at": _iso(self.granted_at),
        }


@dataclass(frozen=True)
class AuditEntry:
    """Before/after record of one mutation."""

    club_id: str
    actor_id: str
    action: str  # CREATE | UPDATE | VOID | APPROVE
    entity_type: str
    entity_id: str
    entry_id: str = field(default_factory=lambda: str(uuid4()))
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    transaction_id: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "club_id": self.club_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "before": self.before,
            "after": self.after,
            "transaction_id": self.transaction_id,
            "note": self.note,
            "created_at": _iso(self.created_at),
        }
