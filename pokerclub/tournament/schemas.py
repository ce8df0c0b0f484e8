"""
Tournament API request models.

Amounts are integers in minor currency units (cents).
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import BlindLevel, BonusChipConfig, BonusChipMode
from .seating import PlayerMove


# =============================================================================
# Games
# =============================================================================


class BlindLevelRequest(BaseModel):
    """One blind level."""

    level: int = Field(..., ge=1)
    small_blind: int = Field(default=0, ge=0)
    big_blind: int = Field(default=0, ge=0)
    ante: int = Field(default=0, ge=0)
    duration_minutes: int = Field(default=15, ge=1, le=240)
    is_break: bool = False

    def to_level(self) -> BlindLevel:
        return BlindLevel(
            level=self.level,
            small_blind=self.small_blind,
            big_blind=self.big_blind,
            ante=self.ante,
            duration_minutes=self.duration_minutes,
            is_break=self.is_break,
        )


class CreateGameRequest(BaseModel):
    """Game creation request. Omitting ``levels`` uses the standard structure."""

    club_id: str = Field(..., min_length=1)
    name: str = Field(default="Game", min_length=1, max_length=100)
    levels: Optional[List[BlindLevelRequest]] = Field(default=None, min_length=1)
    buy_in_amount: int = Field(default=0, ge=0)
    starting_stack: int = Field(default=10000, ge=0)
    rebuy_amount: int = Field(default=0, ge=0)
    add_on_amount: int = Field(default=0, ge=0)
    rebuy_limit: Optional[int] = Field(default=None, ge=0)
    add_on_limit: Optional[int] = Field(default=None, ge=0)
    bounty_amount: int = Field(default=0, ge=0)


class PlayerRequest(BaseModel):
    person_id: str = Field(..., min_length=1)


class StackUpdateRequest(BaseModel):
    stack: int = Field(..., ge=0)


class EliminateRequest(BaseModel):
    person_id: str = Field(..., min_length=1)
    eliminated_by: Optional[str] = None


# =============================================================================
# Seating
# =============================================================================


class MoveRequest(BaseModel):
    """A proposed move as returned by the balance endpoint."""

    person_id: str
    from_table: int = Field(..., ge=1)
    from_seat: int = Field(..., ge=1)
    to_table: int = Field(..., ge=1)
    to_seat: int = Field(..., ge=1)
    move_id: Optional[str] = None

    def to_move(self) -> PlayerMove:
        kwargs = {"move_id": self.move_id} if self.move_id else {}
        return PlayerMove(
            person_id=self.person_id,
            from_table=self.from_table,
            from_seat=self.from_seat,
            to_table=self.to_table,
            to_seat=self.to_seat,
            **kwargs,
        )


class ApproveMovesRequest(BaseModel):
    moves: List[MoveRequest] = Field(..., min_length=1)


# =============================================================================
# Money
# =============================================================================


class EntryFeeRequest(BaseModel):
    """Buy-in, rebuy or add-on. Amount defaults to the game's configured price."""

    person_id: str = Field(..., min_length=1)
    amount: Optional[int] = Field(default=None, gt=0)
    method: Optional[str] = Field(default=None, max_length=50)


class PayoutRequest(BaseModel):
    person_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    method: Optional[str] = Field(default=None, max_length=50)


class BountyRequest(BaseModel):
    winner_id: str = Field(..., min_length=1)
    loser_id: str = Field(..., min_length=1)
    amount: Optional[int] = Field(default=None, gt=0)


class ExpenseRequest(BaseModel):
    amount: int = Field(..., gt=0)
    category: str
    description: str = Field(..., min_length=1, max_length=500)
    game_id: Optional[str] = None
    method: Optional[str] = Field(default=None, max_length=50)


class DuesPaymentRequest(BaseModel):
    person_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    method: Optional[str] = Field(default=None, max_length=50)


class TreasuryAdjustmentRequest(BaseModel):
    """Positive adds funds, negative withdraws."""

    amount: int
    description: str = Field(..., min_length=1, max_length=500)


class MinimumReserveRequest(BaseModel):
    amount: int = Field(..., ge=0)


class VoidRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class PlayerBalanceAdjustRequest(BaseModel):
    """Positive: player owes the club more. Negative: club owes the player."""

    amount: int
    note: Optional[str] = Field(default=None, max_length=500)


class SettlementConfirmRequest(BaseModel):
    amount: int


class PayoutSuggestionRequest(BaseModel):
    percentages: Optional[List[Decimal]] = Field(default=None, min_length=1)


# =============================================================================
# Bonus chips
# =============================================================================


class BonusChipConfigRequest(BaseModel):
    amount: int = Field(default=500, gt=0)
    mode: BonusChipMode = BonusChipMode.OFF
    max_per_night: int = Field(default=3, ge=1)
    trigger_food: bool = True
    trigger_drinks: bool = True

    def to_config(self) -> BonusChipConfig:
        return BonusChipConfig(
            amount=self.amount,
            mode=self.mode,
            max_per_night=self.max_per_night,
            trigger_food=self.trigger_food,
            trigger_drinks=self.trigger_drinks,
        )


class BonusChipGrantRequest(BaseModel):
    person_id: str = Field(..., min_length=1)
    verified_by: Optional[str] = None
