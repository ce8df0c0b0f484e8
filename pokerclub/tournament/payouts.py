"""
Suggested payout calculation.

Shares are computed with Decimal, rounded half-up to the club's rounding
unit, and first place absorbs whatever rounding left over, so the sum of
suggested payouts always equals the net prize pool exactly.

Example (net pool 55000 cents, 65/30/5, unit 100):
    35750 -> 35800, 16500 -> 16500, 2750 -> 2800; sum 55100
    first place absorbs -100 -> 35700 / 16500 / 2800
"""

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pokerclub.utils.errors import ValidationError
from .models import GameSession

Percentage = Union[int, str, Decimal]

# (min players, max players, split)
DEFAULT_PAYOUT_TIERS: Tuple[Tuple[int, Optional[int], Tuple[int, ...]], ...] = (
    (2, 4, (100,)),
    (5, 7, (70, 30)),
    (8, 12, (50, 30, 20)),
    (13, None, (50, 25, 15, 10)),
)

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class PayoutLine:
    position: int
    percentage: Decimal
    amount: int
    person_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "percentage": str(self.percentage),
            "amount": self.amount,
            "person_id": self.person_id,
        }


def default_percentages(player_count: int) -> Tuple[Decimal, ...]:
    """Split by field size; fewer than two players falls back to the first tier."""
    for low, high, split in DEFAULT_PAYOUT_TIERS:
        if player_count >= low and (high is None or player_count <= high):
            return tuple(Decimal(p) for p in split)
    return tuple(Decimal(p) for p in DEFAULT_PAYOUT_TIERS[0][2])


def _to_decimal(value: Percentage) -> Decimal:
    try:
        return Decimal(str(value))
    except ArithmeticError:
        raise ValidationError(f"Invalid payout percentage: {value!r}")


def calculate_payouts(
    net_prize_pool: int,
    percentages: Sequence[Percentage],
    rounding_unit: int = 100,
) -> List[PayoutLine]:
    """Split ``net_prize_pool`` (minor units) by ``percentages`` (summing to 100)."""
    if net_prize_pool < 0:
        raise ValidationError(
            "Net prize pool cannot be negative", details={"netPrizePool": net_prize_pool}
        )
    if rounding_unit <= 0:
        raise ValidationError("Rounding unit must be positive")
    if not percentages:
        raise ValidationError("At least one payout percentage is required")

    pcts = [_to_decimal(p) for p in percentages]
    if any(p <= 0 for p in pcts):
        raise ValidationError("Payout percentages must be positive")
    if sum(pcts) != HUNDRED:
        raise ValidationError(
            f"Payout percentages must total 100, got {sum(pcts)}",
            details={"percentages": [str(p) for p in pcts]},
        )

    unit = Decimal(rounding_unit)
    pool = Decimal(net_prize_pool)
    amounts = [
        int((pool * pct / HUNDRED / unit).quantize(Decimal(1), rounding=ROUND_FLOOR) * unit)
        for pct in pcts
    ]
    amounts[0] += net_prize_pool - sum(amounts)

    return [
        PayoutLine(position=i, percentage=pct, amount=amount)
        for i, (pct, amount) in enumerate(zip(pcts, amounts), start=1)
    ]


def assign_finishers(
    lines: Sequence[PayoutLine], sessions: Sequence[GameSession]
) -> List[PayoutLine]:
    """Attach the player who finished in each paid position, when known."""
    by_position = {
        s.finish_position: s.person_id for s in sessions if s.finish_position is not None
    }
    return [
        PayoutLine(
            position=line.position,
            percentage=line.percentage,
            amount=line.amount,
            person_id=by_position.get(line.position),
        )
        for line in lines
    ]
