"""
Settlement Ledger.

Records every money-moving event for a game or club, keeps the club
treasury consistent, voids with an exact treasury reversal, and gates the
terminal financial lock.

Treasury effect per transaction type:
─────────────────────────────────────────────────────────────────
    credit   BUY_IN, REBUY, ADD_ON, DUES_PAYMENT
    debit    PAYOUT, EXPENSE
    signed   TREASURY_ADJUSTMENT (direction stored on the row)
    neutral  BOUNTY_COLLECTED, PLAYER_BALANCE_ADJUSTMENT
─────────────────────────────────────────────────────────────────

Every ``record_*`` method only builds new records (transaction, game,
sessions, treasury, audit entry). The engine commits them in one step, so
a ledger row without its treasury update is never observable.

Voids reverse the treasury effect only. Session counters (rebuys,
total_paid, payout) and the game prize pool keep their historical values.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pokerclub.logging_config import get_logger
from pokerclub.utils.errors import (
    AlreadyVoidedError,
    FinancialsLockedError,
    NotFoundError,
    UnbalancedSettlementError,
    ValidationError,
)
from .models import (
    EXPENSE_CATEGORIES,
    AuditEntry,
    Game,
    GameSession,
    GameStatus,
    PlayerBalance,
    Transaction,
    TransactionCategory,
    TransactionType,
    TreasuryBalance,
    TreasuryEffect,
    as_utc,
    utcnow,
)
from .store import GameStore

logger = get_logger(__name__)

BUY_IN_STATUSES = frozenset({GameStatus.PENDING, GameStatus.ACTIVE})
REBUY_STATUSES = frozenset({GameStatus.ACTIVE})
PAYOUT_STATUSES = frozenset({GameStatus.ACTIVE, GameStatus.COMPLETED})

MONEY_IN_TYPES = (TransactionType.BUY_IN, TransactionType.REBUY, TransactionType.ADD_ON)


# =============================================================================
# Results and views
# =============================================================================


@dataclass(frozen=True)
class LedgerChange:
    """New record versions produced by one ledger operation."""

    audit: AuditEntry
    transaction: Optional[Transaction] = None
    game: Optional[Game] = None
    sessions: Tuple[GameSession, ...] = ()
    treasury: Optional[TreasuryBalance] = None
    player_balance: Optional[PlayerBalance] = None


@dataclass(frozen=True)
class SettlementView:
    """Read-only reconciliation of one game's books."""

    game_id: str
    status: GameStatus
    financial_locked_at: Optional[datetime]
    prize_pool: int
    money_in: int
    variance: int
    net_prize_pool: int
    total_buy_ins: int
    total_rebuys: int
    total_add_ons: int
    total_payouts: int
    total_bounties: int
    total_expenses: int
    rebuy_count: int
    add_on_count: int
    is_balanced: bool
    sessions: Tuple[Dict[str, Any], ...] = ()
    transactions_by_type: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_id": self.game_id,
            "status": self.status.value,
            "financial_locked_at": (
                self.financial_locked_at.isoformat() if self.financial_locked_at else None
            ),
            "prize_pool": self.prize_pool,
            "money_in": self.money_in,
            "variance": self.variance,
            "net_prize_pool": self.net_prize_pool,
            "total_buy_ins": self.total_buy_ins,
            "total_rebuys": self.total_rebuys,
            "total_add_ons": self.total_add_ons,
            "total_payouts": self.total_payouts,
            "total_bounties": self.total_bounties,
            "total_expenses": self.total_expenses,
            "rebuy_count": self.rebuy_count,
            "add_on_count": self.add_on_count,
            "is_balanced": self.is_balanced,
            "sessions": list(self.sessions),
            "transactions_by_type": self.transactions_by_type,
        }


@dataclass(frozen=True)
class LedgerEntry:
    transaction: Transaction
    running_balance: int  # treasury balance right after this row

    def to_dict(self) -> Dict[str, Any]:
        tx = self.transaction
        return {
            "transaction_id": tx.transaction_id,
            "date": tx.created_at.isoformat(),
            "type": tx.type.value,
            "category": tx.category.value,
            "amount": tx.amount,
            "treasury_delta": tx.treasury_delta,
            "description": tx.description,
            "method": tx.method,
            "actor_id": tx.actor_id,
            "running_balance": self.running_balance,
        }


@dataclass(frozen=True)
class LedgerPage:
    club_id: str
    entries: Tuple[LedgerEntry, ...]
    total: int
    limit: int
    offset: int
    current_balance: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "club_id": self.club_id,
            "entries": [e.to_dict() for e in self.entries],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "current_balance": self.current_balance,
        }


# =============================================================================
# Helpers
# =============================================================================


def _require_amount(amount: Any, name: str = "Amount") -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(
            f"{name} must be a positive whole number of minor units",
            details={"amount": amount},
        )
    return amount


def _require_signed_amount(amount: Any, name: str = "Amount") -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
        raise ValidationError(
            f"{name} must be a non-zero whole number of minor units",
            details={"amount": amount},
        )
    return amount


def _require_text(value: Optional[str], message: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(message)
    return value.strip()


def _sum(transactions: Iterable[Transaction]) -> int:
    return sum(tx.amount for tx in transactions)


def _tx_summary(tx: Transaction) -> Dict[str, Any]:
    return {
        "transaction_id": tx.transaction_id,
        "person_id": tx.person_id,
        "amount": tx.amount,
        "method": tx.method,
        "description": tx.description,
        "created_at": tx.created_at.isoformat(),
    }


def _session_counters(session: GameSession) -> Dict[str, Any]:
    return {
        "person_id": session.person_id,
        "rebuys": session.rebuys,
        "add_ons": session.add_ons,
        "total_paid": session.total_paid,
        "payout": session.payout,
        "bounties_won": session.bounties_won,
        "bounties_lost": session.bounties_lost,
    }


class SettlementLedger:
    """
    Ledger operations over the store.

    Reads come straight from the store; writes are returned as a
    ``LedgerChange`` for the engine to audit and commit under the
    game and treasury locks.
    """

    def __init__(
        self,
        store: GameStore,
        clock: Callable[[], datetime] = utcnow,
        default_page_size: int = 50,
        max_page_size: int = 200,
    ):
        self.store = store
        self.clock = clock
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # =========================================================================
    # Internal builders
    # =========================================================================

    def _game_for_money(
        self, game_id: str, allowed: Optional[frozenset], label: str
    ) -> Game:
        game = self.store.get_game(game_id)
        if game.is_financially_locked:
            raise FinancialsLockedError(game_id)
        if allowed is not None and game.status not in allowed:
            raise ValidationError(
                f"Cannot record {label} for game in {game.status.value} status",
                details={"gameId": game_id, "status": game.status.value},
            )
        return game

    def _new_transaction(self, **kwargs: Any) -> Transaction:
        return Transaction(
            sequence=self.store.next_sequence(),
            created_at=self.clock(),
            **kwargs,
        )

    def _apply_to_treasury(
        self, club_id: str, delta: int
    ) -> Tuple[TreasuryBalance, TreasuryBalance]:
        before = self.store.get_treasury(club_id)
        after = replace(
            before,
            current_balance=before.current_balance + delta,
            updated_at=self.clock(),
        )
        return before, after

    def _game_money_change(
        self,
        game: Game,
        tx: Transaction,
        sessions_before: Sequence[GameSession],
        sessions_after: Sequence[GameSession],
        new_game: Optional[Game] = None,
    ) -> LedgerChange:
        treasury_before, treasury_after = self._apply_to_treasury(game.club_id, tx.treasury_delta)
        final_game = new_game or game
        audit = AuditEntry(
            club_id=game.club_id,
            actor_id=tx.actor_id,
            action="CREATE",
            entity_type="Transaction",
            entity_id=tx.transaction_id,
            transaction_id=tx.transaction_id,
            before={
                "treasury_balance": treasury_before.current_balance,
                "prize_pool": game.prize_pool,
                "sessions": [_session_counters(s) for s in sessions_before],
            },
            after={
                "transaction": tx.to_dict(),
                "treasury_balance": treasury_after.current_balance,
                "prize_pool": final_game.prize_pool,
                "sessions": [_session_counters(s) for s in sessions_after],
            },
            created_at=tx.created_at,
        )
        return LedgerChange(
            audit=audit,
            transaction=tx,
            game=new_game,
            sessions=tuple(sessions_after),
            treasury=treasury_after if tx.affects_treasury else None,
        )

    # =========================================================================
    # Game money
    # =========================================================================

    def record_buy_in(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        amount: Optional[int] = None,
        method: Optional[str] = None,
    ) -> LedgerChange:
        game = self._game_for_money(game_id, BUY_IN_STATUSES, "buy-in")
        amount = _require_amount(game.buy_in_amount if amount is None else amount)
        session = self.store.get_session(game_id, person_id)

        tx = self._new_transaction(
            club_id=game.club_id,
            game_id=game_id,
            person_id=person_id,
            actor_id=actor_id,
            type=TransactionType.BUY_IN,
            amount=amount,
            method=method,
            description="Buy-in for game",
        )
        updated = replace(session, buy_in_paid=True, total_paid=session.total_paid + amount)
        new_game = replace(game, prize_pool=game.prize_pool + amount)
        return self._game_money_change(game, tx, [session], [updated], new_game)

    def record_rebuy(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        amount: Optional[int] = None,
        method: Optional[str] = None,
    ) -> LedgerChange:
        game = self._game_for_money(game_id, REBUY_STATUSES, "rebuy")
        if amount is None:
            amount = game.rebuy_amount or game.buy_in_amount
        amount = _require_amount(amount)
        session = self.store.get_session(game_id, person_id)

        if game.rebuy_limit is not None and session.rebuys >= game.rebuy_limit:
            raise ValidationError(
                "Rebuy limit reached for this player",
                details={"personId": person_id, "rebuyLimit": game.rebuy_limit},
            )

        tx = self._new_transaction(
            club_id=game.club_id,
            game_id=game_id,
            person_id=person_id,
            actor_id=actor_id,
            type=TransactionType.REBUY,
            amount=amount,
            method=method,
            description=f"Rebuy #{session.rebuys + 1}",
        )
        updated = replace(
            session, rebuys=session.rebuys + 1, total_paid=session.total_paid + amount
        )
        new_game = replace(
            game, prize_pool=game.prize_pool + amount, total_rebuys=game.total_rebuys + 1
        )
        return self._game_money_change(game, tx, [session], [updated], new_game)

    def record_add_on(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        amount: Optional[int] = None,
        method: Optional[str] = None,
    ) -> LedgerChange:
        game = self._game_for_money(game_id, REBUY_STATUSES, "add-on")
        if amount is None:
            amount = game.add_on_amount or game.buy_in_amount
        amount = _require_amount(amount)
        session = self.store.get_session(game_id, person_id)

        if game.add_on_limit is not None and session.add_ons >= game.add_on_limit:
            raise ValidationError(
                "Add-on limit reached for this player",
                details={"personId": person_id, "addOnLimit": game.add_on_limit},
            )

        tx = self._new_transaction(
            club_id=game.club_id,
            game_id=game_id,
            person_id=person_id,
            actor_id=actor_id,
            type=TransactionType.ADD_ON,
            amount=amount,
            method=method,
            description=f"Add-on #{session.add_ons + 1}",
        )
        updated = replace(
            session, add_ons=session.add_ons + 1, total_paid=session.total_paid + amount
        )
        new_game = replace(
            game, prize_pool=game.prize_pool + amount, total_add_ons=game.total_add_ons + 1
        )
        return self._game_money_change(game, tx, [session], [updated], new_game)

    def record_payout(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        amount: int,
        method: Optional[str] = None,
    ) -> LedgerChange:
        game = self._game_for_money(game_id, PAYOUT_STATUSES, "payout")
        amount = _require_amount(amount)
        session = self.store.get_session(game_id, person_id)

        position = session.finish_position if session.finish_position is not None else "TBD"
        tx = self._new_transaction(
            club_id=game.club_id,
            game_id=game_id,
            person_id=person_id,
            actor_id=actor_id,
            type=TransactionType.PAYOUT,
            amount=amount,
            method=method,
            description=f"Payout - position {position}",
        )
        updated = replace(session, payout=session.payout + amount)
        return self._game_money_change(game, tx, [session], [updated])

    def record_bounty(
        self,
        game_id: str,
        winner_id: str,
        loser_id: str,
        actor_id: str,
        amount: Optional[int] = None,
    ) -> LedgerChange:
        """Bounty money passes between players; the treasury does not move."""
        game = self._game_for_money(game_id, PAYOUT_STATUSES, "bounty")
        amount = _require_amount(game.bounty_amount if amount is None else amount)
        if winner_id == loser_id:
            raise ValidationError("A player cannot collect their own bounty")
        winner = self.store.get_session(game_id, winner_id)
        loser = self.store.get_session(game_id, loser_id)

        tx = self._new_transaction(
            club_id=game.club_id,
            game_id=game_id,
            person_id=winner_id,
            actor_id=actor_id,
            type=TransactionType.BOUNTY_COLLECTED,
            amount=amount,
            bounty_from_person_id=loser_id,
            description="Bounty collected from eliminated player",
        )
        new_winner = replace(winner, bounties_won=winner.bounties_won + 1)
        new_loser = replace(loser, bounties_lost=loser.bounties_lost + 1)
        return self._game_money_change(
            game, tx, [winner, loser], [new_winner, new_loser]
        )

    # =========================================================================
    # Club money
    # =========================================================================

    def record_expense(
        self,
        club_id: str,
        actor_id: str,
        amount: int,
        category: Union[str, TransactionCategory],
        description: str,
        game_id: Optional[str] = None,
        method: Optional[str] = None,
    ) -> LedgerChange:
        amount = _require_amount(amount)
        valid = {c.value: c for c in EXPENSE_CATEGORIES}
        key = category.value if isinstance(category, TransactionCategory) else str(category)
        if key not in valid:
            raise ValidationError(
                f"Invalid expense category: {key}. Must be one of: {', '.join(valid)}",
                details={"category": key},
            )
        description = _require_text(description, "Description is required for expenses")

        game = None
        if game_id is not None:
            game = self._game_for_money(game_id, None, "expense")
            if game.club_id != club_id:
                raise ValidationError(
                    "Game belongs to another club", details={"gameId": game_id}
                )

        tx = self._new_transaction(
            club_id=club_id,
            game_id=game_id,
            actor_id=actor_id,
            type=TransactionType.EXPENSE,
            category=valid[key],
            amount=amount,
            method=method,
            description=description,
        )
        if game is not None:
            return self._game_money_change(game, tx, [], [])
        return self._club_money_change(tx)

    def record_dues_payment(
        self,
        club_id: str,
        person_id: str,
        actor_id: str,
        amount: int,
        method: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LedgerChange:
        amount = _require_amount(amount)
        tx = self._new_transaction(
            club_id=club_id,
            person_id=person_id,
            actor_id=actor_id,
            type=TransactionType.DUES_PAYMENT,
            category=TransactionCategory.DUES,
            amount=amount,
            method=method,
            description=description or "Dues payment",
        )
        return self._club_money_change(tx)

    def record_treasury_adjustment(
        self,
        club_id: str,
        actor_id: str,
        signed_amount: int,
        description: str,
    ) -> LedgerChange:
        """Positive adds funds, negative withdraws them."""
        signed_amount = _require_signed_amount(signed_amount)
        description = _require_text(
            description, "Description is required for treasury adjustments"
        )
        tx = self._new_transaction(
            club_id=club_id,
            actor_id=actor_id,
            type=TransactionType.TREASURY_ADJUSTMENT,
            category=TransactionCategory.TREASURY,
            amount=abs(signed_amount),
            direction=TreasuryEffect.CREDIT if signed_amount > 0 else TreasuryEffect.DEBIT,
            description=description,
        )
        return self._club_money_change(tx, note=description)

    def _club_money_change(self, tx: Transaction, note: Optional[str] = None) -> LedgerChange:
        treasury_before, treasury_after = self._apply_to_treasury(tx.club_id, tx.treasury_delta)
        audit = AuditEntry(
            club_id=tx.club_id,
            actor_id=tx.actor_id,
            action="CREATE",
            entity_type="Transaction",
            entity_id=tx.transaction_id,
            transaction_id=tx.transaction_id,
            before={"treasury_balance": treasury_before.current_balance},
            after={
                "transaction": tx.to_dict(),
                "treasury_balance": treasury_after.current_balance,
            },
            note=note,
            created_at=tx.created_at,
        )
        return LedgerChange(audit=audit, transaction=tx, treasury=treasury_after)

    # =========================================================================
    # Voids
    # =========================================================================

    def void_transaction(self, transaction_id: str, actor_id: str, reason: str) -> LedgerChange:
        """Mark a transaction voided and apply the exact inverse of its treasury effect."""
        tx = self.store.get_transaction(transaction_id)
        if tx.is_voided:
            raise AlreadyVoidedError(transaction_id)
        reason = _require_text(reason, "A reason is required to void a transaction")
        if tx.game_id is not None and self.store.get_game(tx.game_id).is_financially_locked:
            raise FinancialsLockedError(tx.game_id)

        now = self.clock()
        voided = tx.voided(actor_id, now, reason)
        treasury_before, treasury_after = self._apply_to_treasury(tx.club_id, -tx.treasury_delta)

        audit = AuditEntry(
            club_id=tx.club_id,
            actor_id=actor_id,
            action="VOID",
            entity_type="Transaction",
            entity_id=transaction_id,
            transaction_id=transaction_id,
            before={
                "type": tx.type.value,
                "amount": tx.amount,
                "is_voided": False,
                "treasury_balance": treasury_before.current_balance,
            },
            after={
                "is_voided": True,
                "void_reason": reason,
                "treasury_balance": treasury_after.current_balance,
            },
            created_at=now,
        )
        return LedgerChange(
            audit=audit,
            transaction=voided,
            treasury=treasury_after if tx.affects_treasury else None,
        )

    # =========================================================================
    # Settlement and lock
    # =========================================================================

    def get_settlement(self, game_id: str) -> SettlementView:
        """Reconcile a game's books. Computed fresh on every call."""
        game = self.store.get_game(game_id)
        live = [tx for tx in self.store.game_transactions(game_id) if not tx.is_voided]

        by_type: Dict[TransactionType, List[Transaction]] = {t: [] for t in TransactionType}
        for tx in live:
            by_type[tx.type].append(tx)

        total_buy_ins = _sum(by_type[TransactionType.BUY_IN])
        total_rebuys = _sum(by_type[TransactionType.REBUY])
        total_add_ons = _sum(by_type[TransactionType.ADD_ON])
        total_payouts = _sum(by_type[TransactionType.PAYOUT])
        total_bounties = _sum(by_type[TransactionType.BOUNTY_COLLECTED])
        total_expenses = _sum(by_type[TransactionType.EXPENSE])

        money_in = total_buy_ins + total_rebuys + total_add_ons
        variance = money_in - game.prize_pool
        net_prize_pool = game.prize_pool - total_expenses
        is_balanced = variance == 0 and total_payouts == net_prize_pool

        sessions = sorted(
            self.store.sessions_for(game_id),
            key=lambda s: (s.finish_position is None, s.finish_position or 0, s.check_in_order),
        )
        rows = tuple(
            {
                "session_id": s.session_id,
                "person_id": s.person_id,
                "buy_in_paid": s.buy_in_paid,
                "rebuys": s.rebuys,
                "add_ons": s.add_ons,
                "total_paid": s.total_paid,
                "payout": s.payout,
                "finish_position": s.finish_position,
                "bounties_won": s.bounties_won,
                "bounties_lost": s.bounties_lost,
                "net": s.net,
            }
            for s in sessions
        )

        return SettlementView(
            game_id=game_id,
            status=game.status,
            financial_locked_at=game.financial_locked_at,
            prize_pool=game.prize_pool,
            money_in=money_in,
            variance=variance,
            net_prize_pool=net_prize_pool,
            total_buy_ins=total_buy_ins,
            total_rebuys=total_rebuys,
            total_add_ons=total_add_ons,
            total_payouts=total_payouts,
            total_bounties=total_bounties,
            total_expenses=total_expenses,
            rebuy_count=game.total_rebuys,
            add_on_count=game.total_add_ons,
            is_balanced=is_balanced,
            sessions=rows,
            transactions_by_type={
                "buy_ins": [_tx_summary(t) for t in by_type[TransactionType.BUY_IN]],
                "rebuys": [_tx_summary(t) for t in by_type[TransactionType.REBUY]],
                "add_ons": [_tx_summary(t) for t in by_type[TransactionType.ADD_ON]],
                "payouts": [_tx_summary(t) for t in by_type[TransactionType.PAYOUT]],
                "bounties": [_tx_summary(t) for t in by_type[TransactionType.BOUNTY_COLLECTED]],
                "expenses": [_tx_summary(t) for t in by_type[TransactionType.EXPENSE]],
            },
        )

    def lock_financials(self, game_id: str, actor_id: str) -> Optional[LedgerChange]:
        """
        Freeze a balanced game's money entries.

        Returns None when the game is already locked: the earlier lock stands
        and nothing is re-stamped.
        """
        game = self.store.get_game(game_id)
        if game.is_financially_locked:
            return None

        settlement = self.get_settlement(game_id)
        if not settlement.is_balanced:
            raise UnbalancedSettlementError(
                variance=settlement.variance,
                total_payouts=settlement.total_payouts,
                net_prize_pool=settlement.net_prize_pool,
                money_in=settlement.money_in,
                prize_pool=settlement.prize_pool,
            )

        now = self.clock()
        locked = replace(game, financial_locked_at=now, financial_locked_by=actor_id)
        audit = AuditEntry(
            club_id=game.club_id,
            actor_id=actor_id,
            action="APPROVE",
            entity_type="Game",
            entity_id=game_id,
            before={"financial_locked_at": None},
            after={
                "financial_locked_at": now.isoformat(),
                "prize_pool": settlement.prize_pool,
                "total_payouts": settlement.total_payouts,
            },
            created_at=now,
        )
        return LedgerChange(audit=audit, game=locked)

    # =========================================================================
    # Treasury
    # =========================================================================

    def get_treasury_balance(self, club_id: str) -> TreasuryBalance:
        return self.store.get_treasury(club_id)

    def update_minimum_reserve(self, club_id: str, amount: int, actor_id: str) -> LedgerChange:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError(
                "Minimum reserve must be a non-negative whole number of minor units",
                details={"amount": amount},
            )
        before = self.store.get_treasury(club_id)
        after = replace(before, minimum_reserve=amount, updated_at=self.clock())
        audit = AuditEntry(
            club_id=club_id,
            actor_id=actor_id,
            action="UPDATE",
            entity_type="TreasuryBalance",
            entity_id=club_id,
            before={"minimum_reserve": before.minimum_reserve},
            after={"minimum_reserve": amount},
            created_at=after.updated_at,
        )
        return LedgerChange(audit=audit, treasury=after)

    def get_treasury_ledger(
        self,
        club_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> LedgerPage:
        """
        Page of treasury-moving rows, newest first, each with its running balance.

        Only the current total is persisted, so historical balances are
        rebuilt on read:
        ─────────────────────────────────────────────────────────────
        1. start from the current treasury balance
        2. undo every row newer than the top of the page (date
           filters do not apply here; every newer row moved the money)
        3. walk down the page: record the balance, then undo the row to
           get the balance right after the next older row
        ─────────────────────────────────────────────────────────────
        """
        limit = self.default_page_size if limit is None else limit
        if not 1 <= limit <= self.max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self.max_page_size}", details={"limit": limit}
            )
        if offset < 0:
            raise ValidationError("offset cannot be negative", details={"offset": offset})
        start_date, end_date = as_utc(start_date), as_utc(end_date)

        effective = [
            tx
            for tx in self.store.club_transactions(club_id)
            if not tx.is_voided and tx.affects_treasury
        ]
        filtered = [
            tx
            for tx in effective
            if (start_date is None or tx.created_at >= start_date)
            and (end_date is None or tx.created_at <= end_date)
        ]
        newest_first = list(reversed(filtered))
        page = newest_first[offset : offset + limit]

        current = self.store.get_treasury(club_id).current_balance
        running = current
        if page:
            top = page[0].sequence
            for tx in effective:
                if tx.sequence > top:
                    running -= tx.treasury_delta

        entries = []
        for tx in page:
            entries.append(LedgerEntry(transaction=tx, running_balance=running))
            running -= tx.treasury_delta

        return LedgerPage(
            club_id=club_id,
            entries=tuple(entries),
            total=len(filtered),
            limit=limit,
            offset=offset,
            current_balance=current,
        )

    # =========================================================================
    # Player balances
    # =========================================================================

    def adjust_player_balance(
        self,
        club_id: str,
        person_id: str,
        actor_id: str,
        signed_amount: int,
        note: Optional[str] = None,
    ) -> LedgerChange:
        """Positive: the player owes the club more. Negative: the club owes the player."""
        signed_amount = _require_signed_amount(signed_amount)
        before = self.store.find_player_balance(club_id, person_id) or PlayerBalance(
            club_id=club_id, person_id=person_id
        )
        now = self.clock()
        after = replace(before, balance=before.balance + signed_amount, updated_at=now)

        tx = self._new_transaction(
            club_id=club_id,
            person_id=person_id,
            actor_id=actor_id,
            type=TransactionType.PLAYER_BALANCE_ADJUSTMENT,
            category=TransactionCategory.PLAYER_BALANCE,
            amount=abs(signed_amount),
            direction=TreasuryEffect.CREDIT if signed_amount > 0 else TreasuryEffect.DEBIT,
            description=note or f"Balance adjusted by {signed_amount}",
        )
        return self._player_balance_change(tx, before, after, note)

    def confirm_player_settlement(
        self, club_id: str, person_id: str, actor_id: str, amount: int
    ) -> LedgerChange:
        """Settle all (amount == balance) or part of a player's balance."""
        amount = _require_signed_amount(amount)
        before = self.store.find_player_balance(club_id, person_id)
        if before is None:
            raise NotFoundError(
                "PlayerBalance", f"{club_id}:{person_id}", "Player balance not found"
            )

        now = self.clock()
        new_balance = 0 if amount == before.balance else before.balance - amount
        after = replace(before, balance=new_balance, last_settled_at=now, updated_at=now)

        tx = self._new_transaction(
            club_id=club_id,
            person_id=person_id,
            actor_id=actor_id,
            type=TransactionType.PLAYER_BALANCE_ADJUSTMENT,
            category=TransactionCategory.PLAYER_BALANCE,
            amount=abs(amount),
            direction=TreasuryEffect.DEBIT if amount > 0 else TreasuryEffect.CREDIT,
            description=f"Settlement - balance adjusted by {amount}",
        )
        return self._player_balance_change(tx, before, after)

    def _player_balance_change(
        self,
        tx: Transaction,
        before: PlayerBalance,
        after: PlayerBalance,
        note: Optional[str] = None,
    ) -> LedgerChange:
        audit = AuditEntry(
            club_id=tx.club_id,
            actor_id=tx.actor_id,
            action="UPDATE",
            entity_type="PlayerBalance",
            entity_id=f"{before.club_id}:{before.person_id}",
            transaction_id=tx.transaction_id,
            before=before.to_dict(),
            after=after.to_dict(),
            note=note,
            created_at=tx.created_at,
        )
        return LedgerChange(audit=audit, transaction=tx, player_balance=after)

    def get_player_balances(self, club_id: str) -> List[PlayerBalance]:
        """Largest debts and credits first."""
        return sorted(
            self.store.player_balances(club_id),
            key=lambda b: (-abs(b.balance), b.person_id),
        )
