"""
Tournament API Router.

Thin HTTP surface over ``TournamentEngine``. The acting operator is taken
from the ``X-Actor-Id`` header; authentication happens upstream.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from .engine import TournamentEngine
from .schemas import (
    ApproveMovesRequest,
    BonusChipConfigRequest,
    BonusChipGrantRequest,
    BountyRequest,
    CreateGameRequest,
    DuesPaymentRequest,
    EliminateRequest,
    EntryFeeRequest,
    ExpenseRequest,
    MinimumReserveRequest,
    PayoutRequest,
    PayoutSuggestionRequest,
    PlayerBalanceAdjustRequest,
    PlayerRequest,
    SettlementConfirmRequest,
    StackUpdateRequest,
    TreasuryAdjustmentRequest,
    VoidRequest,
)

router = APIRouter(prefix="/api/v1/tournament", tags=["Tournament"])


_engine: Optional[TournamentEngine] = None


def set_engine(engine: Optional[TournamentEngine]) -> None:
    global _engine
    _engine = engine


def get_engine() -> TournamentEngine:
    """Get tournament engine instance."""
    if _engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tournament engine not initialized",
        )
    return _engine


async def get_actor_id(
    x_actor_id: str = Header(..., alias="X-Actor-Id", min_length=1),
) -> str:
    """Operator performing the request."""
    return x_actor_id


# =============================================================================
# Games
# =============================================================================


@router.post("/games", status_code=status.HTTP_201_CREATED)
async def create_game(
    request: CreateGameRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    engine = get_engine()
    game = await engine.create_game(
        request.club_id,
        actor_id,
        name=request.name,
        structure=[lvl.to_level() for lvl in request.levels] if request.levels else None,
        buy_in_amount=request.buy_in_amount,
        starting_stack=request.starting_stack,
        rebuy_amount=request.rebuy_amount,
        add_on_amount=request.add_on_amount,
        rebuy_limit=request.rebuy_limit,
        add_on_limit=request.add_on_limit,
        bounty_amount=request.bounty_amount,
    )
    return game.to_dict()


@router.get("/clubs/{club_id}/games")
async def list_games(club_id: str) -> List[Dict[str, Any]]:
    return [g.to_dict() for g in get_engine().list_games(club_id)]


@router.get("/games/{game_id}")
async def get_game_state(game_id: str) -> Dict[str, Any]:
    """Clock display: level, time remaining, players, suggested moves."""
    return get_engine().get_game_state(game_id).to_dict()


@router.post("/games/{game_id}/check-in")
async def check_in(
    game_id: str, request: PlayerRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    session = await get_engine().check_in(game_id, request.person_id, actor_id)
    return session.to_dict()


@router.put("/games/{game_id}/players/{person_id}/stack")
async def update_stack(
    game_id: str,
    person_id: str,
    request: StackUpdateRequest,
    actor_id: str = Depends(get_actor_id),
) -> Dict[str, Any]:
    session = await get_engine().update_player_stack(game_id, person_id, request.stack, actor_id)
    return session.to_dict()


# =============================================================================
# Clock
# =============================================================================


@router.post("/games/{game_id}/start")
async def start_game(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    return (await get_engine().start_game(game_id, actor_id)).to_dict()


@router.post("/games/{game_id}/pause")
async def pause_game(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    return (await get_engine().pause_game(game_id, actor_id)).to_dict()


@router.post("/games/{game_id}/resume")
async def resume_game(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    return (await get_engine().resume_game(game_id, actor_id)).to_dict()


@router.post("/games/{game_id}/advance")
async def advance_level(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    return (await get_engine().advance_level(game_id, actor_id)).to_dict()


@router.post("/games/{game_id}/end")
async def end_game(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    return (await get_engine().end_game(game_id, actor_id)).to_dict()


@router.post("/games/{game_id}/eliminate")
async def eliminate_player(
    game_id: str, request: EliminateRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    view = await get_engine().eliminate_player(
        game_id, request.person_id, actor_id, eliminated_by=request.eliminated_by
    )
    return view.to_dict()


# =============================================================================
# Seating
# =============================================================================


@router.get("/games/{game_id}/tables")
async def get_tables(game_id: str) -> Dict[str, Any]:
    return get_engine().get_table_assignments(game_id).to_dict()


@router.post("/games/{game_id}/tables/assign")
async def assign_seat(
    game_id: str, request: PlayerRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    return (await get_engine().assign_seat(game_id, request.person_id, actor_id)).to_dict()


@router.post("/games/{game_id}/tables/balance")
async def balance_tables(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    """Propose moves. Approve them with ``/tables/approve``."""
    return (await get_engine().balance_tables(game_id, actor_id)).to_dict()


@router.post("/games/{game_id}/tables/approve")
async def approve_moves(
    game_id: str, request: ApproveMovesRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    moves = [m.to_move() for m in request.moves]
    return (await get_engine().approve_moves(game_id, moves, actor_id)).to_dict()


@router.post("/games/{game_id}/tables/final")
async def form_final_table(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    return (await get_engine().form_final_table(game_id, actor_id)).to_dict()


# =============================================================================
# Game money
# =============================================================================


@router.post("/games/{game_id}/buy-ins", status_code=status.HTTP_201_CREATED)
async def record_buy_in(
    game_id: str, request: EntryFeeRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().record_buy_in(
        game_id, request.person_id, actor_id, request.amount, request.method
    )
    return tx.to_dict()


@router.post("/games/{game_id}/rebuys", status_code=status.HTTP_201_CREATED)
async def record_rebuy(
    game_id: str, request: EntryFeeRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().record_rebuy(
        game_id, request.person_id, actor_id, request.amount, request.method
    )
    return tx.to_dict()


@router.post("/games/{game_id}/add-ons", status_code=status.HTTP_201_CREATED)
async def record_add_on(
    game_id: str, request: EntryFeeRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().record_add_on(
        game_id, request.person_id, actor_id, request.amount, request.method
    )
    return tx.to_dict()


@router.post("/games/{game_id}/payouts", status_code=status.HTTP_201_CREATED)
async def record_payout(
    game_id: str, request: PayoutRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().record_payout(
        game_id, request.person_id, request.amount, actor_id, request.method
    )
    return tx.to_dict()


@router.post("/games/{game_id}/bounties", status_code=status.HTTP_201_CREATED)
async def record_bounty(
    game_id: str, request: BountyRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().record_bounty(
        game_id, request.winner_id, request.loser_id, actor_id, request.amount
    )
    return tx.to_dict()


@router.get("/games/{game_id}/settlement")
async def get_settlement(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    return (await get_engine().get_settlement(game_id, actor_id)).to_dict()


@router.post("/games/{game_id}/lock-financials")
async def lock_financials(game_id: str, actor_id: str = Depends(get_actor_id)) -> Dict[str, Any]:
    return (await get_engine().lock_financials(game_id, actor_id)).to_dict()


@router.post("/games/{game_id}/payouts/suggest")
async def suggest_payouts(
    game_id: str, request: PayoutSuggestionRequest, actor_id: str = Depends(get_actor_id)
) -> List[Dict[str, Any]]:
    lines = await get_engine().suggest_payouts(game_id, actor_id, request.percentages)
    return [line.to_dict() for line in lines]


@router.post("/transactions/{transaction_id}/void")
async def void_transaction(
    transaction_id: str, request: VoidRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().void_transaction(transaction_id, request.reason, actor_id)
    return tx.to_dict()


# =============================================================================
# Club money
# =============================================================================


@router.post("/clubs/{club_id}/expenses", status_code=status.HTTP_201_CREATED)
async def record_expense(
    club_id: str, request: ExpenseRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().record_expense(
        club_id,
        request.amount,
        request.category,
        request.description,
        actor_id,
        game_id=request.game_id,
        method=request.method,
    )
    return tx.to_dict()


@router.post("/clubs/{club_id}/dues", status_code=status.HTTP_201_CREATED)
async def record_dues_payment(
    club_id: str, request: DuesPaymentRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().record_dues_payment(
        club_id, request.person_id, request.amount, actor_id, request.method
    )
    return tx.to_dict()


@router.post("/clubs/{club_id}/treasury/adjustments", status_code=status.HTTP_201_CREATED)
async def record_treasury_adjustment(
    club_id: str, request: TreasuryAdjustmentRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    tx = await get_engine().record_treasury_adjustment(
        club_id, request.amount, request.description, actor_id
    )
    return tx.to_dict()


@router.get("/clubs/{club_id}/treasury")
async def get_treasury_balance(
    club_id: str, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    return (await get_engine().get_treasury_balance(club_id, actor_id)).to_dict()


@router.put("/clubs/{club_id}/treasury/minimum-reserve")
async def update_minimum_reserve(
    club_id: str, request: MinimumReserveRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    treasury = await get_engine().update_minimum_reserve(club_id, request.amount, actor_id)
    return treasury.to_dict()


@router.get("/clubs/{club_id}/treasury/ledger")
async def get_treasury_ledger(
    club_id: str,
    actor_id: str = Depends(get_actor_id),
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Newest first, each row with the treasury balance right after it."""
    page = await get_engine().get_treasury_ledger(
        club_id, actor_id, limit, offset, start_date, end_date
    )
    return page.to_dict()


@router.post("/clubs/{club_id}/players/{person_id}/balance/adjust")
async def adjust_player_balance(
    club_id: str,
    person_id: str,
    request: PlayerBalanceAdjustRequest,
    actor_id: str = Depends(get_actor_id),
) -> Dict[str, Any]:
    balance = await get_engine().adjust_player_balance(
        club_id, person_id, request.amount, actor_id, request.note
    )
    return balance.to_dict()


@router.post("/clubs/{club_id}/players/{person_id}/balance/settle")
async def confirm_player_settlement(
    club_id: str,
    person_id: str,
    request: SettlementConfirmRequest,
    actor_id: str = Depends(get_actor_id),
) -> Dict[str, Any]:
    balance = await get_engine().confirm_player_settlement(
        club_id, person_id, request.amount, actor_id
    )
    return balance.to_dict()


@router.get("/clubs/{club_id}/player-balances")
async def get_player_balances(
    club_id: str, actor_id: str = Depends(get_actor_id)
) -> List[Dict[str, Any]]:
    return [b.to_dict() for b in await get_engine().get_player_balances(club_id, actor_id)]


@router.get("/clubs/{club_id}/audit-log")
async def get_audit_log(
    club_id: str,
    actor_id: str = Depends(get_actor_id),
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    performed_by: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(default=50, ge=1),
    offset: int = Query(default=0, ge=0),
) -> Dict[str, Any]:
    entries, total = await get_engine().get_audit_log(
        club_id,
        actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        performed_by=performed_by,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return {
        "entries": [e.to_dict() for e in entries],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


# =============================================================================
# Results and standings
# =============================================================================


@router.post("/games/{game_id}/results/finalize")
async def finalize_results(
    game_id: str, actor_id: str = Depends(get_actor_id)
) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in await get_engine().finalize_results(game_id, actor_id)]


@router.get("/games/{game_id}/results")
async def get_game_results(game_id: str) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in get_engine().get_game_results(game_id)]


@router.get("/clubs/{club_id}/standings")
async def get_club_standings(club_id: str) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in get_engine().get_club_standings(club_id)]


@router.get("/players/{person_id}/network")
async def get_played_with(person_id: str) -> List[Dict[str, Any]]:
    return get_engine().get_played_with(person_id)


# =============================================================================
# Bonus chips
# =============================================================================


@router.get("/clubs/{club_id}/bonus-chips/config")
async def get_bonus_chip_config(club_id: str) -> Dict[str, Any]:
    return (await get_engine().get_bonus_chip_config(club_id)).to_dict()


@router.put("/clubs/{club_id}/bonus-chips/config")
async def set_bonus_chip_config(
    club_id: str, request: BonusChipConfigRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    config = await get_engine().set_bonus_chip_config(club_id, request.to_config(), actor_id)
    return config.to_dict()


@router.post("/games/{game_id}/bonus-chips", status_code=status.HTTP_201_CREATED)
async def grant_bonus_chips(
    game_id: str, request: BonusChipGrantRequest, actor_id: str = Depends(get_actor_id)
) -> Dict[str, Any]:
    grant = await get_engine().grant_bonus_chips(
        game_id, request.person_id, actor_id, request.verified_by
    )
    return grant.to_dict()


@router.get("/games/{game_id}/bonus-chips/leaderboard")
async def get_bonus_chip_leaderboard(game_id: str) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in get_engine().get_bonus_chip_leaderboard(game_id)]


@router.get("/games/{game_id}/bonus-chips/{person_id}")
async def get_bonus_chip_total(game_id: str, person_id: str) -> Dict[str, Any]:
    return get_engine().get_bonus_chip_total(game_id, person_id).to_dict()
