"""
Live Tournament Engine.

Facade over the clock, seating, ledger and standings components.

Every mutating operation follows the same path:
─────────────────────────────────────────────────────────────────
    1. resolve the actor's capabilities (one check per operation)
    2. take the locks it needs, in sorted key order
         lock:game:{id}            clock + session state
         lock:game:{id}:tables     seat allocation
         lock:club:{id}:treasury   ledger + treasury balance
         lock:network              played-together edges
    3. re-read current records and validate
    4. build new frozen records
    5. record the audit entry
    6. swap every new record into the store in one synchronous step
─────────────────────────────────────────────────────────────────

A failure before step 6 leaves nothing behind, so callers only ever see an
operation fully applied or not applied at all.
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pokerclub.config import Settings, get_settings
from pokerclub.logging_config import bind_operation_context, get_logger
from pokerclub.utils.errors import InvalidTransitionError, ValidationError
from .audit import InMemoryAuditSink
from .bonus_chips import BonusChipService, BonusChipTotal, ConfigStore, InMemoryConfigStore
from .clock import ClockEngine, GameStateView
from .collaborators import (
    AuditQuery,
    AuditSink,
    InMemoryMembershipDirectory,
    LoggingNotificationSink,
    NotificationSink,
)
from .ledger import LedgerChange, LedgerPage, SettlementLedger, SettlementView
from .locks import LocalLockManager, LockManager, LockRequest, LockScope
from .models import (
    AuditEntry,
    BlindLevel,
    BlindStructure,
    BonusChipConfig,
    BonusChipGrant,
    Game,
    GameSession,
    GameStatus,
    LevelOverflowPolicy,
    PlayerBalance,
    Transaction,
    TransactionCategory,
    TreasuryBalance,
    as_utc,
    create_standard_blind_structure,
    utcnow,
)
from .payouts import PayoutLine, assign_finishers, calculate_payouts, default_percentages
from .permissions import Authorizer, Operation
from .seating import PlayerMove, SeatChange, SeatingEngine, TableLayoutView
from .standings import PlayerNetwork, ResultRow, StandingRow, StandingsEvaluator
from .store import ChangeSet, GameStore

logger = get_logger(__name__)


def _ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _ledger_changes(change: LedgerChange) -> ChangeSet:
    return ChangeSet(
        games=[change.game] if change.game else [],
        sessions=list(change.sessions),
        transactions=[change.transaction] if change.transaction else [],
        treasuries=[change.treasury] if change.treasury else [],
        player_balances=[change.player_balance] if change.player_balance else [],
    )


def _seat_changes(change: SeatChange) -> ChangeSet:
    return ChangeSet(
        games=[change.game], sessions=list(change.sessions), tables=list(change.tables)
    )


class TournamentEngine:
    """
    Live tournament engine for one authoritative process.

    Collaborators (membership directory, notifications, audit trail, bonus
    chip configuration) are injected; in-process defaults are used when
    none are given.
    """

    def __init__(
        self,
        store: Optional[GameStore] = None,
        locks: Optional[LockManager] = None,
        authorizer: Optional[Authorizer] = None,
        notifier: Optional[NotificationSink] = None,
        audit: Optional[AuditSink] = None,
        config_store: Optional[ConfigStore] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.clock = clock

        self.store = store or GameStore()
        self.locks = locks or LocalLockManager(
            default_lock_timeout_ms=self.settings.lock_timeout_ms,
            default_acquire_timeout_ms=self.settings.lock_acquire_timeout_ms,
        )
        self.authorizer = authorizer or Authorizer(InMemoryMembershipDirectory())
        self.notifier = notifier or LoggingNotificationSink()
        self.audit = audit or InMemoryAuditSink()

        # Components
        self.clock_engine = ClockEngine(LevelOverflowPolicy(self.settings.level_overflow_policy))
        self.seating = SeatingEngine(
            max_seats=self.settings.default_max_seats,
            final_table_size=self.settings.final_table_size,
        )
        self.ledger = SettlementLedger(
            self.store,
            clock=clock,
            default_page_size=self.settings.ledger_page_size,
            max_page_size=self.settings.ledger_max_page_size,
        )
        self.network = PlayerNetwork(self.store)
        self.standings = StandingsEvaluator(self.store, self.network)
        self.bonus_chips = BonusChipService(self.store, config_store or InMemoryConfigStore())

    # =========================================================================
    # Plumbing
    # =========================================================================

    async def _authorize(
        self,
        club_id: str,
        actor_id: str,
        operation: Operation,
        game_id: Optional[str] = None,
    ) -> None:
        bind_operation_context(game_id=game_id, club_id=club_id, actor_id=actor_id)
        await self.authorizer.require(club_id, actor_id, operation)

    async def _authorize_game(self, game_id: str, actor_id: str, operation: Operation) -> Game:
        game = self.store.get_game(game_id)
        await self._authorize(game.club_id, actor_id, operation, game_id=game_id)
        return game

    async def _commit(self, changes: ChangeSet, audit: Optional[AuditEntry] = None) -> None:
        """Record the audit entry, then apply every change at once."""
        if audit is not None:
            await self.audit.record(audit)
        self.store.apply(changes)

    async def _commit_ledger(self, change: LedgerChange) -> None:
        await self._commit(_ledger_changes(change), change.audit)
        tx = change.transaction
        if tx is None:
            return
        treasury = self.store.get_treasury(tx.club_id)
        if treasury.is_low:
            logger.warning(
                "treasury_below_reserve",
                club_id=tx.club_id,
                balance=treasury.current_balance,
                minimum_reserve=treasury.minimum_reserve,
            )

    async def _notify(self, person_ids: Iterable[str], title: str, body: str) -> None:
        for person_id in person_ids:
            try:
                await self.notifier.notify(person_id, title, body)
            except Exception:
                logger.warning(
                    "notification_failed", person_id=person_id, title=title, exc_info=True
                )

    @staticmethod
    def _game_locks(game: Game, *scopes: LockScope) -> List[LockRequest]:
        requests: List[LockRequest] = [(LockScope.GAME, game.game_id)]
        for scope in scopes:
            if scope == LockScope.TABLES:
                requests.append((scope, game.game_id))
            elif scope == LockScope.TREASURY:
                requests.append((scope, game.club_id))
            else:
                requests.append((scope, None))
        return requests

    # =========================================================================
    # Games and players
    # =========================================================================

    async def create_game(
        self,
        club_id: str,
        actor_id: str,
        name: str = "Game",
        structure: Union[BlindStructure, Sequence[BlindLevel], None] = None,
        buy_in_amount: int = 0,
        starting_stack: int = 10000,
        rebuy_amount: int = 0,
        add_on_amount: int = 0,
        rebuy_limit: Optional[int] = None,
        add_on_limit: Optional[int] = None,
        bounty_amount: int = 0,
    ) -> Game:
        await self._authorize(club_id, actor_id, Operation.CREATE_GAME)

        if structure is None:
            structure = create_standard_blind_structure()
        elif not isinstance(structure, BlindStructure):
            structure = BlindStructure(levels=tuple(structure))
        if len(structure) == 0:
            raise ValidationError("A blind structure needs at least one level")

        for field_name, value in (
            ("buy_in_amount", buy_in_amount),
            ("rebuy_amount", rebuy_amount),
            ("add_on_amount", add_on_amount),
            ("bounty_amount", bounty_amount),
            ("starting_stack", starting_stack),
        ):
            if value < 0:
                raise ValidationError(
                    f"{field_name} cannot be negative", details={field_name: value}
                )
        for field_name, limit in (("rebuy_limit", rebuy_limit), ("add_on_limit", add_on_limit)):
            if limit is not None and limit < 0:
                raise ValidationError(
                    f"{field_name} cannot be negative", details={field_name: limit}
                )

        game = Game(
            club_id=club_id,
            name=name,
            structure=structure,
            buy_in_amount=buy_in_amount,
            starting_stack=starting_stack,
            rebuy_amount=rebuy_amount,
            add_on_amount=add_on_amount,
            rebuy_limit=rebuy_limit,
            add_on_limit=add_on_limit,
            bounty_amount=bounty_amount,
            created_at=self.clock(),
        )
        audit = AuditEntry(
            club_id=club_id,
            actor_id=actor_id,
            action="CREATE",
            entity_type="Game",
            entity_id=game.game_id,
            after=game.to_dict(),
            created_at=game.created_at,
        )
        await self._commit(ChangeSet(games=[game]), audit)
        logger.info("game_created", game_id=game.game_id, name=name, levels=len(structure))
        return game

    def get_game(self, game_id: str) -> Game:
        return self.store.get_game(game_id)

    def list_games(self, club_id: str) -> List[Game]:
        return sorted(self.store.list_games(club_id), key=lambda g: g.created_at)

    async def check_in(self, game_id: str, person_id: str, actor_id: str) -> GameSession:
        """
        Register a player and seat them. Checking in twice returns the
        existing session unchanged.
        """
        game = await self._authorize_game(game_id, actor_id, Operation.CHECK_IN)

        async with self.locks.lock_many(self._game_locks(game, LockScope.TABLES)):
            game = self.store.get_game(game_id)
            existing = self.store.find_session(game_id, person_id)
            if existing is not None:
                return existing
            if game.status == GameStatus.COMPLETED:
                raise InvalidTransitionError(game.status.value, "check in player to")

            order = game.check_in_sequence + 1
            session = GameSession(
                game_id=game_id,
                person_id=person_id,
                check_in_order=order,
                starting_stack=game.starting_stack,
                current_stack=game.starting_stack,
                checked_in_at=self.clock(),
            )
            counted = replace(
                game,
                check_in_sequence=order,
                players_registered=game.players_registered + 1,
                players_remaining=game.players_remaining + 1,
            )
            seat = self.seating.assign_seat(
                counted, self.store.tables_for(game_id), self.store.sessions_for(game_id), session
            )
            seated = seat.sessions[0] if seat.sessions else session
            await self._commit(
                ChangeSet(games=[seat.game], sessions=[seated], tables=list(seat.tables))
            )

        logger.info(
            "player_checked_in",
            game_id=game_id,
            person_id=person_id,
            table_number=seated.table_number,
            seat_number=seated.seat_number,
        )
        if seated.table_number is not None:
            await self._notify(
                [person_id],
                "Seat assignment",
                f"Table {seated.table_number}, seat {seated.seat_number}",
            )
        return seated

    async def update_player_stack(
        self, game_id: str, person_id: str, stack: int, actor_id: str
    ) -> GameSession:
        game = await self._authorize_game(game_id, actor_id, Operation.UPDATE_STACK)
        if isinstance(stack, bool) or not isinstance(stack, int) or stack < 0:
            raise ValidationError(
                "Chip stack must be a non-negative whole number", details={"stack": stack}
            )

        async with self.locks.lock(LockScope.GAME, game.game_id):
            session = self.store.get_session(game_id, person_id)
            if not session.is_active:
                raise ValidationError(
                    "Only active players have a chip stack",
                    details={"personId": person_id, "status": session.status.value},
                )
            updated = session.with_stack(stack)
            await self._commit(ChangeSet(sessions=[updated]))

        logger.info("player_stack_updated", game_id=game_id, person_id=person_id, stack=stack)
        return updated

    # =========================================================================
    # Clock
    # =========================================================================

    async def start_game(self, game_id: str, actor_id: str) -> GameStateView:
        await self._authorize_game(game_id, actor_id, Operation.START_GAME)

        async with self.locks.lock(LockScope.GAME, game_id):
            game = self.store.get_game(game_id)
            sessions = self.store.sessions_for(game_id)
            started = self.clock_engine.start(game, sessions, self.clock())
            await self._commit(
                ChangeSet(games=[started]), self._status_audit(game, started, actor_id)
            )

        logger.info("game_started", game_id=game_id, players=started.players_registered)
        return self.get_game_state(game_id)

    async def pause_game(self, game_id: str, actor_id: str) -> GameStateView:
        await self._authorize_game(game_id, actor_id, Operation.PAUSE_GAME)

        async with self.locks.lock(LockScope.GAME, game_id):
            game = self.store.get_game(game_id)
            paused = self.clock_engine.pause(game, self.clock())
            await self._commit(
                ChangeSet(games=[paused]), self._status_audit(game, paused, actor_id)
            )

        logger.info("game_paused", game_id=game_id, level=paused.current_level)
        return self.get_game_state(game_id)

    async def resume_game(self, game_id: str, actor_id: str) -> GameStateView:
        await self._authorize_game(game_id, actor_id, Operation.RESUME_GAME)

        async with self.locks.lock(LockScope.GAME, game_id):
            game = self.store.get_game(game_id)
            resumed = self.clock_engine.resume(game, self.clock())
            await self._commit(
                ChangeSet(games=[resumed]), self._status_audit(game, resumed, actor_id)
            )

        logger.info(
            "game_resumed",
            game_id=game_id,
            level=resumed.current_level,
            total_paused_ms=resumed.total_paused_ms,
        )
        return self.get_game_state(game_id)

    async def advance_level(self, game_id: str, actor_id: str) -> GameStateView:
        await self._authorize_game(game_id, actor_id, Operation.ADVANCE_LEVEL)

        async with self.locks.lock(LockScope.GAME, game_id):
            game = self.store.get_game(game_id)
            transition = self.clock_engine.advance_level(
                game, self.store.sessions_for(game_id), self.clock()
            )
            await self._commit(
                ChangeSet(games=[transition.game], sessions=list(transition.sessions)),
                self._status_audit(game, transition.game, actor_id),
            )

        logger.info(
            "level_advanced",
            game_id=game_id,
            level=transition.game.current_level,
            status=transition.game.status.value,
        )
        if transition.winner is not None:
            await self._announce_winner(transition.game, transition.winner)
        return self.get_game_state(game_id)

    async def end_game(self, game_id: str, actor_id: str) -> GameStateView:
        await self._authorize_game(game_id, actor_id, Operation.END_GAME)

        async with self.locks.lock(LockScope.GAME, game_id):
            game = self.store.get_game(game_id)
            sessions = self.store.sessions_for(game_id)
            transition = self.clock_engine.end(game, sessions, self.clock())
            await self._commit(
                ChangeSet(games=[transition.game], sessions=list(transition.sessions)),
                self._status_audit(game, transition.game, actor_id),
            )

        logger.info(
            "game_ended",
            game_id=game_id,
            winner_id=transition.winner.person_id if transition.winner else None,
        )
        if transition.winner is not None:
            await self._announce_winner(transition.game, transition.winner)
        return self.get_game_state(game_id)

    async def eliminate_player(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        eliminated_by: Optional[str] = None,
    ) -> GameStateView:
        game = await self._authorize_game(game_id, actor_id, Operation.ELIMINATE_PLAYER)

        async with self.locks.lock_many(self._game_locks(game, LockScope.NETWORK)):
            game = self.store.get_game(game_id)
            now = self.clock()
            result = self.clock_engine.eliminate(
                game, self.store.sessions_for(game_id), person_id, now, eliminated_by
            )
            edges = self.network.record_elimination(game_id, person_id, result.still_active, now)
            audit = AuditEntry(
                club_id=game.club_id,
                actor_id=actor_id,
                action="UPDATE",
                entity_type="GameSession",
                entity_id=result.session.session_id,
                before={"status": "ACTIVE", "players_remaining": game.players_remaining},
                after={
                    "status": result.session.status.value,
                    "finish_position": result.finish_position,
                    "eliminated_by": eliminated_by,
                    "players_remaining": result.game.players_remaining,
                },
                created_at=now,
            )
            await self._commit(
                ChangeSet(games=[result.game], sessions=[result.session], edges=edges), audit
            )

        logger.info(
            "player_eliminated",
            game_id=game_id,
            person_id=person_id,
            finish_position=result.finish_position,
            eliminated_by=eliminated_by,
            players_remaining=result.game.players_remaining,
        )
        await self._notify(
            [person_id],
            "You're out",
            f"You finished {_ordinal(result.finish_position)} in {game.name}",
        )
        return self.get_game_state(game_id)

    def get_game_state(self, game_id: str) -> GameStateView:
        """Clock display read. Suggested table moves ride along while the game runs."""
        game = self.store.get_game(game_id)
        sessions = self.store.sessions_for(game_id)
        suggestions: Tuple[Dict[str, Any], ...] = ()
        if game.is_active:
            moves = self.seating.balance(self.store.tables_for(game_id), sessions)
            suggestions = tuple(m.to_dict() for m in moves)
        return self.clock_engine.state_view(game, sessions, self.clock(), suggestions)

    def _status_audit(self, before: Game, after: Game, actor_id: str) -> AuditEntry:
        return AuditEntry(
            club_id=before.club_id,
            actor_id=actor_id,
            action="UPDATE",
            entity_type="Game",
            entity_id=before.game_id,
            before={"status": before.status.value, "current_level": before.current_level},
            after={"status": after.status.value, "current_level": after.current_level},
            created_at=self.clock(),
        )

    async def _announce_winner(self, game: Game, winner: GameSession) -> None:
        await self._notify([winner.person_id], "Winner!", f"You won {game.name}")

    # =========================================================================
    # Seating
    # =========================================================================

    async def assign_seat(self, game_id: str, person_id: str, actor_id: str) -> TableLayoutView:
        game = await self._authorize_game(game_id, actor_id, Operation.MANAGE_SEATING)

        async with self.locks.lock_many(self._game_locks(game, LockScope.TABLES)):
            game = self.store.get_game(game_id)
            session = self.store.get_session(game_id, person_id)
            change = self.seating.assign_seat(
                game, self.store.tables_for(game_id), self.store.sessions_for(game_id), session
            )
            await self._commit(_seat_changes(change))

        if change.moved:
            seated = change.moved[0]
            logger.info(
                "seat_assigned",
                game_id=game_id,
                person_id=person_id,
                table_number=seated.table_number,
                seat_number=seated.seat_number,
            )
        return self.get_table_assignments(game_id)

    async def balance_tables(self, game_id: str, actor_id: str) -> TableLayoutView:
        """Propose moves only. Nothing changes until they are approved."""
        await self._authorize_game(game_id, actor_id, Operation.MANAGE_SEATING)
        tables = self.store.tables_for(game_id)
        sessions = self.store.sessions_for(game_id)
        moves = self.seating.balance(tables, sessions)
        logger.info("balance_proposed", game_id=game_id, moves=len(moves))
        return self.seating.layout(game_id, tables, sessions, moves)

    async def approve_moves(
        self, game_id: str, moves: Sequence[PlayerMove], actor_id: str
    ) -> TableLayoutView:
        game = await self._authorize_game(game_id, actor_id, Operation.MANAGE_SEATING)
        if not moves:
            raise ValidationError("No moves to approve")

        async with self.locks.lock_many(self._game_locks(game, LockScope.TABLES)):
            game = self.store.get_game(game_id)
            change = self.seating.apply_moves(
                game, self.store.tables_for(game_id), self.store.sessions_for(game_id), moves
            )
            audit = AuditEntry(
                club_id=game.club_id,
                actor_id=actor_id,
                action="APPROVE",
                entity_type="TableMoves",
                entity_id=game_id,
                after={"moves": [m.to_dict() for m in moves]},
                created_at=self.clock(),
            )
            await self._commit(_seat_changes(change), audit)

        logger.info("moves_approved", game_id=game_id, moves=len(moves))
        for session in change.moved:
            await self._notify(
                [session.person_id],
                "Table move",
                f"Please move to table {session.table_number}, seat {session.seat_number}",
            )
        return self.get_table_assignments(game_id)

    async def form_final_table(self, game_id: str, actor_id: str) -> TableLayoutView:
        game = await self._authorize_game(game_id, actor_id, Operation.MANAGE_SEATING)

        async with self.locks.lock_many(self._game_locks(game, LockScope.TABLES)):
            game = self.store.get_game(game_id)
            change = self.seating.form_final_table(
                game, self.store.tables_for(game_id), self.store.sessions_for(game_id)
            )
            audit = AuditEntry(
                club_id=game.club_id,
                actor_id=actor_id,
                action="UPDATE",
                entity_type="GameTable",
                entity_id=game_id,
                after={
                    "final_table": [
                        {"person_id": s.person_id, "seat_number": s.seat_number}
                        for s in change.sessions
                    ]
                },
                created_at=self.clock(),
            )
            await self._commit(_seat_changes(change), audit)

        logger.info("final_table_formed", game_id=game_id, players=len(change.sessions))
        for session in change.moved:
            await self._notify(
                [session.person_id],
                "Final table",
                f"Final table: please take seat {session.seat_number} at table 1",
            )
        return self.get_table_assignments(game_id)

    def get_table_assignments(self, game_id: str) -> TableLayoutView:
        self.store.get_game(game_id)
        return self.seating.layout(
            game_id, self.store.tables_for(game_id), self.store.sessions_for(game_id)
        )

    # =========================================================================
    # Game money
    # =========================================================================

    async def _record_game_money(
        self,
        game_id: str,
        actor_id: str,
        operation: Operation,
        build: Callable[[], LedgerChange],
    ) -> Transaction:
        game = await self._authorize_game(game_id, actor_id, operation)
        async with self.locks.lock_many(self._game_locks(game, LockScope.TREASURY)):
            change = build()
            await self._commit_ledger(change)

        tx = change.transaction
        logger.info(
            "transaction_recorded",
            transaction_id=tx.transaction_id,
            type=tx.type.value,
            amount=tx.amount,
            person_id=tx.person_id,
            treasury_delta=tx.treasury_delta,
        )
        return tx

    async def record_buy_in(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        amount: Optional[int] = None,
        method: Optional[str] = None,
    ) -> Transaction:
        return await self._record_game_money(
            game_id,
            actor_id,
            Operation.RECORD_BUY_IN,
            lambda: self.ledger.record_buy_in(game_id, person_id, actor_id, amount, method),
        )

    async def record_rebuy(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        amount: Optional[int] = None,
        method: Optional[str] = None,
    ) -> Transaction:
        return await self._record_game_money(
            game_id,
            actor_id,
            Operation.RECORD_REBUY,
            lambda: self.ledger.record_rebuy(game_id, person_id, actor_id, amount, method),
        )

    async def record_add_on(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        amount: Optional[int] = None,
        method: Optional[str] = None,
    ) -> Transaction:
        return await self._record_game_money(
            game_id,
            actor_id,
            Operation.RECORD_ADD_ON,
            lambda: self.ledger.record_add_on(game_id, person_id, actor_id, amount, method),
        )

    async def record_payout(
        self,
        game_id: str,
        person_id: str,
        amount: int,
        actor_id: str,
        method: Optional[str] = None,
    ) -> Transaction:
        return await self._record_game_money(
            game_id,
            actor_id,
            Operation.RECORD_PAYOUT,
            lambda: self.ledger.record_payout(game_id, person_id, actor_id, amount, method),
        )

    async def record_bounty(
        self,
        game_id: str,
        winner_id: str,
        loser_id: str,
        actor_id: str,
        amount: Optional[int] = None,
    ) -> Transaction:
        return await self._record_game_money(
            game_id,
            actor_id,
            Operation.RECORD_BOUNTY,
            lambda: self.ledger.record_bounty(game_id, winner_id, loser_id, actor_id, amount),
        )

    async def get_settlement(self, game_id: str, actor_id: str) -> SettlementView:
        await self._authorize_game(game_id, actor_id, Operation.VIEW_FINANCIALS)
        return self.ledger.get_settlement(game_id)

    async def lock_financials(self, game_id: str, actor_id: str) -> Game:
        """Freeze a balanced game's books. Locking twice returns the locked game."""
        game = await self._authorize_game(game_id, actor_id, Operation.LOCK_FINANCIALS)

        async with self.locks.lock_many(self._game_locks(game, LockScope.TREASURY)):
            change = self.ledger.lock_financials(game_id, actor_id)
            if change is None:
                logger.info("financials_already_locked", game_id=game_id)
                return self.store.get_game(game_id)
            await self._commit_ledger(change)

        logger.info("financials_locked", game_id=game_id, prize_pool=change.game.prize_pool)
        return change.game

    async def suggest_payouts(
        self,
        game_id: str,
        actor_id: str,
        percentages: Optional[Sequence[Any]] = None,
    ) -> List[PayoutLine]:
        """Split the net prize pool, defaulting to the field-size structure."""
        game = await self._authorize_game(game_id, actor_id, Operation.VIEW_FINANCIALS)
        settlement = self.ledger.get_settlement(game_id)
        if percentages is None:
            percentages = default_percentages(game.players_registered)
        lines = calculate_payouts(
            settlement.net_prize_pool, percentages, self.settings.payout_rounding_unit
        )
        return assign_finishers(lines, self.store.sessions_for(game_id))

    # =========================================================================
    # Club money
    # =========================================================================

    async def _record_club_money(
        self,
        club_id: str,
        actor_id: str,
        operation: Operation,
        build: Callable[[], LedgerChange],
        game_id: Optional[str] = None,
    ) -> LedgerChange:
        await self._authorize(club_id, actor_id, operation, game_id=game_id)
        requests: List[LockRequest] = [(LockScope.TREASURY, club_id)]
        if game_id is not None:
            requests.append((LockScope.GAME, game_id))

        async with self.locks.lock_many(requests):
            change = build()
            await self._commit_ledger(change)

        tx = change.transaction
        if tx is not None:
            logger.info(
                "transaction_recorded",
                transaction_id=tx.transaction_id,
                type=tx.type.value,
                category=tx.category.value,
                amount=tx.amount,
                treasury_delta=tx.treasury_delta,
            )
        return change

    async def record_expense(
        self,
        club_id: str,
        amount: int,
        category: Union[str, TransactionCategory],
        description: str,
        actor_id: str,
        game_id: Optional[str] = None,
        method: Optional[str] = None,
    ) -> Transaction:
        change = await self._record_club_money(
            club_id,
            actor_id,
            Operation.RECORD_EXPENSE,
            lambda: self.ledger.record_expense(
                club_id, actor_id, amount, category, description, game_id, method
            ),
            game_id=game_id,
        )
        return change.transaction

    async def record_dues_payment(
        self,
        club_id: str,
        person_id: str,
        amount: int,
        actor_id: str,
        method: Optional[str] = None,
    ) -> Transaction:
        change = await self._record_club_money(
            club_id,
            actor_id,
            Operation.RECORD_DUES,
            lambda: self.ledger.record_dues_payment(club_id, person_id, actor_id, amount, method),
        )
        return change.transaction

    async def record_treasury_adjustment(
        self, club_id: str, signed_amount: int, description: str, actor_id: str
    ) -> Transaction:
        change = await self._record_club_money(
            club_id,
            actor_id,
            Operation.ADJUST_TREASURY,
            lambda: self.ledger.record_treasury_adjustment(
                club_id, actor_id, signed_amount, description
            ),
        )
        return change.transaction

    async def void_transaction(
        self, transaction_id: str, reason: str, actor_id: str
    ) -> Transaction:
        tx = self.store.get_transaction(transaction_id)
        change = await self._record_club_money(
            tx.club_id,
            actor_id,
            Operation.VOID_TRANSACTION,
            lambda: self.ledger.void_transaction(transaction_id, actor_id, reason),
            game_id=tx.game_id,
        )
        voided = change.transaction
        logger.info(
            "transaction_voided",
            transaction_id=transaction_id,
            type=voided.type.value,
            amount=voided.amount,
            reason=voided.void_reason,
        )
        return voided

    async def get_treasury_balance(self, club_id: str, actor_id: str) -> TreasuryBalance:
        await self._authorize(club_id, actor_id, Operation.VIEW_FINANCIALS)
        return self.ledger.get_treasury_balance(club_id)

    async def update_minimum_reserve(
        self, club_id: str, amount: int, actor_id: str
    ) -> TreasuryBalance:
        change = await self._record_club_money(
            club_id,
            actor_id,
            Operation.ADJUST_TREASURY,
            lambda: self.ledger.update_minimum_reserve(club_id, amount, actor_id),
        )
        logger.info("minimum_reserve_updated", club_id=club_id, minimum_reserve=amount)
        return change.treasury

    async def get_treasury_ledger(
        self,
        club_id: str,
        actor_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> LedgerPage:
        await self._authorize(club_id, actor_id, Operation.VIEW_FINANCIALS)
        return self.ledger.get_treasury_ledger(club_id, limit, offset, start_date, end_date)

    # =========================================================================
    # Player balances
    # =========================================================================

    async def adjust_player_balance(
        self,
        club_id: str,
        person_id: str,
        signed_amount: int,
        actor_id: str,
        note: Optional[str] = None,
    ) -> PlayerBalance:
        change = await self._record_club_money(
            club_id,
            actor_id,
            Operation.ADJUST_PLAYER_BALANCE,
            lambda: self.ledger.adjust_player_balance(
                club_id, person_id, actor_id, signed_amount, note
            ),
        )
        return change.player_balance

    async def confirm_player_settlement(
        self, club_id: str, person_id: str, amount: int, actor_id: str
    ) -> PlayerBalance:
        change = await self._record_club_money(
            club_id,
            actor_id,
            Operation.ADJUST_PLAYER_BALANCE,
            lambda: self.ledger.confirm_player_settlement(club_id, person_id, actor_id, amount),
        )
        logger.info(
            "player_settlement_confirmed",
            club_id=club_id,
            person_id=person_id,
            amount=amount,
            balance=change.player_balance.balance,
        )
        return change.player_balance

    async def get_player_balances(self, club_id: str, actor_id: str) -> List[PlayerBalance]:
        await self._authorize(club_id, actor_id, Operation.VIEW_FINANCIALS)
        return self.ledger.get_player_balances(club_id)

    # =========================================================================
    # Audit trail
    # =========================================================================

    async def get_audit_log(
        self,
        club_id: str,
        actor_id: str,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        performed_by: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[AuditEntry], int]:
        await self._authorize(club_id, actor_id, Operation.VIEW_AUDIT_LOG)
        if not 1 <= limit <= self.settings.ledger_max_page_size or offset < 0:
            raise ValidationError(
                "Invalid audit log page", details={"limit": limit, "offset": offset}
            )
        return await self.audit.query(
            AuditQuery(
                club_id=club_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=performed_by,
                start_date=as_utc(start_date),
                end_date=as_utc(end_date),
                limit=limit,
                offset=offset,
            )
        )

    # =========================================================================
    # Results and standings
    # =========================================================================

    async def finalize_results(self, game_id: str, actor_id: str) -> List[ResultRow]:
        """Score a completed, locked game. Running it again changes nothing."""
        game = await self._authorize_game(game_id, actor_id, Operation.FINALIZE_RESULTS)

        async with self.locks.lock_many(self._game_locks(game, LockScope.NETWORK)):
            game = self.store.get_game(game_id)
            sessions = self.store.sessions_for(game_id)
            result = self.standings.finalize(game, sessions, self.clock())
            if result is None:
                logger.info("results_already_finalized", game_id=game_id)
                return self.standings.game_results(game_id)

            audit = AuditEntry(
                club_id=game.club_id,
                actor_id=actor_id,
                action="APPROVE",
                entity_type="GameResults",
                entity_id=game_id,
                after={
                    "points": {s.person_id: s.points_earned for s in result.sessions},
                    "edges": len(result.edges),
                },
                created_at=result.game.results_finalized_at,
            )
            await self._commit(
                ChangeSet(
                    games=[result.game],
                    sessions=list(result.sessions),
                    edges=list(result.edges),
                ),
                audit,
            )

        logger.info(
            "results_finalized",
            game_id=game_id,
            players=len(result.sessions),
            edges=len(result.edges),
        )
        for s in result.sessions:
            place = _ordinal(s.finish_position) if s.finish_position else "unplaced"
            await self._notify(
                [s.person_id],
                f"{game.name} results",
                f"You finished {place} and earned {s.points_earned} points",
            )
        return self.standings.game_results(game_id)

    def get_game_results(self, game_id: str) -> List[ResultRow]:
        self.store.get_game(game_id)
        return self.standings.game_results(game_id)

    def get_club_standings(self, club_id: str) -> List[StandingRow]:
        return self.standings.club_standings(club_id)

    def get_played_with(self, person_id: str) -> List[Dict[str, Any]]:
        return self.network.played_with(person_id)

    # =========================================================================
    # Bonus chips
    # =========================================================================

    async def get_bonus_chip_config(self, club_id: str) -> BonusChipConfig:
        return await self.bonus_chips.get_config(club_id)

    async def set_bonus_chip_config(
        self, club_id: str, config: BonusChipConfig, actor_id: str
    ) -> BonusChipConfig:
        await self._authorize(club_id, actor_id, Operation.CONFIGURE_BONUS_CHIPS)
        before = await self.bonus_chips.get_config(club_id)
        saved = await self.bonus_chips.set_config(club_id, config)
        await self.audit.record(
            AuditEntry(
                club_id=club_id,
                actor_id=actor_id,
                action="UPDATE",
                entity_type="BonusChipConfig",
                entity_id=club_id,
                before=before.to_dict(),
                after=saved.to_dict(),
                created_at=self.clock(),
            )
        )
        return saved

    async def grant_bonus_chips(
        self,
        game_id: str,
        person_id: str,
        actor_id: str,
        verified_by: Optional[str] = None,
    ) -> BonusChipGrant:
        game = await self._authorize_game(game_id, actor_id, Operation.GRANT_BONUS_CHIPS)
        config = await self.bonus_chips.get_config(game.club_id)

        async with self.locks.lock(LockScope.GAME, game_id):
            game = self.store.get_game(game_id)
            grant = self.bonus_chips.build_grant(
                game, person_id, config, verified_by, self.clock()
            )
            audit = AuditEntry(
                club_id=game.club_id,
                actor_id=actor_id,
                action="CREATE",
                entity_type="BonusChipGrant",
                entity_id=grant.grant_id,
                after=grant.to_dict(),
                created_at=grant.granted_at,
            )
            await self._commit(ChangeSet(bonus_grants=[grant]), audit)

        logger.info(
            "bonus_chips_granted",
            game_id=game_id,
            person_id=person_id,
            amount=grant.amount,
            mode=grant.mode.value,
        )
        return grant

    def get_bonus_chip_total(self, game_id: str, person_id: str) -> BonusChipTotal:
        return self.bonus_chips.total(game_id, person_id)

    def get_bonus_chip_leaderboard(self, game_id: str) -> List[BonusChipTotal]:
        return self.bonus_chips.leaderboard(game_id)
