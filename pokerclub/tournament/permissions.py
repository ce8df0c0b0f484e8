"""
Capability resolution for engine operations.

A membership (system role + custom role permission strings) is resolved once
into a frozen ``CapabilitySet``. Every operation names the capabilities that
allow it; holding any one of them is enough.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pokerclub.logging_config import get_logger
from pokerclub.utils.errors import PermissionDeniedError
from .collaborators import Membership, MembershipDirectory, SystemRole

logger = get_logger(__name__)


class Capability(str, Enum):
    START_GAME = "start_game"
    PAUSE_TIMER = "pause_timer"
    LEVEL_OVERRIDE = "level_override"
    ELIMINATE_PLAYERS = "eliminate_players"
    MANAGE_TABLES = "manage_tables"
    MANAGE_REBUYS = "manage_rebuys"
    MANAGE_MONEY = "manage_money"
    POST_EXPENSE_ONLY = "post_expense_only"
    VIEW_FINANCIALS = "view_financials"
    VIEW_AUDIT_LOG = "view_audit_log"
    CONFIGURE_CLUB = "configure_club"


ALL_CAPABILITIES: FrozenSet[Capability] = frozenset(Capability)

FULL_ACCESS_ROLES = frozenset({SystemRole.OWNER, SystemRole.ADMIN})


class Operation(str, Enum):
    CREATE_GAME = "create game"
    START_GAME = "start game"
    END_GAME = "end game"
    PAUSE_GAME = "pause game"
    RESUME_GAME = "resume game"
    ADVANCE_LEVEL = "advance level"
    ELIMINATE_PLAYER = "eliminate player"
    CHECK_IN = "check in player"
    UPDATE_STACK = "update player stack"
    MANAGE_SEATING = "manage seating"
    RECORD_BUY_IN = "record buy-in"
    RECORD_REBUY = "record rebuy"
    RECORD_ADD_ON = "record add-on"
    RECORD_PAYOUT = "record payout"
    RECORD_BOUNTY = "record bounty"
    RECORD_EXPENSE = "record expense"
    RECORD_DUES = "record dues payment"
    ADJUST_TREASURY = "adjust treasury"
    ADJUST_PLAYER_BALANCE = "adjust player balance"
    VOID_TRANSACTION = "void transaction"
    LOCK_FINANCIALS = "lock financials"
    VIEW_FINANCIALS = "view financials"
    VIEW_AUDIT_LOG = "view audit log"
    FINALIZE_RESULTS = "finalize results"
    CONFIGURE_BONUS_CHIPS = "configure bonus chips"
    GRANT_BONUS_CHIPS = "grant bonus chips"


C = Capability

OPERATION_REQUIREMENTS: Dict[Operation, FrozenSet[Capability]] = {
    Operation.CREATE_GAME: frozenset({C.START_GAME}),
    Operation.START_GAME: frozenset({C.START_GAME}),
    Operation.END_GAME: frozenset({C.START_GAME}),
    Operation.PAUSE_GAME: frozenset({C.PAUSE_TIMER}),
    Operation.RESUME_GAME: frozenset({C.PAUSE_TIMER}),
    Operation.ADVANCE_LEVEL: frozenset({C.LEVEL_OVERRIDE, C.PAUSE_TIMER}),
    Operation.ELIMINATE_PLAYER: frozenset({C.ELIMINATE_PLAYERS}),
    Operation.CHECK_IN: frozenset({C.START_GAME, C.MANAGE_TABLES}),
    Operation.UPDATE_STACK: frozenset({C.MANAGE_TABLES, C.MANAGE_REBUYS}),
    Operation.MANAGE_SEATING: frozenset({C.MANAGE_TABLES}),
    Operation.RECORD_BUY_IN: frozenset({C.MANAGE_MONEY}),
    Operation.RECORD_REBUY: frozenset({C.MANAGE_REBUYS, C.MANAGE_MONEY}),
    Operation.RECORD_ADD_ON: frozenset({C.MANAGE_REBUYS, C.MANAGE_MONEY}),
    Operation.RECORD_PAYOUT: frozenset({C.MANAGE_MONEY}),
    Operation.RECORD_BOUNTY: frozenset({C.MANAGE_MONEY}),
    Operation.RECORD_EXPENSE: frozenset({C.MANAGE_MONEY, C.POST_EXPENSE_ONLY}),
    Operation.RECORD_DUES: frozenset({C.MANAGE_MONEY}),
    Operation.ADJUST_TREASURY: frozenset({C.MANAGE_MONEY}),
    Operation.ADJUST_PLAYER_BALANCE: frozenset({C.MANAGE_MONEY}),
    Operation.VOID_TRANSACTION: frozenset({C.MANAGE_MONEY}),
    Operation.LOCK_FINANCIALS: frozenset({C.MANAGE_MONEY}),
    Operation.VIEW_FINANCIALS: frozenset({C.VIEW_FINANCIALS}),
    Operation.VIEW_AUDIT_LOG: frozenset({C.VIEW_AUDIT_LOG, C.VIEW_FINANCIALS}),
    Operation.FINALIZE_RESULTS: frozenset({C.MANAGE_MONEY}),
    Operation.CONFIGURE_BONUS_CHIPS: frozenset({C.CONFIGURE_CLUB}),
    Operation.GRANT_BONUS_CHIPS: frozenset({C.MANAGE_REBUYS, C.MANAGE_MONEY}),
}


@dataclass(frozen=True)
class CapabilitySet:
    """What one actor may do in one club."""

    club_id: str
    actor_id: str
    capabilities: FrozenSet[Capability] = field(default_factory=frozenset)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def allows(self, operation: Operation) -> bool:
        return bool(self.capabilities & OPERATION_REQUIREMENTS[operation])


def resolve_capabilities(membership: Optional[Membership]) -> FrozenSet[Capability]:
    """Flatten a membership into capabilities. Unknown permission strings are ignored."""
    if membership is None or not membership.is_active:
        return frozenset()
    if membership.system_role in FULL_ACCESS_ROLES:
        return ALL_CAPABILITIES

    known = {c.value: c for c in Capability}
    return frozenset(known[p] for p in membership.permissions if p in known)


def capability_set(
    club_id: str, actor_id: str, membership: Optional[Membership]
) -> CapabilitySet:
    return CapabilitySet(
        club_id=club_id,
        actor_id=actor_id,
        capabilities=resolve_capabilities(membership),
    )


class Authorizer:
    """Single entry point for permission checks."""

    def __init__(self, directory: MembershipDirectory):
        self.directory = directory

    async def capabilities_for(self, club_id: str, actor_id: str) -> CapabilitySet:
        membership = await self.directory.get_membership(club_id, actor_id)
        return capability_set(club_id, actor_id, membership)

    async def require(
        self, club_id: str, actor_id: str, operation: Operation
    ) -> CapabilitySet:
        """Resolve the actor's capabilities and fail unless ``operation`` is allowed."""
        caps = await self.capabilities_for(club_id, actor_id)
        if not caps.allows(operation):
            required = sorted(c.value for c in OPERATION_REQUIREMENTS[operation])
            logger.warning(
                "permission_denied",
                club_id=club_id,
                actor_id=actor_id,
                operation=operation.value,
            )
            raise PermissionDeniedError(operation.value, required)
        return caps
