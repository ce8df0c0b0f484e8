"""
External collaborator interfaces.

Membership, notification delivery and the audit trail live outside the
engine. It only sees these protocols; ``main`` wires concrete ones.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Protocol, Tuple

from pokerclub.logging_config import get_logger
from .models import AuditEntry

logger = get_logger(__name__)


class SystemRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    GUEST = "GUEST"


@dataclass(frozen=True)
class Membership:
    club_id: str
    person_id: str
    system_role: SystemRole = SystemRole.MEMBER
    permissions: FrozenSet[str] = frozenset()
    status: str = "ACTIVE"

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"


class MembershipDirectory(Protocol):
    async def get_membership(self, club_id: str, person_id: str) -> Optional[Membership]:
        ...


class NotificationSink(Protocol):
    async def notify(self, person_id: str, title: str, body: str) -> None:
        ...


@dataclass(frozen=True)
class AuditQuery:
    """Filters for reading the audit trail."""

    club_id: str
    action: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    actor_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = 50
    offset: int = 0

    def matches(self, entry: AuditEntry) -> bool:
        if entry.club_id != self.club_id:
            return False
        if self.action and entry.action != self.action:
            return False
        if self.entity_type and entry.entity_type != self.entity_type:
            return False
        if self.entity_id and entry.entity_id != self.entity_id:
            return False
        if self.actor_id and entry.actor_id != self.actor_id:
            return False
        if self.start_date and entry.created_at < self.start_date:
            return False
        if self.end_date and entry.created_at > self.end_date:
            return False
        return True


class AuditSink(Protocol):
    async def record(self, entry: AuditEntry) -> str:
        ...

    async def query(self, query: AuditQuery) -> Tuple[List[AuditEntry], int]:
        ...


# =============================================================================
# Default in-process implementations
# =============================================================================


class InMemoryMembershipDirectory:
    """Membership lookup backed by a dict. Used in development and tests."""

    def __init__(self, memberships: Optional[List[Membership]] = None):
        self._memberships: Dict[Tuple[str, str], Membership] = {}
        for membership in memberships or []:
            self.add(membership)

    def add(self, membership: Membership) -> None:
        self._memberships[(membership.club_id, membership.person_id)] = membership

    async def get_membership(self, club_id: str, person_id: str) -> Optional[Membership]:
        return self._memberships.get((club_id, person_id))


class LoggingNotificationSink:
    """Writes notifications to the log instead of delivering them."""

    async def notify(self, person_id: str, title: str, body: str) -> None:
        logger.info("notification", person_id=person_id, title=title, body=body)
