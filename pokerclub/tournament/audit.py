"""
Audit trail sinks.

Every mutation records who did what, with the before/after state of the
entity it touched. ``RedisAuditSink`` appends to one Redis stream per club
and stamps each entry with an HMAC so tampering shows up on read.
"""

import hashlib
import hmac
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as redis

from pokerclub.logging_config import get_logger
from pokerclub.utils.json_utils import json_dumps, json_loads
from .collaborators import AuditQuery
from .models import AuditEntry

logger = get_logger(__name__)


def compute_audit_hash(fields: Dict[str, Any], key: str) -> str:
    """HMAC-SHA256 over the canonical JSON of an entry (hash field excluded)."""
    payload = json_dumps({k: v for k, v in fields.items() if k != "audit_hash"})
    return hmac.new(key.encode(), payload.encode(), hashlib.sha256).hexdigest()


def _entry_from_dict(data: Dict[str, Any]) -> AuditEntry:
    created_at = data.get("created_at")
    return AuditEntry(
        entry_id=data["entry_id"],
        club_id=data["club_id"],
        actor_id=data["actor_id"],
        action=data["action"],
        entity_type=data["entity_type"],
        entity_id=data["entity_id"],
        before=data.get("before"),
        after=data.get("after"),
        transaction_id=data.get("transaction_id"),
        note=data.get("note"),
        created_at=datetime.fromisoformat(created_at) if created_at else None,
    )


def _page(entries: List[AuditEntry], query: AuditQuery) -> Tuple[List[AuditEntry], int]:
    matching = [e for e in entries if query.matches(e)]
    return matching[query.offset : query.offset + query.limit], len(matching)


class InMemoryAuditSink:
    """Process-local audit trail, newest entries last."""

    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> str:
        self.entries.append(entry)
        return entry.entry_id

    async def query(self, query: AuditQuery) -> Tuple[List[AuditEntry], int]:
        return _page(list(reversed(self.entries)), query)


class RedisAuditSink:
    """Audit trail in Redis streams (``{stream_key}:{club_id}``)."""

    def __init__(
        self,
        redis_client: redis.Redis,
        stream_key: str = "audit:pokerclub",
        max_len: int = 100000,
        hmac_key: str = "pokerclub-audit-key",
    ):
        self.redis = redis_client
        self.stream_key = stream_key
        self.max_len = max_len
        self._hmac_key = hmac_key

    def _key(self, club_id: str) -> str:
        return f"{self.stream_key}:{club_id}"

    async def record(self, entry: AuditEntry) -> str:
        """Append one entry. Returns the audit entry id."""
        fields = entry.to_dict()
        fields["audit_hash"] = compute_audit_hash(fields, self._hmac_key)

        # Every value is JSON so reads can restore None, dicts and numbers
        flat = {k: json_dumps(v) for k, v in fields.items()}
        stream_id = await self.redis.xadd(
            self._key(entry.club_id),
            flat,
            maxlen=self.max_len,
            approximate=True,
        )

        logger.debug(
            "audit_recorded",
            entry_id=entry.entry_id,
            stream_id=stream_id,
            action=entry.action,
            entity_type=entry.entity_type,
        )
        return entry.entry_id

    async def query(self, query: AuditQuery) -> Tuple[List[AuditEntry], int]:
        """Newest first, filtered, then paged."""
        raw = await self.redis.xrevrange(self._key(query.club_id))

        entries: List[AuditEntry] = []
        for _, data in raw:
            parsed = self._parse(data)
            if parsed is None:
                continue
            entries.append(_entry_from_dict(parsed))

        return _page(entries, query)

    def _parse(self, data: Dict[Any, Any]) -> Optional[Dict[str, Any]]:
        parsed: Dict[str, Any] = {}
        for k, v in data.items():
            key = k.decode() if isinstance(k, bytes) else k
            parsed[key] = json_loads(v)

        stored_hash = parsed.get("audit_hash") or ""
        if not hmac.compare_digest(stored_hash, compute_audit_hash(parsed, self._hmac_key)):
            logger.error("audit_hash_mismatch", entry_id=parsed.get("entry_id"))
            return None
        return parsed
