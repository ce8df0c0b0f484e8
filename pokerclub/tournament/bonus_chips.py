"""
Bonus chips: per-club configuration and per-game grants.

Configuration is a keyed record with explicit load/save. Nothing about a
club's rules is kept in process memory between calls.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

import redis.asyncio as redis

from pokerclub.logging_config import get_logger
from pokerclub.utils.errors import ValidationError
from pokerclub.utils.json_utils import json_dumps, json_loads
from .models import BonusChipConfig, BonusChipGrant, BonusChipMode, Game, GameStatus
from .store import GameStore

logger = get_logger(__name__)


class ConfigStore(Protocol):
    async def load(self, club_id: str) -> Optional[BonusChipConfig]:
        ...

    async def save(self, club_id: str, config: BonusChipConfig) -> None:
        ...


class RedisConfigStore:
    """Bonus chip configuration as one JSON value per club."""

    def __init__(self, redis_client: redis.Redis, prefix: str = "pokerclub:config"):
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, club_id: str) -> str:
        return f"{self.prefix}:{club_id}:bonus_chips"

    async def load(self, club_id: str) -> Optional[BonusChipConfig]:
        raw = await self.redis.get(self._key(club_id))
        if raw is None:
            return None
        return BonusChipConfig.from_dict(json_loads(raw))

    async def save(self, club_id: str, config: BonusChipConfig) -> None:
        await self.redis.set(self._key(club_id), json_dumps(config.to_dict()))


class InMemoryConfigStore:
    """Per-instance store for development and tests."""

    def __init__(self) -> None:
        self._configs: Dict[str, Dict[str, Any]] = {}

    async def load(self, club_id: str) -> Optional[BonusChipConfig]:
        data = self._configs.get(club_id)
        return BonusChipConfig.from_dict(data) if data is not None else None

    async def save(self, club_id: str, config: BonusChipConfig) -> None:
        self._configs[club_id] = config.to_dict()


@dataclass(frozen=True)
class BonusChipTotal:
    person_id: str
    bonus_count: int
    total_bonus_chips: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "person_id": self.person_id,
            "bonus_count": self.bonus_count,
            "total_bonus_chips": self.total_bonus_chips,
        }


def validate_config(config: BonusChipConfig) -> BonusChipConfig:
    if config.amount <= 0:
        raise ValidationError("Bonus chip amount must be positive")
    if config.max_per_night < 1:
        raise ValidationError("Bonus chip nightly limit must be at least 1")
    return config


class BonusChipService:
    def __init__(self, store: GameStore, configs: ConfigStore):
        self.store = store
        self.configs = configs

    async def get_config(self, club_id: str) -> BonusChipConfig:
        """Saved configuration, or the defaults (bonus chips off)."""
        return await self.configs.load(club_id) or BonusChipConfig()

    async def set_config(self, club_id: str, config: BonusChipConfig) -> BonusChipConfig:
        await self.configs.save(club_id, validate_config(config))
        logger.info(
            "bonus_chip_config_saved",
            club_id=club_id,
            mode=config.mode.value,
            amount=config.amount,
        )
        return config

    def build_grant(
        self,
        game: Game,
        person_id: str,
        config: BonusChipConfig,
        verified_by: Optional[str],
        now: datetime,
    ) -> BonusChipGrant:
        if config.mode == BonusChipMode.OFF:
            raise ValidationError("Bonus chips are currently disabled for this club")
        if config.mode == BonusChipMode.TRACKED and not verified_by:
            raise ValidationError("TRACKED mode requires a verifiedBy staff member")
        if game.status == GameStatus.COMPLETED:
            raise ValidationError(
                "Cannot grant bonus chips for game in COMPLETED status",
                details={"gameId": game.game_id},
            )
        self.store.get_session(game.game_id, person_id)

        if len(self.store.bonus_grants(game.game_id, person_id)) >= config.max_per_night:
            raise ValidationError(
                "Bonus chip limit reached for tonight",
                details={"personId": person_id, "maxPerNight": config.max_per_night},
            )

        return BonusChipGrant(
            club_id=game.club_id,
            game_id=game.game_id,
            person_id=person_id,
            amount=config.amount,
            mode=config.mode,
            verified_by=verified_by if config.mode == BonusChipMode.TRACKED else None,
            granted_at=now,
        )

    def total(self, game_id: str, person_id: str) -> BonusChipTotal:
        grants = self.store.bonus_grants(game_id, person_id)
        return BonusChipTotal(
            person_id=person_id,
            bonus_count=len(grants),
            total_bonus_chips=sum(g.amount for g in grants),
        )

    def leaderboard(self, game_id: str) -> List[BonusChipTotal]:
        counts: Dict[str, List[int]] = {}
        for grant in self.store.bonus_grants(game_id):
            counts.setdefault(grant.person_id, []).append(grant.amount)
        rows = [
            BonusChipTotal(person_id=p, bonus_count=len(a), total_bonus_chips=sum(a))
            for p, a in counts.items()
        ]
        return sorted(rows, key=lambda r: (-r.bonus_count, r.person_id))
