"""Utility modules."""

from pokerclub.utils.errors import ErrorCode, GameError
from pokerclub.utils.redis_client import close_redis, init_redis

__all__ = [
    "ErrorCode",
    "GameError",
    "close_redis",
    "init_redis",
]
