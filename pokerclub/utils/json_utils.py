"""JSON helpers backed by orjson.

Usage:
    from pokerclub.utils.json_utils import json_dumps, json_loads, ORJSONResponse
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

import orjson
from fastapi.responses import JSONResponse


def _default_serializer(obj: Any) -> Any:
    """Serializer for types orjson does not handle natively."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def json_dumps(data: Any) -> str:
    """Serialize data to a JSON string."""
    return orjson.dumps(
        data,
        default=_default_serializer,
        option=orjson.OPT_UTC_Z | orjson.OPT_SORT_KEYS,
    ).decode("utf-8")


def json_loads(data: str | bytes) -> Any:
    """Deserialize a JSON string or bytes."""
    return orjson.loads(data)


class ORJSONResponse(JSONResponse):
    """FastAPI response class rendering through orjson."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return orjson.dumps(
            content,
            default=_default_serializer,
            option=orjson.OPT_UTC_Z,
        )
