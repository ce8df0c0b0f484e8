"""Custom exception classes for tournament engine errors.

Every error carries a stable code, a reason string an operator can act on,
and structured details. None of them is fatal to the process.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for engine errors."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    FORBIDDEN = "FORBIDDEN"

    # Lookup
    NOT_FOUND = "NOT_FOUND"

    # Clock
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Input / limits
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Ledger
    UNBALANCED_SETTLEMENT = "UNBALANCED_SETTLEMENT"
    ALREADY_VOIDED = "ALREADY_VOIDED"
    FINANCIALS_LOCKED = "FINANCIALS_LOCKED"

    # Concurrency
    LOCK_TIMEOUT = "LOCK_TIMEOUT"


class GameError(Exception):
    """Base exception for tournament engine errors.

    Attributes:
        code: Error code for programmatic handling
        message: User-friendly error message
        details: Additional error details
        recoverable: Whether the caller can retry or correct the request
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class NotFoundError(GameError):
    """Raised when a game, session, table, transaction or balance is absent."""

    def __init__(self, entity: str, entity_id: str, message: str | None = None):
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message or f"{entity} not found: {entity_id}",
            details={"entity": entity, "entityId": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(GameError):
    """Raised when a clock operation is not allowed from the current state."""

    def __init__(self, current: str, attempted: str, message: str | None = None):
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=message or f"Cannot {attempted} game in {current} status",
            details={"currentStatus": current, "attempted": attempted},
        )
        self.current = current
        self.attempted = attempted


class ValidationError(GameError):
    """Raised for bad input or a limit being exceeded."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(code=code, message=message, details=details)


class FinancialsLockedError(ValidationError):
    """Raised when a locked game's money entries would change."""

    def __init__(self, game_id: str):
        super().__init__(
            message=f"Financials for game {game_id} are locked",
            details={"gameId": game_id},
            code=ErrorCode.FINANCIALS_LOCKED,
        )


class UnbalancedSettlementError(GameError):
    """Raised when a lock is attempted while the books do not reconcile."""

    def __init__(
        self,
        variance: int,
        total_payouts: int,
        net_prize_pool: int,
        money_in: int | None = None,
        prize_pool: int | None = None,
    ):
        super().__init__(
            code=ErrorCode.UNBALANCED_SETTLEMENT,
            message=(
                "Cannot lock financials - settlement is not balanced. "
                f"Variance: {variance}, "
                f"Total payouts: {total_payouts}, "
                f"Net prize pool: {net_prize_pool}"
            ),
            details={
                "variance": variance,
                "totalPayouts": total_payouts,
                "netPrizePool": net_prize_pool,
                "moneyIn": money_in,
                "prizePool": prize_pool,
            },
        )
        self.variance = variance
        self.total_payouts = total_payouts
        self.net_prize_pool = net_prize_pool


class AlreadyVoidedError(GameError):
    """Raised when voiding a transaction twice."""

    def __init__(self, transaction_id: str):
        super().__init__(
            code=ErrorCode.ALREADY_VOIDED,
            message="Transaction is already voided",
            details={"transactionId": transaction_id},
        )


class PermissionDeniedError(GameError):
    """Raised when the actor lacks every capability an operation accepts."""

    def __init__(self, operation: str, required: list[str]):
        super().__init__(
            code=ErrorCode.FORBIDDEN,
            message=f"Not permitted to {operation}",
            details={"operation": operation, "requiredAnyOf": required},
        )


class LockAcquisitionError(GameError):
    """Failed to acquire a lock within the acquire timeout."""

    def __init__(self, lock_key: str, timeout_ms: int):
        super().__init__(
            code=ErrorCode.LOCK_TIMEOUT,
            message=(
                f"Failed to acquire lock {lock_key} within {timeout_ms}ms. "
                "Lock is held by another operation."
            ),
            details={"lockKey": lock_key, "timeoutMs": timeout_ms},
        )
