"""Application configuration."""
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

OVERFLOW_POLICIES = ("increment", "clamp", "complete", "reject")


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_debug: bool = True
    log_level: str = "INFO"
    json_logs: bool = False

    # Redis (locks, audit stream, persisted club configuration)
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_max_connections: int = Field(
        default=50,
        description="Redis max connections",
    )
    redis_socket_timeout: float = Field(
        default=5.0,
        description="Redis socket timeout in seconds",
    )
    redis_socket_connect_timeout: float = Field(
        default=5.0,
        description="Redis connect timeout in seconds",
    )
    redis_health_check_interval: int = Field(
        default=30,
        description="Redis health check interval in seconds",
    )
    use_distributed_locks: bool = Field(
        default=False,
        description="Serialize game/treasury mutations through Redis instead of in-process locks",
    )

    # Seating
    default_max_seats: int = Field(
        default=9,
        description="Seats per table when the seating engine opens a new table",
    )
    final_table_size: int = Field(
        default=9,
        description="Maximum active players that may be consolidated onto table 1",
    )

    # Clock
    level_overflow_policy: str = Field(
        default="increment",
        description="Past the last blind level: increment|clamp|complete|reject",
    )

    # Locks
    lock_timeout_ms: int = Field(
        default=10000,
        description="Lock auto-expire time in milliseconds",
    )
    lock_acquire_timeout_ms: int = Field(
        default=5000,
        description="Max wait for a lock in milliseconds",
    )
    lock_retry_interval_ms: int = Field(
        default=50,
        description="Retry interval while waiting for a lock",
    )

    # Ledger
    ledger_page_size: int = Field(default=50, ge=1)
    ledger_max_page_size: int = Field(default=200, ge=1)
    payout_rounding_unit: int = Field(
        default=100,
        description="Suggested payouts are rounded to this many minor units",
    )

    # Audit / persisted config
    audit_stream_key: str = "audit:pokerclub"
    audit_stream_max_len: int = 100000
    audit_hmac_key: str = Field(
        default="pokerclub-audit-key",
        description="HMAC key for audit entry integrity hashes",
    )
    config_key_prefix: str = "pokerclub:config"

    # Membership bootstrap: comma-separated club_id:person_id owner pairs
    club_owners: str = ""

    @field_validator("level_overflow_policy")
    @classmethod
    def validate_level_overflow_policy(cls, v: str) -> str:
        """Only known overflow policies are accepted."""
        normalized = v.strip().lower()
        if normalized not in OVERFLOW_POLICIES:
            raise ValueError(
                f"level_overflow_policy must be one of {', '.join(OVERFLOW_POLICIES)}"
            )
        return normalized

    @field_validator("default_max_seats", "final_table_size")
    @classmethod
    def validate_seat_counts(cls, v: int) -> int:
        if v < 2:
            raise ValueError("seat counts must be at least 2")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production environment."""
        if self.ledger_page_size > self.ledger_max_page_size:
            raise ValueError("ledger_page_size cannot exceed ledger_max_page_size")

        if self.app_env == "production":
            if self.app_debug:
                raise ValueError(
                    "app_debug must be False in production environment"
                )
            if self.audit_hmac_key == "pokerclub-audit-key":
                raise ValueError(
                    "audit_hmac_key must be set explicitly in production environment"
                )

        return self

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
