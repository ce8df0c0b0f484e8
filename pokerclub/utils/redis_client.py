"""Redis client for locks, the audit stream and persisted club configuration."""

from redis.asyncio import ConnectionPool, Redis

from pokerclub.config import Settings, get_settings

# Global Redis connection pool and client instance
redis_pool: ConnectionPool | None = None
redis_client: Redis | None = None


async def init_redis(settings: Settings | None = None) -> Redis:
    """Initialize the shared Redis client and verify the connection."""
    global redis_pool, redis_client

    settings = settings or get_settings()
    redis_pool = ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry_on_timeout=True,
        health_check_interval=settings.redis_health_check_interval,
        encoding="utf-8",
        decode_responses=True,
    )
    redis_client = Redis(connection_pool=redis_pool)

    await redis_client.ping()
    return redis_client


async def close_redis() -> None:
    """Close Redis connection and pool."""
    global redis_pool, redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None
