#attendtrack/backend/api/dependencies.py
from fastapi import Depends
from starlette.requests import HTTPConnection
import redis.asyncio as redis
import asyncpg

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..modules.clock import Clock, SystemClock
from ..modules.session_codec import SessionCodec, get_session_codec
from ..services.notifier import LiveUpdateNotifier, notifier
from ..services.session_generator import SessionGenerator
from ..services.scan_validator import ScanValidator
from ..services.attendance_service import AttendanceService


# HTTPConnection rather than Request so the same providers serve WebSocket routes.
def get_redis_pool(connection: HTTPConnection) -> redis.ConnectionPool:
    """Returns the Redis connection pool created in the application lifespan."""
    return connection.app.state.redis_pool

def get_postgres_pool(connection: HTTPConnection) -> asyncpg.Pool:
    """Returns the PostgreSQL connection pool created in the application lifespan."""
    return connection.app.state.postgres_pool

def get_clock() -> Clock:
    return SystemClock()

def get_codec() -> SessionCodec:
    return get_session_codec()

def get_notifier() -> LiveUpdateNotifier:
    return notifier


def get_session_generator(
    redis_pool: redis.ConnectionPool = Depends(get_redis_pool),
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool),
    clock: Clock = Depends(get_clock),
    codec: SessionCodec = Depends(get_codec)
) -> SessionGenerator:
    """
    Builds a fresh SessionGenerator for each request.

    The clients are cheap wrappers around the pools shared through app state,
    so creating them per request costs nothing and keeps services stateless.
    """
    return SessionGenerator(
        redis_client=RedisClient(pool=redis_pool),
        db_client=AsyncPostgresClient(pool=postgres_pool),
        clock=clock,
        codec=codec
    )


def get_scan_validator(
    redis_pool: redis.ConnectionPool = Depends(get_redis_pool),
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool),
    clock: Clock = Depends(get_clock),
    codec: SessionCodec = Depends(get_codec),
    live_notifier: LiveUpdateNotifier = Depends(get_notifier)
) -> ScanValidator:
    return ScanValidator(
        redis_client=RedisClient(pool=redis_pool),
        db_client=AsyncPostgresClient(pool=postgres_pool),
        clock=clock,
        codec=codec,
        notifier=live_notifier
    )


def get_attendance_service(
    redis_pool: redis.ConnectionPool = Depends(get_redis_pool),
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool),
    clock: Clock = Depends(get_clock),
    codec: SessionCodec = Depends(get_codec)
) -> AttendanceService:
    return AttendanceService(
        redis_client=RedisClient(pool=redis_pool),
        db_client=AsyncPostgresClient(pool=postgres_pool),
        clock=clock,
        codec=codec
    )
