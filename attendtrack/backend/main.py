# attendtrack/backend/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager, suppress
import asyncio
import redis.asyncio as redis
import asyncpg
from apscheduler.schedulers.asyncio import AsyncIOScheduler as Scheduler
import logging

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config.config import settings
from .logging.logging_config import setup_logging
from .api import lecturer, student, live
from .api.utilities.limiter import limiter
from .db.redis_client import RedisClient
from .modules.clock import SystemClock
from .services.notifier import notifier
from .tasks.cron import reconcile_live_sessions_task

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Creates the shared connection pools and the reconciliation scheduler on
    startup, and tears them down on shutdown.
    """
    setup_logging()
    logger.info("Application starting...")

    app.state.postgres_pool = None
    app.state.redis_pool = None
    app.state.scheduler = None
    app.state.relay_task = None

    try:
        app.state.postgres_pool = await asyncpg.create_pool(
            dsn=settings.DATABASE_URL, min_size=5, max_size=20
        )
        app.state.redis_pool = redis.ConnectionPool.from_url(
            settings.APPLICATION_REDIS_URL, decode_responses=True
        )
        logger.info("PostgreSQL and Redis connection pools created.")

        notifier.attach(RedisClient(pool=app.state.redis_pool))
        app.state.relay_task = await notifier.start_relay()
        logger.info("Live-update relay subscribed to Redis.")

        scheduler = Scheduler()
        scheduler.add_job(
            reconcile_live_sessions_task, "interval",
            seconds=settings.RECONCILE_INTERVAL_SECONDS,
            args=[RedisClient(pool=app.state.redis_pool), notifier, SystemClock()],
            id="reconcile_live_sessions"
        )
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info("Live-session reconciliation job scheduled.")

    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)

    yield

    logger.info("Application shutting down...")
    if app.state.relay_task:
        app.state.relay_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.relay_task
        logger.info("Live-update relay stopped.")
    if app.state.scheduler:
        app.state.scheduler.shutdown()
        logger.info("Scheduler stopped.")
    if app.state.postgres_pool:
        await app.state.postgres_pool.close()
        logger.info("PostgreSQL connection pool closed.")
    if app.state.redis_pool:
        await app.state.redis_pool.disconnect()
        logger.info("Redis connection pool closed.")


app = FastAPI(
    title="AttendTrack API",
    description="QR-code attendance sessions: generation, scan verification and live updates.",
    version="1.0.0",
    lifespan=lifespan
)
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(lecturer.router, prefix="/api/v1")
app.include_router(student.router, prefix="/api/v1")
app.include_router(live.router, prefix="/api/v1")

@app.get("/health", tags=["System"])
def health_check():
    """Simple liveness probe."""
    return {"status": "ok", "message": "AttendTrack API is running."}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
