import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """
    Settings read straight from environment variables (a local .env file is loaded first).
    """
    # Storage
    DATABASE_URL: str = os.environ.get("DATABASE_URL")
    APPLICATION_REDIS_URL: str = os.environ.get("APPLICATION_REDIS_URL")
    RATE_LIMITER_REDIS_URL: str = os.environ.get("RATE_LIMITER_REDIS_URL")

    # Bearer tokens are issued by the external auth service; we only verify them.
    SECRET_KEY: str = os.environ.get("SECRET_KEY", "change-me-in-production-please-32b")
    ALGORITHM: str = os.environ.get("ALGORITHM", "HS256")

    # Every instant is normalised to this fixed offset before comparison.
    REFERENCE_UTC_OFFSET_HOURS: int = int(os.environ.get("REFERENCE_UTC_OFFSET_HOURS", 8))

    # Attendance session policy
    SESSION_DURATION_MINUTES: int = int(os.environ.get("SESSION_DURATION_MINUTES", 60))
    MAX_SESSION_DURATION_MINUTES: int = int(os.environ.get("MAX_SESSION_DURATION_MINUTES", 480))
    # When set, QR payloads carry an HMAC-SHA256 signature that scans must match.
    SESSION_SIGNING_KEY: str = os.environ.get("SESSION_SIGNING_KEY")

    # Live updates
    RECENT_SCAN_WINDOW_MINUTES: int = int(os.environ.get("RECENT_SCAN_WINDOW_MINUTES", 5))
    RECONCILE_INTERVAL_SECONDS: int = int(os.environ.get("RECONCILE_INTERVAL_SECONDS", 30))
    NOTIFIER_QUEUE_SIZE: int = int(os.environ.get("NOTIFIER_QUEUE_SIZE", 100))

settings = Config()
