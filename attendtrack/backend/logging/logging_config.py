import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"


def setup_logging(log_dir: Path = Path("logs"), level: int = logging.INFO):
    """
    Configures the root logger for the whole service.

    Logs go both to stdout (for local runs and container logs) and to a rotating
    file that rolls over at 5 MB and keeps the last five files.
    """
    log_dir.mkdir(exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(level)

    # Drop handlers installed by uvicorn so every line uses the same format.
    if logger.hasHandlers():
        logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(stdout_handler)

    file_handler = RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=5*1024*1024,  # 5 MB
        backupCount=5
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
