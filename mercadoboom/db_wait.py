import logging
import time
from typing import Optional

from sqlalchemy.exc import OperationalError

from mercadoboom.config import Config
from mercadoboom.database import build_engine

logger = logging.getLogger(__name__)


def wait_for_database(
    database_url: Optional[str] = None,
    max_attempts: int = 30,
    sleep_seconds: float = 2.0,
) -> int:
    """Block until the database accepts connections. Returns the attempt that succeeded."""
    database_url = database_url or Config.DATABASE_URL
    if database_url.startswith("sqlite"):
        return 0

    engine = build_engine(database_url, pool_size=1, max_overflow=0)
    try:
        for attempt in range(1, max_attempts + 1):
            try:
                with engine.connect():
                    logger.info("Database connection established after %d attempt(s)", attempt)
                    return attempt
            except OperationalError as exc:
                logger.warning("[wait_for_db] Attempt %d/%d failed: %s", attempt, max_attempts, exc)
                time.sleep(sleep_seconds)
    finally:
        engine.dispose()

    raise RuntimeError("Database not reachable after waiting.")
