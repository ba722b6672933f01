from __future__ import annotations

import time
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from mercadoboom.database import engine


def check_database_health() -> Dict[str, Any]:
    """Run ``SELECT 1`` and report UP/DOWN with the round-trip time."""
    started = time.perf_counter()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return {"status": "DOWN", "detail": str(exc)}
    return {"status": "UP", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}
