# mercadoboom/database.py
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from flask import g, has_app_context
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from mercadoboom.config import Config


def build_engine(database_url: Optional[str] = None, **overrides: Any) -> Engine:
    """Engine for ``database_url`` with the pool settings from Config."""
    database_url = database_url or Config.DATABASE_URL
    options: Dict[str, Any] = {"echo": Config.SQL_ECHO, "future": True, "pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # Flask's dev server and the test client hand requests to other threads
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(pool_size=Config.DB_POOL_SIZE, max_overflow=Config.DB_MAX_OVERFLOW)
    options.update(overrides)
    return create_engine(database_url, **options)


engine = build_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True, future=True)

Base = declarative_base()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session outside a request: committed on success, rolled back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Session:
    """Request-scoped session, opened lazily and closed on teardown."""
    session = g.get("db")
    if session is None:
        session = g.db = SessionLocal()
    return session


def close_db(exception=None) -> None:
    session = g.pop("db", None) if has_app_context() else None
    if session is None:
        return
    if exception is not None:
        session.rollback()
    session.close()
