"""
Lazily built SQLAlchemy engine for the course service's PostgreSQL tables.

Every query runs on the default executor through ``asyncio.to_thread``, so
the pool is sized to that executor's worker count: a worker never waits on
a connection another worker holds. Nothing connects (or even builds the
engine) until the first query or health check.
"""
import logging
import os
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from proctor.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def executor_workers() -> int:
    """Worker count of asyncio's default ``ThreadPoolExecutor``."""
    return min(32, (os.cpu_count() or 1) + 4)


def build_engine(settings: Settings) -> Engine:
    pool_size = settings.db_pool_size or executor_workers()
    return create_engine(
        settings.database_url,
        pool_size=pool_size,
        max_overflow=0,                        # pool already covers every worker
        pool_timeout=settings.db_pool_timeout_seconds,
        pool_pre_ping=True,
    )


@lru_cache
def get_engine() -> Engine:
    engine = build_engine(get_settings())
    logger.info("Database engine ready (pool_size=%d)", engine.pool.size())
    return engine


@lru_cache
def _session_factory() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autoflush=False)


@contextmanager
def get_db():
    """Transactional session: commit on success, roll back and re-raise on error."""
    session = _session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def check_db_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.warning("DB connectivity check failed: %s", exc)
        return False
