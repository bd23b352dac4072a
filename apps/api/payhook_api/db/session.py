"""Database engine and session management (sql store backend).

Engines are built explicitly by the application factory; nothing connects at
import time.
"""

import logging
import re
from functools import lru_cache

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from payhook_api.config.env import get_database_url

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def build_engine(database_url: str) -> Engine:
    """Build an engine for ``database_url``.

    - SQLite in-memory: single shared connection (StaticPool)
    - Everything else: NullPool (Supabase pooler does the pooling)
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
    else:
        engine = create_engine(database_url, poolclass=NullPool, pool_pre_ping=True)

    logger.info("Database engine created", extra={"database_url": _mask_password(database_url)})
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker[Session]:
    """Process-wide session factory built from DATABASE_URL.

    Raises:
        ValueError: If DATABASE_URL is not set
    """
    return build_sessionmaker(build_engine(get_database_url()))
