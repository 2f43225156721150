"""
SQLAlchemy engine singleton.

Postgres gets a production connection pool. SQLite URLs (used by the test
suite) get a single shared in-memory connection and have the ``roomsync``
schema translated away, since SQLite has no schemas.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from roomsync.config import DATABASE_URL, SCHEMA

if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set.")


def build_engine(url: str) -> Engine:
    """
    Create an engine for the given database URL.

    Args:
        url: SQLAlchemy database URL

    Returns:
        Configured Engine
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            execution_options={"schema_translate_map": {SCHEMA: None}},
        )

    return create_engine(
        url,
        future=True,
        pool_size=10,  # Connections kept open
        max_overflow=20,  # Burst connections when the pool is exhausted
        pool_pre_ping=True,  # Detect stale connections
        pool_recycle=3600,  # Recycle after 1 hour
        echo=False,
    )


engine: Engine = build_engine(DATABASE_URL)


def check_engine_health() -> bool:
    """
    Check if database engine is healthy and connections are working.

    Used by the /ready endpoint before the service accepts traffic.

    Returns:
        bool: True if database is reachable and healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
