from typing import Any, Dict
from sqlalchemy.pool import NullPool


def _normalize_db_url(url: str | None) -> str | None:
    # hosted postgres often hands out "postgres://..." but asyncpg/SQLAlchemy needs "postgresql+asyncpg://..."
    if not url:
        return None
    if url.startswith("postgres://",):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def engine_kwargs(url: str, busy_timeout: float) -> Dict[str, Any]:
    """sqlite connections are per-use (no pool shared across event loops) and wait on
    the file lock instead of failing with 'database is locked'."""
    if is_sqlite_url(url):
        return {"poolclass": NullPool, "connect_args": {"timeout": busy_timeout}}
    return {"pool_pre_ping": True}
