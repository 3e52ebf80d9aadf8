"""Database engine and session factory for the shared attempt store.

The engine is created once from ``DATABASE_URL``. Repository code only sees
the sessionmaker returned by ``get_session_factory()``.
"""
import os
import re

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

_engine = None
_SessionLocal = None

# Matches a postgres(ql):// URL anywhere inside a string.
_PG_URL_RE = re.compile(r"(postgres(?:ql)?(?:\+\w+)?://\S+)")


def _resolve_database_url(env_var: str = "DATABASE_URL") -> str:
    """Read a database URL from environment and return a clean SQLAlchemy URL.

    Handles:
    - Leading/trailing whitespace or newlines from copy-paste.
    - Literal surrounding quotes pasted in dashboards.
    - Full ``psql`` command pasted instead of just the URL.
    - ``postgres://`` scheme that SQLAlchemy rejects (needs ``postgresql://``),
      pinned to the psycopg 3 driver.
    """
    raw = os.environ.get(env_var, "").strip()

    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ('"', "'"):
        raw = raw[1:-1].strip()

    match = _PG_URL_RE.search(raw)
    url = match.group(1) if match else raw
    url = url.rstrip("'\"").strip()

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)

    return url


def _mask(url: str) -> str:
    try:
        return url.split("@")[-1].split("?")[0] if "@" in url else "<no-host>"
    except Exception:
        return "<parse-error>"


def _build_engine(url: str):
    """Create an engine; pooled with pre-ping for PostgreSQL."""
    print(f"[LOGINGUARD] Initialising database engine -> {_mask(url)}")
    if url.startswith("sqlite"):
        return create_engine(url, echo=False)
    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=15,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=False,
    )


def init_engine(url: str | None = None) -> None:
    """Initialise the engine from ``url`` or ``DATABASE_URL``."""
    global _engine, _SessionLocal

    url = url or _resolve_database_url("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is empty; cannot initialise the attempt store database.")

    _engine = _build_engine(url)
    _SessionLocal = sessionmaker(bind=_engine, expire_on_commit=False)


def get_engine():
    """Return the active SQLAlchemy engine (may be None)."""
    return _engine


def get_session_factory():
    """Return the sessionmaker. Raises RuntimeError before init_engine()."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialised. Call init_engine() first.")
    return _SessionLocal


def create_tables() -> None:
    """Create the schema on the active engine (idempotent)."""
    from loginguard.infrastructure.database.models import Base

    if _engine is None:
        raise RuntimeError("Database not initialised. Call init_engine() first.")
    Base.metadata.create_all(bind=_engine)
    print("[LOGINGUARD] Tables verified.")


def check_health() -> bool:
    """Lightweight connectivity probe."""
    if _engine is None:
        return False
    try:
        with _engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
