"""SQLAlchemy ORM models -- shared attempt store schema."""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase


def _utcnow():
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Login attempts
# ---------------------------------------------------------------------------

class LoginAttemptModel(Base):
    __tablename__ = "login_attempts"

    # SHA-256 hex digest of the identity pair (never the raw IP / e-mail)
    key = Column(String(64), primary_key=True)
    count = Column(Integer, nullable=False)
    # Epoch milliseconds, kept as integers so window arithmetic is exact
    window_start = Column(BigInteger, nullable=False, index=True)
    locked_until = Column(BigInteger, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
