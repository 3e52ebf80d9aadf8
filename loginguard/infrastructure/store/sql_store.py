"""PostgreSQL-backed attempt store shared by every service instance."""
import logging
from typing import Callable, Optional, Tuple, TypeVar

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError

from loginguard.domain.attempt import AttemptRecord
from loginguard.domain.policy import RateLimitPolicy
from loginguard.infrastructure.database.models import LoginAttemptModel

T = TypeVar("T")

logger = logging.getLogger("loginguard.store")

# A first insert of the same key from two instances collides on the primary
# key; the loser retries and then sees the winner's row under FOR UPDATE.
_MAX_CAS_RETRIES = 5


def _to_record(row: Optional[LoginAttemptModel]) -> Optional[AttemptRecord]:
    if row is None:
        return None
    return AttemptRecord(
        count=row.count,
        window_start=row.window_start,
        locked_until=row.locked_until,
    )


def _write(row: LoginAttemptModel, record: AttemptRecord) -> None:
    row.count = record.count
    row.window_start = record.window_start
    row.locked_until = record.locked_until


class SqlAttemptStore:
    """AttemptRecord persistence via SQLAlchemy with row-level locking."""

    kind = "sql"

    def __init__(self, session_factory, policy: RateLimitPolicy):
        self._sf = session_factory
        self._policy = policy

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[AttemptRecord]:
        with self._sf() as session:
            return _to_record(session.get(LoginAttemptModel, key))

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def set(self, key: str, record: AttemptRecord) -> None:
        with self._sf() as session:
            session.merge(LoginAttemptModel(key=key, **record.to_dict()))
            session.commit()

    def delete(self, key: str) -> None:
        with self._sf() as session:
            session.query(LoginAttemptModel).filter(
                LoginAttemptModel.key == key
            ).delete(synchronize_session=False)
            session.commit()

    def update(
        self,
        key: str,
        fn: Callable[[Optional[AttemptRecord]], Tuple[Optional[AttemptRecord], T]],
    ) -> T:
        """Read-modify-write ``key`` inside one transaction.

        The row is read with SELECT ... FOR UPDATE so concurrent updates of
        the same key queue behind each other. ``fn`` may run more than once
        when a concurrent first insert wins the race, so it must be pure.
        """
        for attempt in range(1, _MAX_CAS_RETRIES + 1):
            with self._sf() as session:
                row = (
                    session.query(LoginAttemptModel)
                    .filter(LoginAttemptModel.key == key)
                    .with_for_update()
                    .one_or_none()
                )
                new_record, result = fn(_to_record(row))
                if new_record is None:
                    if row is not None:
                        session.delete(row)
                elif row is None:
                    session.add(LoginAttemptModel(key=key, **new_record.to_dict()))
                else:
                    _write(row, new_record)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    logger.debug("Concurrent insert on attempt key, retry %d", attempt)
                    continue
                return result
        raise RuntimeError(f"Attempt store update did not converge after {_MAX_CAS_RETRIES} retries.")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self, now: int) -> None:
        self.delete_expired(now)

    def delete_expired(self, now: int) -> int:
        """Delete every expired row in one statement. Returns the row count."""
        p = self._policy
        m = LoginAttemptModel
        expired = or_(
            and_(m.locked_until.is_(None), m.window_start < now - (p.window_ms + p.lockout_ms)),
            and_(
                m.locked_until.isnot(None),
                m.locked_until <= now,
                m.window_start < now - p.window_ms,
            ),
        )
        with self._sf() as session:
            deleted = session.query(m).filter(expired).delete(synchronize_session=False)
            session.commit()
        if deleted:
            logger.info("Swept %d expired login attempt rows", deleted)
        return deleted

    def __len__(self) -> int:
        with self._sf() as session:
            return session.query(LoginAttemptModel).count()
