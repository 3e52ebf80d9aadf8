"""Login attempt guard -- the facade called around every credential check.

Callers run ``check`` before verifying credentials, then report the outcome
with ``record_failure`` or ``record_success``. Being rate limited comes back
as data (``allowed=False``), never as an exception.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from loginguard.domain.attempt import AttemptRecord
from loginguard.domain.evaluator import Decision, apply_lock, evaluate
from loginguard.domain.identity import derive_identity
from loginguard.domain.policy import RateLimitPolicy

logger = logging.getLogger("loginguard.guard")


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class CheckResult:
    allowed: bool
    remaining: Optional[int] = None
    retry_after: Optional[int] = None


@dataclass(frozen=True)
class FailureResult:
    remaining_attempts: int
    locked: bool
    retry_after: Optional[int] = None


class GuardService:
    """Orchestrates the attempt store and the evaluator.

    ``audit`` is anything exposing ``log_lock(key, retry_after, failed_attempts)``
    and ``log_reset(key, cleared_count, was_locked)``; production passes the
    ``loginguard.infrastructure.audit`` module.
    """

    def __init__(
        self,
        store,
        policy: RateLimitPolicy | None = None,
        clock: Callable[[], int] | None = None,
        audit=None,
    ):
        self._store = store
        self._policy = policy or RateLimitPolicy()
        self._clock = clock or _now_ms
        self._audit = audit
        self._sweep_lock = threading.Lock()
        self._last_sweep = self._clock()

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    @property
    def store(self):
        return self._store

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def check(self, origin, account=None) -> CheckResult:
        """Decide whether the identity may attempt now. Records nothing."""
        key = derive_identity(origin, account).key
        now = self._clock()
        self._maybe_sweep(now)

        decision = evaluate(self._store.get(key), now, self._policy)
        if decision.lock_required:
            decision, count = self._store.update(
                key, lambda current: self._lock_if_due(current, now)
            )
            self._on_locked(key, decision, count)
        return CheckResult(
            allowed=decision.allowed,
            remaining=decision.remaining,
            retry_after=decision.retry_after,
        )

    def record_failure(self, origin, account=None) -> FailureResult:
        """Count one failed attempt and lock the identity once the budget is spent."""
        key = derive_identity(origin, account).key
        now = self._clock()
        self._maybe_sweep(now)

        def bump(current: Optional[AttemptRecord]):
            if current is None or (
                not current.is_locked(now) and current.window_expired(now, self._policy)
            ):
                record = AttemptRecord.first_failure(now)
            else:
                record = current.incremented()
            decision = evaluate(record, now, self._policy)
            if decision.lock_required:
                record = apply_lock(record, now, self._policy)
            return record, (decision, record.count)

        decision, count = self._store.update(key, bump)
        self._on_locked(key, decision, count)
        return FailureResult(
            remaining_attempts=decision.remaining if decision.allowed else 0,
            locked=not decision.allowed,
            retry_after=decision.retry_after,
        )

    def record_success(self, origin, account=None) -> None:
        """Forget every failure and any active lock for the identity."""
        key = derive_identity(origin, account).key
        now = self._clock()
        self._maybe_sweep(now)

        cleared = self._store.update(key, lambda current: (None, current))
        if cleared is not None and self._audit is not None:
            self._write_audit(
                self._audit.log_reset, key, cleared.count, cleared.is_locked(now)
            )

    def sweep(self) -> None:
        """Remove expired records now."""
        now = self._clock()
        with self._sweep_lock:
            self._store.sweep(now)
            self._last_sweep = now

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lock_if_due(self, current: Optional[AttemptRecord], now: int):
        # Re-evaluate under the store's lock: another caller may have locked,
        # reset or replaced the record since the read.
        decision = evaluate(current, now, self._policy)
        if decision.lock_required:
            current = apply_lock(current, now, self._policy)
        return current, (decision, current.count if current else 0)

    def _maybe_sweep(self, now: int) -> None:
        if now - self._last_sweep < self._policy.sweep_interval_ms:
            return
        # Only one caller sweeps; the others carry on immediately.
        if not self._sweep_lock.acquire(blocking=False):
            return
        try:
            if now - self._last_sweep < self._policy.sweep_interval_ms:
                return
            try:
                self._store.sweep(now)
            except Exception:
                # A failed pass waits for the next interval like a good one.
                logger.exception("Attempt store sweep failed")
            self._last_sweep = max(self._last_sweep, now)
        finally:
            self._sweep_lock.release()

    def _on_locked(self, key: str, decision: Decision, count: int) -> None:
        if not decision.lock_required:
            return
        logger.warning(
            "Identity %s locked out for %ds after %d failed attempts",
            key[:12], decision.retry_after, count,
        )
        if self._audit is not None:
            self._write_audit(self._audit.log_lock, key, decision.retry_after, count)

    def _write_audit(self, write, *args) -> None:
        try:
            write(*args)
        except Exception as exc:
            # Audit failures must not turn a decision into a 500.
            logger.error("Audit write failed: %s", exc)
