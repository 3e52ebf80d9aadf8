"""Rate limit evaluator -- pure decision logic over an AttemptRecord.

No I/O and no mutation: the caller owns persistence. The one outcome that
requires a write (a lock becoming due) is flagged with ``lock_required`` and
applied by the guard service through ``apply_lock``.
"""
from dataclasses import dataclass
from typing import Optional

from loginguard.domain.attempt import AttemptRecord
from loginguard.domain.policy import RateLimitPolicy


@dataclass(frozen=True)
class Decision:
    allowed: bool
    remaining: Optional[int] = None
    retry_after: Optional[int] = None
    lock_required: bool = False


def ms_to_retry_seconds(ms: int) -> int:
    """Whole seconds, rounded up so remaining lock time is never under-reported."""
    return -(-ms // 1000)


def fresh_decision(policy: RateLimitPolicy) -> Decision:
    return Decision(allowed=True, remaining=policy.max_attempts - 1)


def evaluate(record: Optional[AttemptRecord], now: int, policy: RateLimitPolicy) -> Decision:
    if record is None:
        return fresh_decision(policy)

    if record.is_locked(now):
        return Decision(
            allowed=False,
            retry_after=ms_to_retry_seconds(record.locked_until - now),
        )

    # Expired windows are treated as absent; the stale record is left for
    # the next failure or the sweep to replace.
    if record.window_expired(now, policy):
        return fresh_decision(policy)

    if record.count >= policy.max_attempts:
        return Decision(
            allowed=False,
            retry_after=ms_to_retry_seconds(policy.lockout_ms),
            lock_required=True,
        )

    return Decision(allowed=True, remaining=policy.max_attempts - record.count - 1)


def apply_lock(record: AttemptRecord, now: int, policy: RateLimitPolicy) -> AttemptRecord:
    return record.locked(now + policy.lockout_ms)
