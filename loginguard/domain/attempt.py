"""AttemptRecord entity -- failed attempts counted inside one window."""
from dataclasses import dataclass, replace
from typing import Optional

from loginguard.domain.policy import RateLimitPolicy


@dataclass(frozen=True)
class AttemptRecord:
    """Per-identity failure window. Timestamps are epoch milliseconds."""

    count: int
    window_start: int
    locked_until: Optional[int] = None

    def __post_init__(self):
        if self.count < 1:
            raise ValueError(f"count must be >= 1, got {self.count}.")
        if self.locked_until is not None and self.locked_until < self.window_start:
            raise ValueError("locked_until cannot precede window_start.")

    @classmethod
    def first_failure(cls, now: int) -> "AttemptRecord":
        return cls(count=1, window_start=now)

    def incremented(self) -> "AttemptRecord":
        return replace(self, count=self.count + 1)

    def locked(self, until: int) -> "AttemptRecord":
        return replace(self, locked_until=until)

    def is_locked(self, now: int) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def window_expired(self, now: int, policy: RateLimitPolicy) -> bool:
        return now - self.window_start > policy.window_ms

    def is_expired(self, now: int, policy: RateLimitPolicy) -> bool:
        """True once the record can be dropped without changing any decision.

        An active lock always keeps the record. A lapsed lock keeps it until
        the window has also passed; an unlocked record is kept for
        window + lockout.
        """
        if self.is_locked(now):
            return False
        elapsed = now - self.window_start
        if self.locked_until is not None:
            return elapsed > policy.window_ms
        return elapsed > policy.window_ms + policy.lockout_ms

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "window_start": self.window_start,
            "locked_until": self.locked_until,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AttemptRecord":
        return cls(
            count=int(data["count"]),
            window_start=int(data["window_start"]),
            locked_until=(
                int(data["locked_until"]) if data.get("locked_until") is not None else None
            ),
        )
