"""Rate limit policy -- window, attempt budget and lockout duration."""
import os
from dataclasses import dataclass

MINUTE_MS = 60 * 1000

DEFAULT_WINDOW_MS = 15 * MINUTE_MS
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_LOCKOUT_MS = 30 * MINUTE_MS
DEFAULT_SWEEP_INTERVAL_MS = MINUTE_MS


@dataclass(frozen=True)
class RateLimitPolicy:
    """Immutable limiter configuration. All durations are integer milliseconds."""

    window_ms: int = DEFAULT_WINDOW_MS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    lockout_ms: int = DEFAULT_LOCKOUT_MS
    sweep_interval_ms: int = DEFAULT_SWEEP_INTERVAL_MS

    def __post_init__(self):
        for name in ("window_ms", "max_attempts", "lockout_ms"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}.")
        interval = self.sweep_interval_ms
        if not isinstance(interval, int) or isinstance(interval, bool) or interval < 0:
            raise ValueError(
                f"sweep_interval_ms must be a non-negative integer, got {self.sweep_interval_ms!r}."
            )

    @classmethod
    def from_env(cls, environ=None) -> "RateLimitPolicy":
        """Build a policy from ``LOGIN_*`` environment variables (seconds).

        Unset variables keep the defaults. Garbage values raise ValueError so a
        misconfigured deployment fails at start-up instead of running open.
        """
        env = os.environ if environ is None else environ
        return cls(
            window_ms=_seconds_to_ms(env, "LOGIN_WINDOW_SECONDS", DEFAULT_WINDOW_MS),
            max_attempts=_int_env(env, "LOGIN_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            lockout_ms=_seconds_to_ms(env, "LOGIN_LOCKOUT_SECONDS", DEFAULT_LOCKOUT_MS),
            sweep_interval_ms=_seconds_to_ms(
                env, "LOGIN_SWEEP_INTERVAL_SECONDS", DEFAULT_SWEEP_INTERVAL_MS
            ),
        )


def _int_env(env, name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from None


def _seconds_to_ms(env, name: str, default_ms: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default_ms
    return _int_env(env, name, 0) * 1000
