"""Delete expired login_attempts rows. Run from cron: python -m loginguard.sweep"""
import os
import time

from dotenv import load_dotenv

load_dotenv(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))

from loginguard.domain.policy import RateLimitPolicy
from loginguard.infrastructure.database.connection import (
    init_engine, create_tables, get_session_factory,
)
from loginguard.infrastructure.store.sql_store import SqlAttemptStore


def main() -> int:
    init_engine()
    create_tables()
    store = SqlAttemptStore(get_session_factory(), RateLimitPolicy.from_env())
    deleted = store.delete_expired(time.time_ns() // 1_000_000)
    print(f"[LOGINGUARD] Sweep complete: {deleted} expired rows deleted.")
    return deleted


if __name__ == "__main__":
    main()
