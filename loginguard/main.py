"""Entry point. Wires the attempt store into the guard service and routes.

Persistence strategy:
  - If DATABASE_URL is set  -> PostgreSQL, shared by every instance.
  - Otherwise               -> in-memory store (single instance / development).
"""
import os
from dotenv import load_dotenv

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_DIR = os.path.dirname(BASE_DIR)
load_dotenv(os.path.join(PROJECT_DIR, ".env"))

from fastapi import FastAPI

from loginguard.api.middleware import CorsHeadersMiddleware
from loginguard.api.routes.rate_limit_routes import router as rate_limit_router, init_rate_limit_routes
from loginguard.application.guard_service import GuardService
from loginguard.domain.policy import RateLimitPolicy
from loginguard.infrastructure import audit

DATABASE_URL = os.environ.get("DATABASE_URL", "")


def build_store(policy: RateLimitPolicy):
    """Pick the attempt store for this deployment."""
    if DATABASE_URL:
        from loginguard.infrastructure.database.connection import (
            init_engine, create_tables, get_session_factory,
        )
        from loginguard.infrastructure.store.sql_store import SqlAttemptStore

        init_engine()
        create_tables()
        return SqlAttemptStore(get_session_factory(), policy)

    from loginguard.infrastructure.store.memory_store import InMemoryAttemptStore

    print("[LOGINGUARD][WARN] DATABASE_URL not set -- using in-memory attempt store "
          "(counters are per process).")
    return InMemoryAttemptStore(policy)


def create_app(guard_service: GuardService) -> FastAPI:
    app = FastAPI(
        title="Login Attempt Guard",
        description="Sliding-window login attempt limiter with lockout.",
        version="1.0.0",
    )
    app.add_middleware(CorsHeadersMiddleware)

    init_rate_limit_routes(guard_service)
    app.include_router(rate_limit_router)

    @app.get("/health")
    def health():
        store = guard_service.store
        result = {
            "status": "online",
            "store": store.kind,
        }
        if store.kind == "sql":
            from loginguard.infrastructure.database.connection import check_health
            result["database"] = "connected" if check_health() else "disconnected"
        return result

    return app


policy = RateLimitPolicy.from_env()
guard_service = GuardService(build_store(policy), policy, audit=audit)
app = create_app(guard_service)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "loginguard.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )
