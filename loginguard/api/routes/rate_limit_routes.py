"""Rate limit API route -- check / record-failure / record-success.

Wire-compatible with the mobile client's edge function: one POST endpoint
switching on ``action``, JSON bodies, ``Retry-After`` on 429.
"""
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from loginguard.domain.errors import InvalidIdentity, MalformedRequest

logger = logging.getLogger("loginguard.api")

router = APIRouter(tags=["rate-limit"])

_service = None

ACTIONS = ("check", "record-failure", "record-success")

RATE_LIMITED_MESSAGE = "Too many login attempts. Please try again later."
INVALID_ACTION_MESSAGE = "Invalid action. Use: check, record-failure, or record-success"


def init_rate_limit_routes(guard_service):
    global _service
    _service = guard_service


# ---------------------------------------------------------------------------
# Request schema
# ---------------------------------------------------------------------------

class RateLimitRequest(BaseModel):
    # Any type: unlisted actions of any shape get the invalid-action reply
    action: Any = None
    email: str | None = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def client_origin(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the literal 'unknown'."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = request.headers.get("x-real-ip", "").strip()
    return real_ip or "unknown"


async def _parse_body(request: Request) -> RateLimitRequest:
    try:
        body = await request.json()
    except ValueError:
        raise MalformedRequest("Request body is not valid JSON.") from None
    if not isinstance(body, dict):
        raise MalformedRequest("Request body must be a JSON object.")
    try:
        return RateLimitRequest.model_validate(body)
    except ValidationError:
        raise MalformedRequest("Request body has invalid field types.") from None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.options("/rate-limit")
def api_rate_limit_preflight():
    """CORS preflight; headers are added by the CORS middleware."""
    return Response(status_code=200)


@router.post("/rate-limit")
async def api_rate_limit(request: Request):
    """Dispatch one rate limit action for the calling identity."""
    try:
        req = await _parse_body(request)
        origin = client_origin(request)

        if req.action == "check":
            result = await run_in_threadpool(_service.check, origin, req.email)
            if not result.allowed:
                return JSONResponse(
                    status_code=429,
                    content={
                        "allowed": False,
                        "error": RATE_LIMITED_MESSAGE,
                        "retryAfter": result.retry_after,
                    },
                    headers={"Retry-After": str(result.retry_after)},
                )
            return {"allowed": True, "remainingAttempts": result.remaining}

        if req.action == "record-failure":
            result = await run_in_threadpool(_service.record_failure, origin, req.email)
            content = {
                "recorded": True,
                "remainingAttempts": result.remaining_attempts,
                "locked": result.locked,
            }
            if result.retry_after is not None:
                content["retryAfter"] = result.retry_after
            return content

        if req.action == "record-success":
            await run_in_threadpool(_service.record_success, origin, req.email)
            return {"reset": True}

        return _error(400, INVALID_ACTION_MESSAGE)

    except MalformedRequest as exc:
        logger.info("Rejected malformed rate limit request: %s", exc)
        return _error(400, "Invalid request body")
    except InvalidIdentity as exc:
        logger.info("Rejected rate limit request with invalid identity: %s", exc)
        return _error(400, "Invalid identity")
    except Exception:
        logger.exception("Rate limit error")
        return _error(500, "Internal server error")
