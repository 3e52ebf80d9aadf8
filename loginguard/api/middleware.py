"""CORS headers stamped on every response, errors and preflights included."""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


class CorsHeadersMiddleware(BaseHTTPMiddleware):
    """Inject the fixed CORS headers the mobile client expects."""

    async def dispatch(self, request: StarletteRequest, call_next):
        response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response
