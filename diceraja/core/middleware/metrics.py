from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

from diceraja.core.metrics import record_request


def route_template(request) -> str:
    """Path template of the route serving this request ("/api/auth/me"), or "" if none matches."""
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", "")
    return ""


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count requests per route template so ids and scanner paths never become labels."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        record_request(request.method, route_template(request), response.status_code)
        return response
