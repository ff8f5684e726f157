"""
Request correlation.

Every request carries an id in `x-request-id`: the caller's when it looks sane,
otherwise a fresh uuid4. The id is bound to the logging context for the whole
request, and one `request.complete` line is written per request with the
account that was resolved by the auth dependency (if any).
"""

import logging
import re
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from diceraja.core.logging import latency_bucket_ms, request_id_ctx_var

REQUEST_ID_HEADER = "x-request-id"
_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_request_id(incoming):
    if incoming and _SAFE_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = REQUEST_ID_HEADER):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = resolve_request_id(request.headers.get(self.header_name))
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers[self.header_name] = rid

        status = response.status_code
        logging.getLogger("diceraja").log(
            logging.WARNING if status >= 500 else logging.INFO,
            "request.complete",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
                "account_id": getattr(request.state, "account_id", None),
                "account_kind": getattr(request.state, "account_kind", None),
            },
        )
        return response
