import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from services.metrics import increment_http_requests
from services.observability import resolve_request_id, set_request_id
from services.redaction import redact_headers

logger = logging.getLogger("remodoc.http")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a request id (client supplied or generated),
    echoes it back as X-Request-Id and writes one access log line.
    """

    async def dispatch(self, request: Request, call_next):
        req_id = resolve_request_id(request.headers)
        start = time.perf_counter()

        request.state.request_id = req_id
        set_request_id(req_id)

        response = None
        try:
            response = await call_next(request)
            response.headers["X-Request-Id"] = req_id
            return response
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            status = getattr(response, "status_code", 500)
            route = request.scope.get("route")
            increment_http_requests(getattr(route, "path", request.url.path), status)

            # no bodies, no credentials
            logger.info(
                "http_request request_id=%s method=%s path=%s status=%s duration_ms=%s client=%s",
                req_id,
                request.method,
                request.url.path,
                status,
                duration_ms,
                request.client.host if request.client else None,
            )
            logger.debug("http_request_headers request_id=%s headers=%s", req_id, redact_headers(request.headers))
