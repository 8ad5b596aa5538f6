"""
Observability middleware for FastAPI.
Provides request tracing, logging, and metrics collection.
"""
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from app.obs.logging import get_logger, log_request, log_error, extract_trace_id
from app.obs.tracing import get_tracer, add_span_attributes, add_span_error
from app.obs.metrics import record_http_request

logger = get_logger(__name__)
tracer = get_tracer(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Middleware for request observability (logging, tracing, metrics)."""

    def __init__(self, app, exclude_paths: list = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or ['/health', '/metrics', '/docs', '/openapi.json']

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with observability."""
        start_time = time.time()

        # Trace id is always assigned so error bodies can reference it
        trace_id = extract_trace_id(request)
        request.state.trace_id = trace_id

        if any(request.url.path.startswith(path) for path in self.exclude_paths):
            response = await call_next(request)
            response.headers["X-Request-Id"] = trace_id
            return response

        with tracer.start_as_current_span(
            f"{request.method} {request.url.path}",
            attributes={
                "http.method": request.method,
                "http.url": str(request.url),
                "http.route": request.url.path,
                "trace_id": trace_id,
            }
        ):
            try:
                add_span_attributes({
                    "http.user_agent": request.headers.get("user-agent", ""),
                })
                if request.client:
                    add_span_attributes({"http.client_ip": request.client.host})

                response = await call_next(request)

                duration_ms = (time.time() - start_time) * 1000

                add_span_attributes({"http.status_code": response.status_code})

                response.headers["X-Request-Id"] = trace_id

                record_http_request(
                    route=request.url.path,
                    method=request.method,
                    status_code=response.status_code,
                    duration_ms=duration_ms
                )

                log_request(
                    logger=logger,
                    request=request,
                    status_code=response.status_code,
                    latency_ms=duration_ms,
                    trace_id=trace_id,
                    user_id=getattr(request.state, 'user_id', None),
                )

                return response

            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000

                add_span_error(e, {
                    "error.route": request.url.path,
                    "error.method": request.method,
                })

                record_http_request(
                    route=request.url.path,
                    method=request.method,
                    status_code=500,
                    duration_ms=duration_ms
                )

                log_error(
                    logger=logger,
                    error=e,
                    trace_id=trace_id,
                    user_id=getattr(request.state, 'user_id', None),
                    route=request.url.path,
                    method=request.method,
                )

                raise
