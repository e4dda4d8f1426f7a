"""
FastAPI middleware for automatic Prometheus metrics collection.

Tracks request counts, latency and in-flight requests per normalized path.
"""

import logging
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from deoglory.observability.metrics import (
    http_requests_total,
    http_request_duration_seconds,
    http_requests_in_progress,
)

logger = logging.getLogger(__name__)

# Path segments that always carry an identifier
_ID_AFTER = {"study", "lessons", "seasons"}


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for HTTP requests"""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        method = request.method
        path = normalize_path(request.url.path)

        http_requests_in_progress.labels(method=method, endpoint=path).inc()
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code

        except Exception as e:
            logger.error(f"Request failed: {e}", exc_info=True)
            raise

        finally:
            http_requests_in_progress.labels(method=method, endpoint=path).dec()
            duration = time.time() - start_time

            http_requests_total.labels(
                method=method, endpoint=path, status=status_code
            ).inc()

            http_request_duration_seconds.labels(
                method=method, endpoint=path
            ).observe(duration)

        return response


def normalize_path(path: str) -> str:
    """
    Normalize request path to reduce cardinality.

    - /api/v1/study/member-42/lessons/7/stages/estude/complete
      -> /api/v1/study/{user_id}/lessons/{id}/stages/estude/complete
    """
    if path in ["/metrics", "/health", "/"]:
        return path

    parts = path.strip("/").split("/")
    normalized_parts = []
    previous = None
    for part in parts:
        if previous == "study":
            normalized_parts.append("{user_id}")
        elif previous in _ID_AFTER or part.isdigit():
            normalized_parts.append("{id}")
        else:
            normalized_parts.append(part)
        previous = part

    return "/" + "/".join(normalized_parts)


def setup_metrics_middleware(app):
    """Add Prometheus metrics middleware to the FastAPI application"""
    from deoglory.config import ENABLE_METRICS

    if not ENABLE_METRICS:
        logger.info("Metrics collection is disabled (ENABLE_METRICS=false)")
        return

    app.add_middleware(PrometheusMiddleware)
    logger.info("Prometheus metrics middleware added to FastAPI")
