"""Request logging middleware with latency and request ids."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Thresholds for log levels (in milliseconds)
SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

QUIET_PATHS = frozenset({"/health", "/health/ready"})

REQUEST_ID_HEADER = "X-Request-ID"


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and latency of every request.

    Slow and failed requests are logged at higher levels. Webhook deliveries
    are always logged at info or above so provider traffic can be traced.
    The request id is echoed back in the X-Request-ID response header.
    """
    start_time = time.perf_counter()
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.request_id = request_id
    method = request.method
    path = request.url.path

    response = None
    try:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code if response else 500
        log_msg = "%s %s - %d - %.2fms [%s]"
        args = (method, path, status_code, latency_ms, request_id)

        if path in QUIET_PATHS:
            logger.debug(log_msg, *args)
        elif status_code >= 500:
            logger.error(log_msg, *args)
        elif latency_ms > VERY_SLOW_REQUEST_THRESHOLD_MS:
            logger.error("VERY SLOW REQUEST: " + log_msg, *args)
        elif latency_ms > SLOW_REQUEST_THRESHOLD_MS or status_code >= 400:
            logger.warning(log_msg, *args)
        else:
            logger.info(log_msg, *args)
