import itertools
import logging
import time
from typing import Callable

import psutil
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

perf_logger = logging.getLogger("performance")


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id and timing headers and logs slow requests."""

    def __init__(self, app, slow_request_threshold: float = 1.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold
        self._counter = itertools.count(1)
        self._process = psutil.Process()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        request_id = f"req_{next(self._counter)}_{int(start_time)}"
        request.state.request_id = request_id
        memory_before = self._process.memory_info().rss

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        response.headers["X-Request-ID"] = request_id

        if process_time > self.slow_request_threshold:
            memory_delta = self._process.memory_info().rss - memory_before
            perf_logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time:.3f}s (threshold: {self.slow_request_threshold}s) "
                f"- status {response.status_code} - memory delta {memory_delta / 1024 / 1024:.1f}MB"
            )
        else:
            perf_logger.debug(
                f"{request.method} {request.url.path} - {response.status_code} - {process_time:.3f}s"
            )

        return response
