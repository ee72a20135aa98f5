import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.utils.logger import get_logger


logger = get_logger("middleware")


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        if request.url.path.startswith("/api/v1/"):
            logger.info(
                f"{request.method} {request.url.path} → {response.status_code} "
                f"in {duration_ms:.1f}ms ua={request.headers.get('user-agent', '-')}"
            )

        return response
