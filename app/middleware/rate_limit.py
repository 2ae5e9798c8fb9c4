from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from collections import defaultdict
from datetime import datetime, timedelta
import asyncio
import logging
from typing import Dict, List

from app.core.config import get_settings
from app.core.deps import get_client_ip

settings = get_settings()
logger = logging.getLogger(__name__)

# Gateway callbacks must never be throttled
EXEMPT_PATHS = {"/health", "/health/deep", "/docs", "/redoc", "/openapi.json"}
EXEMPT_PREFIXES = (f"{settings.API_PREFIX}/billing/webhooks",)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Simple in-memory sliding-window rate limiting per client IP.
    State is per process.
    """

    def __init__(self, app):
        super().__init__(app)
        self.requests: Dict[str, List[datetime]] = defaultdict(list)
        self.lock = asyncio.Lock()

    async def dispatch(self, request: Request, call_next):
        """Process request with rate limiting"""

        if not settings.RATE_LIMIT_ENABLED:
            return await call_next(request)

        path = request.url.path
        if path in EXEMPT_PATHS or path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)

        client_ip = get_client_ip(request)

        async with self.lock:
            recent = self._prune(client_ip)
            if len(recent) >= settings.RATE_LIMIT_REQUESTS:
                logger.warning(f"Rate limit exceeded for {client_ip} on {path}")
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={
                        "success": False,
                        "message": f"Rate limit exceeded. Max {settings.RATE_LIMIT_REQUESTS} requests "
                                   f"per {settings.RATE_LIMIT_WINDOW_SECONDS} seconds",
                    },
                    headers={"Retry-After": str(settings.RATE_LIMIT_WINDOW_SECONDS)},
                )
            recent.append(datetime.now())
            remaining = max(0, settings.RATE_LIMIT_REQUESTS - len(recent))

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(settings.RATE_LIMIT_REQUESTS)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(settings.RATE_LIMIT_WINDOW_SECONDS)

        return response

    def _prune(self, client_ip: str) -> List[datetime]:
        """Drop timestamps outside the window and return what is left"""
        window_start = datetime.now() - timedelta(seconds=settings.RATE_LIMIT_WINDOW_SECONDS)
        recent = [ts for ts in self.requests[client_ip] if ts > window_start]
        self.requests[client_ip] = recent
        return recent
