"""Per-client rate limiting for the /api routes."""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from fastapi import HTTPException, Request, status


class RateLimiter:
    """Sliding one-minute window per client IP, kept in memory."""

    def __init__(self, requests_per_minute: Optional[int] = None, prefix: str = "/api"):
        """
        Args:
            requests_per_minute: Maximum requests per minute per IP (defaults to config)
            prefix: Only paths under this prefix are limited
        """
        from ..core.config import settings
        self.requests_per_minute = requests_per_minute or settings.RATE_LIMIT_RPM
        self.prefix = prefix
        self.requests: Dict[str, List[datetime]] = defaultdict(list)

    async def check(self, request: Request) -> None:
        """
        Raises:
            HTTPException: 429 if the client exceeded its budget
        """
        if not request.url.path.startswith(self.prefix):
            return

        client_ip = request.client.host if request.client else "unknown"
        now = datetime.now()

        cutoff = now - timedelta(minutes=1)
        self.requests[client_ip] = [
            req_time for req_time in self.requests[client_ip]
            if req_time > cutoff
        ]

        if len(self.requests[client_ip]) >= self.requests_per_minute:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "error": "Rate limit exceeded",
                    "message": f"Maximum {self.requests_per_minute} requests per minute allowed",
                    "retry_after": 60
                }
            )

        self.requests[client_ip].append(now)


rate_limiter = RateLimiter()
