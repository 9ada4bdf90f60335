import os
import time
from collections import defaultdict
from typing import Annotated, Dict, List
from fastapi import Depends, Request, HTTPException, status

import models
from dependencies import get_current_user


class RateLimiter:
    def __init__(self, requests_limit: int, time_window: int):
        self.requests_limit = requests_limit
        self.time_window = time_window  # in seconds
        self.client_requests: Dict[str, List[float]] = defaultdict(list)
        self.cleanup_interval = 600  # Cleanup every 10 minutes
        self.last_cleanup = time.time()

    def _get_client_key(self, request: Request, current_user: models.Account | None) -> str:
        """
        Key requests by authenticated account, falling back to the client IP.
        Prioritize X-Forwarded-For > request.client.host for the IP.
        """
        if current_user is not None:
            return f"account:{current_user.id}"

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # X-Forwarded-For: <client>, <proxy1>, <proxy2>
            return f"ip:{forwarded_for.split(',')[0].strip()}"

        host = request.client.host if request.client else None
        return f"ip:{host or '127.0.0.1'}"

    async def __call__(
        self,
        request: Request,
        current_user: Annotated[models.Account, Depends(get_current_user)]
    ):
        client_key = self._get_client_key(request, current_user)
        current_time = time.time()

        # Periodic cleanup to prevent memory leaks
        if current_time - self.last_cleanup > self.cleanup_interval:
            self._cleanup(current_time)
            self.last_cleanup = current_time

        # Filter out requests older than the time window
        request_times = [t for t in self.client_requests[client_key] if current_time - t < self.time_window]
        self.client_requests[client_key] = request_times

        if len(request_times) >= self.requests_limit:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later."
            )

        self.client_requests[client_key].append(current_time)
        return True

    def _cleanup(self, current_time: float):
        """Remove entries that haven't made requests recently"""
        stale_keys = []
        for key, timestamps in self.client_requests.items():
            if not timestamps or (current_time - timestamps[-1] > self.time_window):
                stale_keys.append(key)

        for key in stale_keys:
            del self.client_requests[key]


# Note: In a real distributed system, use Redis. For this app, memory is fine.
WRITE_RATE_LIMIT = int(os.environ.get("IMPORT_RATE_LIMIT", "10"))

# Bulk imports replay a whole ledger; keep them rare
import_rate_limiter = RateLimiter(requests_limit=WRITE_RATE_LIMIT, time_window=60)

# Expense create/update calls per account
expense_write_rate_limiter = RateLimiter(requests_limit=WRITE_RATE_LIMIT, time_window=60)
