"""In-memory token-bucket rate limiting for API routes."""
from __future__ import annotations

import asyncio
import time
from typing import Dict, Tuple

from fastapi import HTTPException, Request, status


class RateLimiter:
    """Per-key bucket refilled continuously up to ``max_per_minute`` tokens.

    State lives in the process, so limits are per API worker.
    """

    def __init__(self, max_per_minute: int) -> None:
        self.max_per_minute = max_per_minute
        self._allowance: Dict[str, Tuple[float, float]] = {}
        self._lock = asyncio.Lock()

    async def check(self, key: str) -> None:
        now = time.monotonic()
        async with self._lock:
            current, last_refill = self._allowance.get(key, (float(self.max_per_minute), now))
            current = min(float(self.max_per_minute), current + (now - last_refill) / 60 * self.max_per_minute)
            if current < 1:
                self._allowance[key] = (current, now)
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail="Rate limit exceeded. Please try again shortly.",
                )
            self._allowance[key] = (current - 1, now)

    def reset(self) -> None:
        self._allowance.clear()


def create_rate_limiter(max_per_minute: int) -> RateLimiter:
    return RateLimiter(max_per_minute=max_per_minute)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
