"""
Bearer-token identity and per-client rate limiting
"""

import logging
import math
import threading
import time
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException, Depends, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from guestlist.core.config import settings

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60


class RateLimiter:
    """Sliding-window request counter per client.

    Sync handlers run on a thread pool, so every read-modify-write happens
    under one lock. Clients with nothing left in the window are dropped on a
    sweep at most once per window.
    """

    def __init__(self, window_seconds: int = RATE_WINDOW_SECONDS):
        self.window_seconds = window_seconds
        self.requests: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()
        self._last_sweep = 0.0

    def check(self, client_ip: str, limit: int, now: Optional[float] = None) -> Tuple[bool, int]:
        """Record a request if allowed; returns (allowed, retry_after seconds)."""
        now = time.time() if now is None else now
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            recent = [t for t in self.requests.get(client_ip, ()) if now - t < self.window_seconds]
            if len(recent) >= limit:
                self.requests[client_ip] = recent
                retry_after = max(1, math.ceil(recent[0] + self.window_seconds - now))
                return False, retry_after

            recent.append(now)
            self.requests[client_ip] = recent
            return True, 0

    def _sweep(self, now: float) -> None:
        stale = [ip for ip, times in self.requests.items() if not times or now - times[-1] >= self.window_seconds]
        for ip in stale:
            del self.requests[ip]
        self._last_sweep = now
        if stale:
            logger.debug("Rate limiter dropped %d idle clients", len(stale))

    def __len__(self) -> int:
        with self._lock:
            return len(self.requests)

    def __contains__(self, client_ip: str) -> bool:
        with self._lock:
            return client_ip in self.requests

    def clear(self) -> None:
        with self._lock:
            self.requests.clear()
            self._last_sweep = 0.0


rate_limiter = RateLimiter()

security = HTTPBearer()

def verify_admin_token(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Only the admin token may use admin routes"""
    if credentials.credentials != settings.ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token"
        )
    return credentials.credentials

def get_current_usher(credentials: HTTPAuthorizationCredentials = Depends(security)) -> str:
    """Resolve the bearer token to the acting usher's name.

    The name is handed to the services as `performed_by`; they never look it
    up themselves.
    """
    token = credentials.credentials
    if token == settings.ADMIN_TOKEN:
        return settings.ADMIN_USERNAME

    usher = settings.USHER_TOKENS.get(token)
    if not usher:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid usher token"
        )
    return usher

def rate_limit_check(client_ip: str, limit: int = None) -> Tuple[bool, int]:
    """Sliding one-minute window per client.

    Returns whether the request is allowed and, when it is not, how many
    seconds until the oldest request leaves the window.
    """
    if limit is None:
        limit = settings.RATE_LIMIT_PER_MINUTE
    return rate_limiter.check(client_ip, limit)

def get_client_ip(request: Request) -> str:
    """Client address, preferring reverse proxy headers"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")

def enforce_rate_limit(request: Request) -> None:
    """Dependency rejecting clients over the per-minute limit"""
    client_ip = get_client_ip(request)
    allowed, retry_after = rate_limit_check(client_ip)
    if not allowed:
        logger.warning("Rate limit exceeded for %s on %s", client_ip, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)}
        )
