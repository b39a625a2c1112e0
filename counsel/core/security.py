"""Bearer-key authentication, per-key rate limiting and client IP pinning."""

import asyncio
import hashlib
import hmac
import ipaddress
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Union

import structlog
from fastapi import Request, Response

from .config import Settings
from .errors import (
    AuthenticationError,
    ErrorCode,
    ForbiddenError,
    RateLimitError,
    ServiceUnavailableError,
)

logger = structlog.get_logger()

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclass
class RateLimitStatus:
    """Outcome of a single rate limit check."""
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """In-process sliding window limiter keyed by API key fingerprint."""

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    async def hit(self, key: str) -> RateLimitStatus:
        """Record a request for ``key`` unless it would exceed the limit."""
        async with self._lock:
            return self._evaluate(key, record=True)

    async def check(self, key: str) -> RateLimitStatus:
        """Report the state of ``key`` without recording a request."""
        async with self._lock:
            return self._evaluate(key, record=False)

    @property
    def active_keys(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()

    def _evaluate(self, key: str, record: bool) -> RateLimitStatus:
        now = self._clock()
        window_start = now - self.window_seconds
        self._sweep(now, window_start)

        hits = self._hits.get(key)
        if hits is not None:
            while hits and hits[0] <= window_start:
                hits.popleft()
            if not hits:
                del self._hits[key]
                hits = None
        count = len(hits) if hits else 0

        if count >= self.max_requests:
            retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
            return RateLimitStatus(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                retry_after=retry_after,
            )

        if record:
            self._hits.setdefault(key, deque()).append(now)
            count += 1
        return RateLimitStatus(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests - count,
        )

    def _sweep(self, now: float, window_start: float) -> None:
        # Drop idle buckets at most once per window
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= window_start]:
            del self._hits[key]


def parse_networks(entries: List[str]) -> List[IPNetwork]:
    """Parse exact addresses and CIDR blocks into networks."""
    networks = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("Ignoring invalid allowed IP entry", entry=entry)
    return networks


def is_public_address(address: str) -> bool:
    """True for globally routable unicast addresses.

    Loopback, link-local, private, shared, reserved and multicast ranges are
    rejected, as are values that are not IP addresses at all.
    """
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip.is_global and not ip.is_multicast


def key_fingerprint(api_key: str) -> str:
    """Short stable identifier for logging and rate limit buckets."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:12]


class APIKeyGuard:
    """FastAPI dependency enforcing the ``Authorization: Bearer <API_KEY>`` convention."""

    def __init__(self, settings: Settings, limiter: Optional[SlidingWindowRateLimiter] = None):
        self.settings = settings
        self.api_keys = settings.get_api_keys()
        self.allowed_networks = parse_networks(settings.get_allowed_ips())
        self.limiter = limiter or SlidingWindowRateLimiter(
            settings.rate_limit_requests,
            settings.rate_limit_window_seconds,
        )
        self.failure_limiter = SlidingWindowRateLimiter(
            settings.auth_failure_limit,
            settings.rate_limit_window_seconds,
        )

        if not self.api_keys:
            if settings.is_production:
                logger.error("No API keys configured - protected endpoints will refuse requests")
            else:
                logger.warning("No API keys configured - authentication disabled outside production")

    async def __call__(self, request: Request, response: Response) -> str:
        self._check_client_ip(request)
        host = self._client_host(request) or "unknown"

        # Hosts that keep presenting bad keys are locked out for the window
        failures = f"auth-failures:{host}"
        if self.api_keys:
            lockout = await self.failure_limiter.check(failures)
            if not lockout.allowed:
                logger.warning("Authentication locked out", client=host, retry_after=lockout.retry_after)
                raise RateLimitError(
                    "Too many failed authentication attempts",
                    retry_after=lockout.retry_after,
                    limit=lockout.limit,
                )
        try:
            api_key = self._authenticate(request)
        except AuthenticationError:
            await self.failure_limiter.hit(failures)
            raise

        bucket = key_fingerprint(api_key) if api_key else f"anon:{host}"
        result = await self.limiter.hit(bucket)
        if not result.allowed:
            logger.warning("Rate limit exceeded", key=bucket, retry_after=result.retry_after)
            raise RateLimitError(
                f"Rate limit of {result.limit} requests per "
                f"{self.settings.rate_limit_window_seconds}s exceeded",
                retry_after=result.retry_after,
                limit=result.limit,
            )

        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        request.state.api_key_id = bucket
        return bucket

    def _authenticate(self, request: Request) -> Optional[str]:
        if not self.api_keys:
            if self.settings.is_production:
                raise ServiceUnavailableError(
                    "API keys are not configured on this server",
                    code=ErrorCode.AUTH_NOT_CONFIGURED,
                )
            return None

        header = request.headers.get("Authorization")
        if not header:
            raise AuthenticationError("Missing Authorization header")

        scheme, _, token = header.partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise AuthenticationError(
                "Authorization header must use the Bearer scheme",
                code=ErrorCode.INVALID_TOKEN,
            )

        # Check every key so timing does not reveal which one matched
        matched = False
        for candidate in self.api_keys:
            if hmac.compare_digest(candidate.encode("utf-8"), token.encode("utf-8")):
                matched = True
        if not matched:
            raise AuthenticationError("Invalid API key", code=ErrorCode.INVALID_TOKEN)
        return token

    def _check_client_ip(self, request: Request) -> None:
        if not self.allowed_networks:
            return
        host = self._client_host(request)
        try:
            address = ipaddress.ip_address(host) if host else None
        except ValueError:
            address = None
        if address is None or not any(address in network for network in self.allowed_networks):
            raise ForbiddenError(f"Client address {host or 'unknown'} is not allowed")

    @staticmethod
    def _client_host(request: Request) -> Optional[str]:
        return request.client.host if request.client else None


async def require_api_key(request: Request, response: Response) -> str:
    """Dependency resolving the guard stored on the application."""
    guard: APIKeyGuard = request.app.state.api_key_guard
    return await guard(request, response)
