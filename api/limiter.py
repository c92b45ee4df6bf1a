"""
api/limiter.py -- Fixed-window request throttling per (rate class, client).

Each route opts into one rate class through the rate_limit() dependency:

    @router.post("/auth/login", dependencies=[Depends(rate_limit(RateLimitClass.auth))])

Classes and budgets (per client address, 15-minute windows):
  auth            10  register, login, resend-verification
  password_reset   3  forgot-password, reset-password
  contact          5  contact form

Every route in a class charges the same counter, so the budget is shared
across those routes (slowapi's shared_limit scope, keyed by class name).

Counting is slowapi's: each FixedWindowRateLimiter owns a slowapi Limiter
with the "fixed-window" strategy over limits' in-memory storage. A window
starts at the first hit, the request is rejected once the count exceeds the
budget (rejected hits still count) and the storage drops the counter when
the window expires. Nothing here keeps its own window bookkeeping.

The limiter is an explicit object on app.state.rate_limiter, built in
api/main.py and replaced with a fresh instance per test. State is
process-local and lost on restart.

A rejected request raises slowapi's RateLimitExceeded; api/main.py maps it
to the ThrottledError envelope with Retry-After and X-RateLimit-* headers.

The client key comes from slowapi's get_remote_address (the socket peer
address). Run behind a proxy only with uvicorn's --proxy-headers so that
address is the real client.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from fastapi import Request, Response
from limits import RateLimitItem, parse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from slowapi.wrappers import Limit

logger = logging.getLogger("whiskeycanon.api.limiter")


class RateLimitClass(str, Enum):
    auth = "auth"
    password_reset = "password_reset"
    contact = "contact"


DEFAULT_LIMITS: dict[RateLimitClass, str] = {
    RateLimitClass.auth: "10/15 minutes",
    RateLimitClass.password_reset: "3/15 minutes",
    RateLimitClass.contact: "5/15 minutes",
}


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float  # seconds until the current window ends

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_after)),
        }


class FixedWindowRateLimiter:
    """Per-class budgets on top of one slowapi Limiter.

    `limits` maps each class to a limits rate string ("10/15 minutes").
    """

    def __init__(
        self,
        limits: dict[RateLimitClass, str] | None = None,
        storage_uri: str = "memory://",
    ) -> None:
        self.backend = Limiter(key_func=get_remote_address, storage_uri=storage_uri, strategy="fixed-window")
        self.items: dict[RateLimitClass, RateLimitItem] = {
            rate_class: parse(value) for rate_class, value in {**DEFAULT_LIMITS, **(limits or {})}.items()
        }

    def hit(self, rate_class: RateLimitClass, client: str) -> RateLimitResult:
        """Record one request and report whether it is within budget."""
        item = self.items[rate_class]
        allowed = self.backend.limiter.hit(item, rate_class.value, client)
        reset_time, remaining = self.backend.limiter.get_window_stats(item, rate_class.value, client)
        return RateLimitResult(
            allowed=allowed,
            limit=item.amount,
            remaining=remaining,
            reset_after=max(0.0, reset_time - time.time()),
        )

    def allow(self, rate_class: RateLimitClass, client: str) -> bool:
        return self.hit(rate_class, client).allowed

    def reset(self) -> None:
        self.backend.reset()

    def limit_for(self, rate_class: RateLimitClass) -> Limit:
        """The slowapi Limit describing `rate_class`, as carried by RateLimitExceeded."""
        return Limit(
            limit=self.items[rate_class],
            key_func=get_remote_address,
            scope=rate_class.value,
            per_method=False,
            methods=None,
            error_message=None,
            exempt_when=None,
            cost=1,
            override_defaults=False,
        )


def rate_limit(rate_class: RateLimitClass) -> Callable[[Request, Response], None]:
    """Build a FastAPI dependency that charges one hit against `rate_class`.

    The X-RateLimit-* headers go on the response when the request is admitted
    and onto request.state for the 429 handler when it is not.
    """

    def _dependency(request: Request, response: Response) -> None:
        limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
        client = get_remote_address(request)
        result = limiter.hit(rate_class, client)

        request.state.rate_limit_headers = result.headers
        if not result.allowed:
            logger.warning("Rate limit exceeded: class=%s client=%s", rate_class.value, client)
            raise RateLimitExceeded(limiter.limit_for(rate_class))
        response.headers.update(result.headers)

    return _dependency
