import time
from dataclasses import dataclass, field
from threading import Lock

from fastapi import HTTPException, Request, status

from app.core.config import settings


@dataclass
class _LockoutState:
    failures: list[float] = field(default_factory=list)
    lock_until: float = 0.0


class LoginRateLimiter:
    """Failed-login counter per key with a temporary lockout."""

    def __init__(self, *, max_attempts: int, window_seconds: int, lock_seconds: int):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lock_seconds = lock_seconds
        self._states: dict[str, _LockoutState] = {}
        self._lock = Lock()

    def check(self, key: str) -> int:
        """Returns retry-after seconds when locked out, otherwise 0."""
        now = time.time()
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return 0
            state.failures = _recent(state.failures, now, self.window_seconds)
            if state.lock_until > now:
                return int(state.lock_until - now) + 1
            return 0

    def register_failure(self, key: str) -> None:
        now = time.time()
        with self._lock:
            state = self._states.setdefault(key, _LockoutState())
            state.failures = _recent(state.failures, now, self.window_seconds)
            state.failures.append(now)
            if len(state.failures) >= self.max_attempts:
                state.lock_until = now + self.lock_seconds

    def register_success(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._states.clear()


class SlidingWindowRateLimiter:
    def __init__(self, *, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: dict[str, list[float]] = {}
        self._lock = Lock()

    def check_and_consume(self, key: str) -> int:
        """Consume one request for the key; returns retry-after seconds when over the limit, otherwise 0."""
        now = time.time()
        with self._lock:
            hits = _recent(self._hits.get(key, []), now, self.window_seconds)
            if len(hits) >= self.max_requests:
                self._hits[key] = hits
                return max(int(hits[0] + self.window_seconds - now) + 1, 1)
            hits.append(now)
            self._hits[key] = hits
            return 0

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()


def _recent(timestamps: list[float], now: float, window_seconds: int) -> list[float]:
    cutoff = now - window_seconds
    return [ts for ts in timestamps if ts >= cutoff]


login_rate_limiter = LoginRateLimiter(
    max_attempts=settings.auth_rate_limit_max_attempts,
    window_seconds=settings.auth_rate_limit_window_seconds,
    lock_seconds=settings.auth_rate_limit_lock_seconds,
)

storefront_rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.storefront_public_rate_limit_requests,
    window_seconds=settings.storefront_public_rate_limit_window_seconds,
)


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for", "").strip()
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_storefront_rate_limit(request: Request) -> None:
    """Public storefront endpoints share one budget per client IP."""
    retry_after = storefront_rate_limiter.check_and_consume(client_ip(request))
    if retry_after > 0:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
