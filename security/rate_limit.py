import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from security.errors import RateLimitExceeded
from security.settings import SecuritySettings
from stores.base import CounterState, CounterStore, PenaltyStore
from utils.clock import utcnow

logger = logging.getLogger(__name__)

GLOBAL_AUTH_KEY = "auth:global"


def auth_ip_key(ip: str) -> str:
    return f"auth:ip:{ip}"


def api_key(user_id=None, ip: Optional[str] = None) -> str:
    if user_id is not None:
        return f"api:user:{user_id}"
    return f"api:ip:{ip or 'unknown'}"


def progressive_key(subject: str) -> str:
    return f"progressive:{subject}"


def violations_key(subject: str) -> str:
    return f"violations:{subject}"


def sensitive_key(operation: str, subject) -> str:
    return f"sensitive:{operation}:{subject}"


@dataclass(frozen=True)
class LimitResult:
    allowed: bool
    key: str
    limit: int
    remaining: int
    reset_at: Optional[datetime] = None
    retry_after: int = 0
    level: Optional[int] = None

    def to_error(self, message: Optional[str] = None) -> RateLimitExceeded:
        return RateLimitExceeded(retry_after=self.retry_after, limit=self.limit, remaining=self.remaining,
                                 message=message)

    def headers(self) -> dict:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(self.remaining, 0)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        if self.level is not None:
            headers["X-Progressive-Level"] = str(self.level)
        return headers


def _seconds_until(when: datetime, now: datetime) -> int:
    return max(int(math.ceil((when - now).total_seconds())), 1)


class RateLimiter:
    """
    Fixed-window admission control on top of a CounterStore.

    ``check_limit`` consumes a hit; ``peek`` only looks. The login gates are
    checked with ``check_auth_gates`` and charged separately through
    ``record_auth_failure`` so successful logins never use up the budget.
    """

    def __init__(self, counters: CounterStore, penalties: PenaltyStore,
                 settings: Optional[SecuritySettings] = None):
        self.counters = counters
        self.penalties = penalties
        self.settings = settings or SecuritySettings()

    # -- generic -----------------------------------------------------------

    def _denied(self, key: str, limit: int, state: CounterState, now: datetime, level=None) -> LimitResult:
        return LimitResult(
            allowed=False,
            key=key,
            limit=limit,
            remaining=0,
            reset_at=state.window_expires_at,
            retry_after=_seconds_until(state.window_expires_at, now),
            level=level,
        )

    def peek(self, key: str, max_per_window: int, now: Optional[datetime] = None) -> LimitResult:
        now = now or utcnow()
        state = self.counters.get(key, now)
        if state is None:
            return LimitResult(True, key, max_per_window, max_per_window)
        if state.count >= max_per_window:
            return self._denied(key, max_per_window, state, now)
        return LimitResult(True, key, max_per_window, max_per_window - state.count, state.window_expires_at)

    def check_limit(self, key: str, max_per_window: int, window_seconds: int,
                    now: Optional[datetime] = None, level: Optional[int] = None) -> LimitResult:
        now = now or utcnow()
        current = self.counters.get(key, now)
        if current is not None and current.count >= max_per_window:
            return self._denied(key, max_per_window, current, now, level)

        state = self.counters.hit(key, window_seconds, now)
        if state.count > max_per_window:
            # lost a race with concurrent callers
            return self._denied(key, max_per_window, state, now, level)
        return LimitResult(
            allowed=True,
            key=key,
            limit=max_per_window,
            remaining=max_per_window - state.count,
            reset_at=state.window_expires_at,
            level=level,
        )

    def clear(self, key: str) -> None:
        self.counters.clear(key)

    # -- login gates -------------------------------------------------------

    def check_auth_gates(self, ip: str, now: Optional[datetime] = None) -> LimitResult:
        """Per-IP gate first, then the global circuit breaker. Nothing is consumed."""
        now = now or utcnow()
        per_ip = self.peek(auth_ip_key(ip), self.settings.auth_ip_rate_max, now)
        if not per_ip.allowed:
            logger.warning("Auth rate limit hit for ip=%s retry_after=%s", ip, per_ip.retry_after)
            return per_ip

        overall = self.peek(GLOBAL_AUTH_KEY, self.settings.auth_global_rate_max, now)
        if not overall.allowed:
            logger.error("Global auth rate limit hit retry_after=%s", overall.retry_after)
            return overall
        return per_ip

    def record_auth_failure(self, ip: str, now: Optional[datetime] = None) -> None:
        # both gates are charged together on every failed login
        now = now or utcnow()
        window = self.settings.auth_rate_window_seconds
        self.counters.hit(auth_ip_key(ip), window, now)
        self.counters.hit(GLOBAL_AUTH_KEY, window, now)

    # -- general API -------------------------------------------------------

    def check_api_limit(self, user_id=None, ip: Optional[str] = None, now: Optional[datetime] = None) -> LimitResult:
        """Authenticated callers are keyed by account and get the larger quota."""
        if user_id is not None:
            max_per_window = self.settings.api_rate_authenticated_max
        else:
            max_per_window = self.settings.api_rate_anonymous_max
        return self.check_limit(api_key(user_id, ip), max_per_window, self.settings.api_rate_window_seconds, now)

    # -- progressive -------------------------------------------------------

    def progressive_level(self, subject: str, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        state = self.penalties.get(violations_key(subject))
        if state.last_escalated_at is None:
            return 0
        quiet = (now - state.last_escalated_at).total_seconds()
        if quiet > self.settings.progressive_decay_seconds:
            return 0
        return state.level

    def progressive_tier(self, level: int):
        for min_level, max_requests, window in self.settings.progressive_tiers:
            if level >= min_level:
                return max_requests, window
        _, max_requests, window = self.settings.progressive_tiers[-1]
        return max_requests, window

    def apply_progressive_limit(self, subject: str, now: Optional[datetime] = None) -> LimitResult:
        """Repeat offenders get a smaller quota over a longer window."""
        now = now or utcnow()
        level = self.progressive_level(subject, now)
        max_requests, window = self.progressive_tier(level)
        return self.check_limit(progressive_key(subject), max_requests, window, now, level=level)

    def record_violation(self, subject: str, now: Optional[datetime] = None) -> int:
        state = self.penalties.escalate(
            violations_key(subject), now or utcnow(), self.settings.progressive_decay_seconds
        )
        logger.warning("Rate limit violation subject=%s level=%d", subject, state.level)
        return state.level

    def forgive(self, subject: str) -> None:
        """Drop recorded violations and the progressive window for ``subject``."""
        self.penalties.reset(violations_key(subject))
        self.counters.clear(progressive_key(subject))

    # -- sensitive operations ----------------------------------------------

    def sensitive_limit(self, operation: str):
        for name, max_requests, window in self.settings.sensitive_operation_limits:
            if name == operation:
                return max_requests, window
        return self.settings.sensitive_default_limit

    def check_sensitive_operation(self, operation: str, subject, now: Optional[datetime] = None) -> LimitResult:
        """Per-operation quota for one subject, e.g. password changes per account."""
        max_requests, window = self.sensitive_limit(operation)
        result = self.check_limit(sensitive_key(operation, subject), max_requests, window, now)
        if not result.allowed:
            logger.warning("Sensitive operation limit hit operation=%s subject=%s retry_after=%s",
                           operation, subject, result.retry_after)
        return result

    # -- monitoring --------------------------------------------------------

    def status(self, keys: Iterable[str], now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        out = {}
        for key in keys:
            state = self.counters.get(key, now)
            out[key] = {
                "attempts": state.count if state else 0,
                "remaining_time": _seconds_until(state.window_expires_at, now) if state else 0,
            }
        return out
