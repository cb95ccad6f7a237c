import enum
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import unquote

from security.rate_limit import RateLimiter
from security.settings import SuspiciousActivitySettings

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    NONE = "none"
    FLAG = "flag"
    BLOCK = "block"


@dataclass(frozen=True)
class RequestContext:
    ip: str
    user_agent: Optional[str] = None
    method: str = "GET"
    path: str = "/"
    query_string: str = ""
    account_id: Optional[int] = None

    @property
    def fingerprint(self) -> str:
        return self.ip or "unknown"


@dataclass(frozen=True)
class Assessment:
    suspicious: bool
    action: Action = Action.NONE
    reason: Optional[str] = None

    @classmethod
    def clean(cls) -> "Assessment":
        return cls(False)


class SuspiciousActivityDetector:
    """Threshold heuristics over one request. Thresholds come from settings."""

    def __init__(self, limiter: RateLimiter, settings: Optional[SuspiciousActivitySettings] = None):
        self.limiter = limiter
        self.settings = settings or SuspiciousActivitySettings()
        self._bad_patterns = [re.compile(p, re.IGNORECASE) for p in self.settings.bad_request_patterns]

    def assess(self, request: RequestContext, now: Optional[datetime] = None) -> Assessment:
        s = self.settings
        if not s.enabled:
            return Assessment.clean()

        target = request.path + ("?" + request.query_string if request.query_string else "")
        if self._matches_bad_pattern(target):
            return self._verdict("malicious_pattern", s.bad_request_action, request)

        rapid = self.limiter.check_limit(
            f"rapid:{request.fingerprint}", s.rapid_max_requests, s.rapid_window_seconds, now
        )
        if not rapid.allowed:
            return self._verdict("rapid_requests", s.rapid_action, request)

        if self.is_unusual_user_agent(request.user_agent):
            return self._verdict("unusual_user_agent", s.unusual_agent_action, request)

        return Assessment.clean()

    def _matches_bad_pattern(self, target: str) -> bool:
        decoded = unquote(target)
        return any(p.search(target) or p.search(decoded) for p in self._bad_patterns)

    def is_unusual_user_agent(self, user_agent: Optional[str]) -> bool:
        if not user_agent:
            return True
        lowered = user_agent.lower()
        if any(marker in lowered for marker in self.settings.bot_agent_patterns):
            return True
        if len(user_agent) < self.settings.min_user_agent_length:
            return True
        return any(marker in lowered for marker in self.settings.generic_agent_markers)

    def _verdict(self, reason: str, action: str, request: RequestContext) -> Assessment:
        action = Action(action)
        if action is Action.NONE:
            return Assessment.clean()
        logger.warning("Suspicious request reason=%s action=%s ip=%s path=%s",
                       reason, action.value, request.ip, request.path)
        return Assessment(True, action, reason)
