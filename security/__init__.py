from dataclasses import dataclass
from typing import Mapping

from security.authentication import AuthenticationCore
from security.bruteforce import LoginAttemptTracker
from security.rate_limit import RateLimiter
from security.settings import SecuritySettings, SuspiciousActivitySettings
from security.suspicious import SuspiciousActivityDetector
from stores import StoreBundle
from utils.audit import AuditLogger


@dataclass
class SecurityServices:
    settings: SecuritySettings
    stores: StoreBundle
    audit: AuditLogger
    tracker: LoginAttemptTracker
    limiter: RateLimiter
    detector: SuspiciousActivityDetector
    auth: AuthenticationCore


def build_services(config: Mapping, stores: StoreBundle) -> SecurityServices:
    settings = SecuritySettings.from_mapping(config)
    audit = AuditLogger(stores.audit)
    tracker = LoginAttemptTracker(stores.attempts, settings)
    limiter = RateLimiter(stores.counters, stores.penalties, settings)
    detector = SuspiciousActivityDetector(limiter, SuspiciousActivitySettings.from_mapping(config))
    auth = AuthenticationCore(stores.credentials, tracker, stores.tokens, audit, settings, limiter)
    return SecurityServices(settings, stores, audit, tracker, limiter, detector, auth)
