import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from stores.base import AttemptRecord, AttemptScope, AttemptStore
from security.settings import SecuritySettings
from utils.clock import utcnow

logger = logging.getLogger(__name__)


class LoginAttemptTracker:
    """
    Lockout decisions derived from the append-only login attempt log.

    Nothing is ever reset: failures age out of the trailing window on their
    own, so a lockout is purely a function of what has been recorded.
    """

    def __init__(self, store: AttemptStore, settings: Optional[SecuritySettings] = None):
        self.store = store
        self.settings = settings or SecuritySettings()

    def record(self, email: str, ip: str, user_agent: str = "", user_id: Optional[int] = None,
               success: bool = False, attempted_at: Optional[datetime] = None) -> AttemptRecord:
        attempt = AttemptRecord(
            email=email,
            ip_address=ip,
            user_agent=user_agent or "",
            success=success,
            attempted_at=attempted_at or utcnow(),
            user_id=user_id,
        )
        self.store.append(attempt)

        if success:
            logger.info("Successful login attempt email=%s ip=%s", email, ip)
            return attempt

        logger.warning("Failed login attempt email=%s ip=%s", email, ip)
        window = self.settings.login_lockout_minutes
        email_failures = self.count_recent_failures(AttemptScope.EMAIL, email, window, now=attempt.attempted_at)
        ip_failures = self.count_recent_failures(AttemptScope.IP, ip, window, now=attempt.attempted_at)
        if email_failures >= self.settings.login_alert_email_failures or \
                ip_failures >= self.settings.login_alert_ip_failures:
            logger.critical(
                "Multiple failed login attempts detected email=%s ip=%s email_failures=%d ip_failures=%d",
                email, ip, email_failures, ip_failures,
            )
        return attempt

    def count_recent_failures(self, scope: AttemptScope, value: str, window_minutes: int,
                              now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        return self.store.count_failures(AttemptScope(scope), value, now - timedelta(minutes=window_minutes), now)

    def is_locked_out(self, email: str, ip: str, max_attempts: Optional[int] = None,
                      window_minutes: Optional[int] = None, now: Optional[datetime] = None) -> bool:
        if max_attempts is None:
            max_attempts = self.settings.login_max_attempts
        if window_minutes is None:
            window_minutes = self.settings.login_lockout_minutes
        now = now or utcnow()

        # OR, not AND: one IP spraying many emails and many IPs hammering one
        # email are both caught
        if self.count_recent_failures(AttemptScope.EMAIL, email, window_minutes, now) >= max_attempts:
            return True
        return self.count_recent_failures(AttemptScope.IP, ip, window_minutes, now) >= max_attempts

    def time_remaining(self, email: str, ip: str, max_attempts: Optional[int] = None,
                       window_minutes: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """
        Seconds until every locked scope drops back under ``max_attempts``.

        For a scope with ``n >= max_attempts`` failures in the window, the
        lock lifts once the ``n - max_attempts + 1`` oldest have aged out, i.e.
        when failure number ``n - max_attempts`` (0-based) leaves the window.
        """
        if max_attempts is None:
            max_attempts = self.settings.login_max_attempts
        if window_minutes is None:
            window_minutes = self.settings.login_lockout_minutes
        now = now or utcnow()
        window = timedelta(minutes=window_minutes)

        remaining = 0.0
        for scope, value in ((AttemptScope.EMAIL, email), (AttemptScope.IP, ip)):
            times = self.store.failure_times(scope, value, now - window, now)
            if len(times) < max_attempts:
                continue
            releases_at = times[len(times) - max_attempts] + window
            remaining = max(remaining, (releases_at - now).total_seconds())

        return int(math.ceil(remaining)) if remaining > 0 else 0

    def prune(self, days_to_keep: Optional[int] = None, now: Optional[datetime] = None) -> int:
        days_to_keep = days_to_keep if days_to_keep is not None else self.settings.login_attempt_retention_days
        cutoff = (now or utcnow()) - timedelta(days=days_to_keep)
        deleted = self.store.delete_before(cutoff)
        logger.info("Pruned %d login attempts older than %s", deleted, cutoff.isoformat())
        return deleted

    def statistics(self, days: int = 7, now: Optional[datetime] = None) -> dict:
        since = _start_of_day((now or utcnow()) - timedelta(days=days))
        stats = self.store.summary(since)
        total = stats["total_attempts"]
        successful = stats["successful_attempts"]
        return {
            "period_days": days,
            "total_attempts": total,
            "successful_attempts": successful,
            "failed_attempts": total - successful,
            "success_rate": round(successful / total * 100, 2) if total else 0,
            "unique_emails": stats["unique_emails"],
            "unique_ips": stats["unique_ips"],
        }

    def top_failed_ips(self, limit: int = 10, days: int = 7, now: Optional[datetime] = None) -> list:
        since = _start_of_day((now or utcnow()) - timedelta(days=days))
        return self.store.top_failed_ips(since, limit)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
