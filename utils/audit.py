import logging
from typing import Optional

from stores.base import AuditEvent, AuditSink
from utils.clock import utcnow

security_log = logging.getLogger("security.audit")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "alert": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


class AuditLogger:
    """
    Fire-and-forget audit trail.

    Every event goes to the ``security.audit`` logger and to the sink. A sink
    failure is logged and dropped: auditing never fails the request it
    describes.
    """

    def __init__(self, sink: AuditSink):
        self.sink = sink

    def log_event(self, event: str, subject=None, severity: str = "info", realm: Optional[str] = None,
                  ip: Optional[str] = None, user_agent: Optional[str] = None, metadata: Optional[dict] = None,
                  timestamp=None) -> None:
        record = AuditEvent(
            event=event,
            subject=str(subject) if subject is not None else None,
            severity=severity,
            realm=realm,
            ip=ip,
            user_agent=user_agent,
            context=dict(metadata or {}),
            timestamp=timestamp or utcnow(),
        )
        security_log.log(
            _LEVELS.get(severity, logging.INFO),
            "%s subject=%s realm=%s ip=%s %s",
            event, record.subject, realm, ip, record.context,
        )
        try:
            self.sink.write(record)
        except Exception:
            security_log.warning("Audit sink rejected %s event", event, exc_info=True)
