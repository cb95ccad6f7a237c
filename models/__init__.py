from .db import db
from .user import Account
from .audit_log import AuditLog
from .session import AccessToken
from .login_attempt import LoginAttempt
from .ip_rate_limit import RateLimitCounter, ProgressiveLimitState
