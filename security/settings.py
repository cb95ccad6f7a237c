from dataclasses import dataclass, fields
from typing import FrozenSet, Mapping, Tuple

# Deny-list for the password policy. Compared case-insensitively.
DEFAULT_COMMON_PASSWORDS = frozenset({
    "password", "password123", "123456", "12345678", "qwerty", "abc123",
    "password1", "admin", "letmein", "welcome", "123456789", "password@123",
    "pass@123", "admin123", "root", "user", "test", "guest", "1234567890",
})

DEFAULT_BAD_REQUEST_PATTERNS = (
    r"\.\./",
    r"%2e%2e%2f",
    r"/etc/passwd",
    r"/\.env\b",
    r"/\.git/",
    r"wp-admin",
    r"wp-login\.php",
    r"phpmyadmin",
    r"<script",
    r"union\s+select",
)

DEFAULT_BOT_AGENT_PATTERNS = (
    "bot", "crawler", "spider", "scraper", "curl", "wget", "python", "postman",
)

DEFAULT_GENERIC_AGENT_MARKERS = ("test", "unknown", "generic")

# (min violation level, max requests, window seconds), highest level first
DEFAULT_PROGRESSIVE_TIERS = (
    (5, 10, 3600),
    (3, 50, 1800),
    (1, 200, 900),
    (0, 1000, 3600),
)

# (operation, max requests, window seconds)
DEFAULT_SENSITIVE_OPERATION_LIMITS = (
    ("delete_user", 5, 3600),
    ("change_role", 10, 3600),
    ("export_data", 3, 3600),
    ("bulk_operation", 2, 3600),
    ("password_reset", 3, 900),
    ("password_change", 3, 900),
    ("2fa_verification", 5, 900),
    ("admin_action", 20, 3600),
)


@dataclass(frozen=True)
class SecuritySettings:
    """
    Thresholds for lockout, rate limiting and tokens.

    Built from the Flask config with ``from_mapping`` and handed to the
    security components, which never read ``current_app`` themselves.
    """
    # LoginAttemptTracker
    login_max_attempts: int = 5
    login_lockout_minutes: int = 15
    login_alert_email_failures: int = 3
    login_alert_ip_failures: int = 5
    login_attempt_retention_days: int = 30

    # RateLimiter
    auth_ip_rate_max: int = 5
    auth_global_rate_max: int = 1000
    auth_rate_window_seconds: int = 60
    api_rate_authenticated_max: int = 100
    api_rate_anonymous_max: int = 20
    api_rate_window_seconds: int = 60
    progressive_tiers: Tuple[Tuple[int, int, int], ...] = DEFAULT_PROGRESSIVE_TIERS
    progressive_decay_seconds: int = 86400
    sensitive_operation_limits: Tuple[Tuple[str, int, int], ...] = DEFAULT_SENSITIVE_OPERATION_LIMITS
    sensitive_default_limit: Tuple[int, int] = (5, 3600)

    # PasswordStrengthValidator
    common_passwords: FrozenSet[str] = DEFAULT_COMMON_PASSWORDS

    # Credentials and tokens
    bcrypt_rounds: int = 12
    token_lifetime_seconds: int = 8 * 60 * 60

    @classmethod
    def from_mapping(cls, config: Mapping) -> "SecuritySettings":
        return cls(**_pick(cls, config))


@dataclass(frozen=True)
class SuspiciousActivitySettings:
    rapid_max_requests: int = 50
    rapid_window_seconds: int = 300
    rapid_action: str = "block"
    bad_request_patterns: Tuple[str, ...] = DEFAULT_BAD_REQUEST_PATTERNS
    bad_request_action: str = "block"
    bot_agent_patterns: Tuple[str, ...] = DEFAULT_BOT_AGENT_PATTERNS
    generic_agent_markers: Tuple[str, ...] = DEFAULT_GENERIC_AGENT_MARKERS
    min_user_agent_length: int = 20
    unusual_agent_action: str = "flag"
    enabled: bool = True

    @classmethod
    def from_mapping(cls, config: Mapping) -> "SuspiciousActivitySettings":
        return cls(**_pick(cls, config, prefix="SUSPICIOUS_"))


def _pick(settings_cls, config: Mapping, prefix: str = "") -> dict:
    """Collect ``PREFIX_FIELD_NAME`` keys from ``config`` for ``settings_cls``."""
    values = {}
    for f in fields(settings_cls):
        key = prefix + f.name.upper()
        if key not in config or config[key] is None:
            continue
        value = config[key]
        if f.name == "common_passwords":
            value = frozenset(str(p).lower() for p in value)
        elif isinstance(f.default, tuple):
            value = tuple(tuple(v) if isinstance(v, list) else v for v in value)
        elif isinstance(f.default, bool):
            value = bool(value)
        elif isinstance(f.default, int):
            value = int(value)
        values[f.name] = value
    return values
