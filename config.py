import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _list(name: str):
    raw = os.getenv(name)
    if not raw:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


def engine_options(database_uri: str, timeout: int) -> dict:
    """Every store call must give up after ``timeout`` seconds instead of hanging."""
    if database_uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout}}
    options = {"pool_pre_ping": True, "pool_timeout": timeout}
    if database_uri.startswith("postgresql"):
        options["connect_args"] = {
            "connect_timeout": timeout,
            "options": f"-c statement_timeout={timeout * 1000}",
        }
    elif database_uri.startswith("mysql"):
        options["connect_args"] = {"connect_timeout": timeout}
    return options


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as tenantauth.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "tenantauth.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # External store timeout (seconds), applied to the DB engine
    STORE_TIMEOUT_SECONDS = _int("STORE_TIMEOUT_SECONDS", 5)
    SQLALCHEMY_ENGINE_OPTIONS = engine_options(SQLALCHEMY_DATABASE_URI, STORE_TIMEOUT_SECONDS)

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Number of reverse proxies whose X-Forwarded-For entry is trusted (0 = use the socket address)
    PROXY_FIX_X_FOR = _int("PROXY_FIX_X_FOR", 0)

    # Lockout: 5 failures per email or per IP within 15 minutes
    LOGIN_MAX_ATTEMPTS = _int("LOGIN_MAX_ATTEMPTS", 5)
    LOGIN_LOCKOUT_MINUTES = _int("LOGIN_LOCKOUT_MINUTES", 15)
    LOGIN_ATTEMPT_RETENTION_DAYS = _int("LOGIN_ATTEMPT_RETENTION_DAYS", 30)

    # Login gates, charged only by failed logins
    AUTH_IP_RATE_MAX = _int("AUTH_IP_RATE_MAX", 5)
    AUTH_GLOBAL_RATE_MAX = _int("AUTH_GLOBAL_RATE_MAX", 1000)
    AUTH_RATE_WINDOW_SECONDS = _int("AUTH_RATE_WINDOW_SECONDS", 60)

    # General API quota per minute
    API_RATE_AUTHENTICATED_MAX = _int("API_RATE_AUTHENTICATED_MAX", 100)
    API_RATE_ANONYMOUS_MAX = _int("API_RATE_ANONYMOUS_MAX", 20)
    API_RATE_WINDOW_SECONDS = _int("API_RATE_WINDOW_SECONDS", 60)

    # Progressive limits forget violations after a quiet day
    PROGRESSIVE_DECAY_SECONDS = _int("PROGRESSIVE_DECAY_SECONDS", 86400)

    # Password policy deny-list override (comma separated); None keeps the built-in list
    COMMON_PASSWORDS = _list("COMMON_PASSWORDS")
    BCRYPT_ROUNDS = _int("BCRYPT_ROUNDS", 12)

    # 8 hours token lifetime
    TOKEN_LIFETIME_SECONDS = _int("TOKEN_LIFETIME_SECONDS", 8 * 60 * 60)

    # Suspicious activity heuristics
    SUSPICIOUS_ENABLED = os.getenv("SUSPICIOUS_ENABLED", "true").lower() == "true"
    SUSPICIOUS_RAPID_MAX_REQUESTS = _int("SUSPICIOUS_RAPID_MAX_REQUESTS", 50)
    SUSPICIOUS_RAPID_WINDOW_SECONDS = _int("SUSPICIOUS_RAPID_WINDOW_SECONDS", 300)
    SUSPICIOUS_RAPID_ACTION = os.getenv("SUSPICIOUS_RAPID_ACTION", "block")
    SUSPICIOUS_BAD_REQUEST_ACTION = os.getenv("SUSPICIOUS_BAD_REQUEST_ACTION", "block")
    SUSPICIOUS_UNUSUAL_AGENT_ACTION = os.getenv("SUSPICIOUS_UNUSUAL_AGENT_ACTION", "flag")
    SUSPICIOUS_MIN_USER_AGENT_LENGTH = _int("SUSPICIOUS_MIN_USER_AGENT_LENGTH", 20)

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    BCRYPT_ROUNDS = 4
    LOG_LEVEL = "WARNING"
    # the test client plays the single proxy in front of the app
    PROXY_FIX_X_FOR = 1
