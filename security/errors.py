from typing import Optional


class AuthError(Exception):
    """
    Base of the authentication error taxonomy.

    Instances are returned inside results for expected denials and raised
    only for infrastructure failures (StoreUnavailable). Every member knows
    how it is surfaced over HTTP.
    """
    code = "AUTH_ERROR"
    http_status = 400
    default_message = "Authentication error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidCredentials(AuthError):
    # unknown email and wrong password share this on purpose
    code = "INVALID_CREDENTIALS"
    http_status = 401
    default_message = "Invalid credentials"


class AccountLocked(AuthError):
    code = "ACCOUNT_LOCKED"
    http_status = 429
    default_message = "Too many failed login attempts. Please try again later."

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = max(int(retry_after), 1)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


class AccountInactive(AuthError):
    code = "ACCOUNT_INACTIVE"
    http_status = 403
    default_message = "Account is not active"


class RateLimitExceeded(AuthError):
    code = "RATE_LIMIT_EXCEEDED"
    http_status = 429
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(self, retry_after: int, limit: int, remaining: int = 0, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = max(int(retry_after), 1)
        self.limit = limit
        self.remaining = remaining

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(retry_after=self.retry_after, limit=self.limit, remaining=self.remaining)
        return data


class StoreUnavailable(AuthError):
    """Transient infrastructure failure; callers should retry."""
    code = "STORE_UNAVAILABLE"
    http_status = 503
    default_message = "Service temporarily unavailable. Please retry."


class ValidationFailed(AuthError):
    code = "VALIDATION_FAILED"
    http_status = 422
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, rule: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.rule = rule
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.rule:
            data["rule"] = self.rule
        if self.field:
            data["field"] = self.field
        return data
