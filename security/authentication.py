"""
Authentication core.

One login walks through

    Start -> LockoutCheck -> CredentialVerify -> Success | Failure
          -> AttemptRecorded -> TokenIssued (success only)

and always ends in an ``AuthResult``. Expected denials come back as members
of the error taxonomy in ``result.error``; store outages and anything
unexpected are turned into ``StoreUnavailable`` so callers never see a raw
exception.
"""
import enum
import functools
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from security.bruteforce import LoginAttemptTracker
from security.context import AccountStatus, AuthContext
from security.errors import (
    AccountInactive,
    AccountLocked,
    AuthError,
    InvalidCredentials,
    StoreUnavailable,
    ValidationFailed,
)
from security.password import hash_password, verify_password
from security.password_policy import validate_password
from security.rate_limit import RateLimiter
from security.settings import SecuritySettings
from security.tokens import DEFAULT_ABILITIES, namespaced_abilities
from stores.base import AccountRecord, CredentialStore, IssuedToken, TokenIssuer, TokenRecord
from utils.audit import AuditLogger
from utils.clock import utcnow

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class LoginState(str, enum.Enum):
    START = "start"
    LOCKOUT_CHECK = "lockout_check"
    CREDENTIAL_VERIFY = "credential_verify"
    SUCCESS = "success"
    FAILURE = "failure"
    ATTEMPT_RECORDED = "attempt_recorded"
    TOKEN_ISSUED = "token_issued"


@dataclass
class AuthResult:
    success: bool
    account: Optional[AccountRecord] = None
    token: Optional[IssuedToken] = None
    error: Optional[AuthError] = None
    state: LoginState = LoginState.START

    @classmethod
    def failed(cls, error: AuthError, state: LoginState = LoginState.FAILURE) -> "AuthResult":
        return cls(False, error=error, state=state)


def normalize_email(value) -> str:
    return (value or "").strip().lower() if isinstance(value, str) else ""


def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and len(email) <= 255 and bool(_EMAIL.match(email))


def _never_raises(method):
    """Turn store outages and unexpected errors into a failed AuthResult."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except StoreUnavailable as exc:
            logger.error("%s aborted: store unavailable", method.__name__)
            return AuthResult.failed(exc)
        except Exception:
            logger.exception("%s failed unexpectedly", method.__name__)
            return AuthResult.failed(StoreUnavailable())

    return wrapper


class AuthenticationCore:
    def __init__(self, credentials: CredentialStore, tracker: LoginAttemptTracker, tokens: TokenIssuer,
                 audit: AuditLogger, settings: Optional[SecuritySettings] = None,
                 limiter: Optional[RateLimiter] = None):
        self.credentials = credentials
        self.tracker = tracker
        self.tokens = tokens
        self.audit = audit
        self.settings = settings or SecuritySettings()
        self.limiter = limiter

    # -- login -------------------------------------------------------------

    @_never_raises
    def authenticate(self, email: str, password: str, context: AuthContext, ip: str, user_agent: str = "",
                     now: Optional[datetime] = None, token_name: str = "session",
                     abilities: Iterable[str] = DEFAULT_ABILITIES) -> AuthResult:
        now = now or utcnow()
        where = {"realm": context.realm, "ip": ip, "user_agent": user_agent}

        if self.tracker.is_locked_out(email, ip, now=now):
            retry_after = self.tracker.time_remaining(email, ip, now=now)
            # rejected before verification: audited, not recorded as a failure
            self.audit.log_event("login_locked", subject=email, severity="warning",
                                 metadata={"reason": "account_locked", "retry_after": retry_after}, **where)
            return AuthResult.failed(AccountLocked(retry_after), LoginState.LOCKOUT_CHECK)

        account = self.credentials.find_by_email(email, context.realm)
        if account is not None and account.status is AccountStatus.DELETED:
            account = None

        # unknown accounts still pay for a bcrypt comparison
        if not verify_password(password, account.password_hash if account else None, self.settings.bcrypt_rounds):
            return self._reject(InvalidCredentials(), "invalid_credentials", email, account, now, where)

        if not account.is_active:
            return self._reject(AccountInactive(), "account_inactive", email, account, now, where)

        self.credentials.touch_last_login(account.id, now)
        self.tracker.record(email, ip, user_agent, user_id=account.id, success=True, attempted_at=now)
        token = self._issue(account, context, token_name, abilities, now)

        self.audit.log_event("login_success", subject=account.id,
                             metadata={"email": email, "token_id": token.record.id}, **where)
        return AuthResult(True, account=account, token=token, state=LoginState.TOKEN_ISSUED)

    def _reject(self, error: AuthError, reason: str, email: str, account: Optional[AccountRecord],
                now: datetime, where: dict) -> AuthResult:
        self.tracker.record(email, where["ip"], where["user_agent"],
                            user_id=account.id if account else None, success=False, attempted_at=now)
        self.audit.log_event("login_failed", subject=email, severity="warning",
                             metadata={"reason": reason}, **where)
        return AuthResult.failed(error, LoginState.ATTEMPT_RECORDED)

    def _issue(self, account: AccountRecord, context: AuthContext, name: str,
               abilities: Iterable[str], now: datetime) -> IssuedToken:
        lifetime = self.settings.token_lifetime_seconds
        expires_at = now + timedelta(seconds=lifetime) if lifetime else None
        return self.tokens.issue(account, context, namespaced_abilities(context, abilities),
                                 name=name, expires_at=expires_at)

    # -- account flows -----------------------------------------------------

    def check_new_password(self, password) -> None:
        check = validate_password(password, self.settings.common_passwords)
        if not check.ok:
            raise ValidationFailed(check.message, rule=check.rule.value, field="password")

    @_never_raises
    def register(self, email: str, password: str, context: AuthContext, role: str = "member",
                 ip: Optional[str] = None, user_agent: Optional[str] = None,
                 now: Optional[datetime] = None, issue_token: bool = True) -> AuthResult:
        now = now or utcnow()
        where = {"realm": context.realm, "ip": ip, "user_agent": user_agent}

        try:
            if not is_valid_email(email):
                raise ValidationFailed("Invalid email", rule="email", field="email")
            self.check_new_password(password)
            if self.credentials.find_by_email(email, context.realm) is not None:
                raise ValidationFailed("Email already registered", rule="unique", field="email")
            try:
                account = self.credentials.create(
                    context.realm, email, hash_password(password, self.settings.bcrypt_rounds), role
                )
            except ValueError as exc:
                raise ValidationFailed("Email already registered", rule="unique", field="email") from exc
        except ValidationFailed as exc:
            self.audit.log_event("register_failed", subject=email, severity="notice",
                                 metadata={"rule": exc.rule}, **where)
            return AuthResult.failed(exc)

        token = self._issue(account, context, "registration", DEFAULT_ABILITIES, now) if issue_token else None
        self.audit.log_event("register_success", subject=account.id, metadata={"role": role}, **where)
        return AuthResult(True, account=account, token=token,
                          state=LoginState.TOKEN_ISSUED if token else LoginState.SUCCESS)

    @_never_raises
    def change_password(self, account_id: int, current_password: str, new_password: str, context: AuthContext,
                        current_token_id: Optional[int] = None, ip: Optional[str] = None,
                        user_agent: Optional[str] = None, now: Optional[datetime] = None) -> AuthResult:
        now = now or utcnow()
        where = {"realm": context.realm, "ip": ip, "user_agent": user_agent}

        account = self.credentials.get(account_id)
        if account is None or account.realm != context.realm or not account.is_active:
            return AuthResult.failed(InvalidCredentials())

        if self.limiter is not None:
            quota = self.limiter.check_sensitive_operation("password_change", account.id, now)
            if not quota.allowed:
                self.audit.log_event("rate_limit_exceeded", subject=account.id, severity="warning",
                                     metadata={"gate": "password_change", "retry_after": quota.retry_after},
                                     **where)
                return AuthResult.failed(quota.to_error("Too many password changes. Please try again later."))

        if not verify_password(current_password, account.password_hash):
            self.audit.log_event("password_change_failed", subject=account.id, severity="warning",
                                 metadata={"reason": "invalid_current_password"}, **where)
            return AuthResult.failed(InvalidCredentials("Invalid current password"))

        try:
            self.check_new_password(new_password)
            if verify_password(new_password, account.password_hash):
                raise ValidationFailed("Password was used recently", rule="reused", field="new_password")
        except ValidationFailed as exc:
            return AuthResult.failed(exc)

        self.credentials.update_password(account.id, hash_password(new_password, self.settings.bcrypt_rounds), now)
        revoked = self.tokens.revoke_all(account.id, except_token_id=current_token_id)
        self.audit.log_event("password_changed", subject=account.id,
                             metadata={"revoked_tokens": revoked}, **where)
        return AuthResult(True, account=self.credentials.get(account.id), state=LoginState.SUCCESS)

    # -- tokens ------------------------------------------------------------

    def resolve_token(self, plain_text: str, context: AuthContext, now: Optional[datetime] = None):
        """
        Returns ``(token, account)`` for a bearer token valid in ``context``,
        or None. Tokens from another realm are refused by the issuer.
        """
        token: Optional[TokenRecord] = self.tokens.authenticate(plain_text, context, now or utcnow())
        if token is None:
            return None
        account = self.credentials.get(token.account_id)
        if account is None or not account.is_active or account.realm != context.realm:
            return None
        return token, account

    def logout(self, token: TokenRecord, ip: Optional[str] = None, user_agent: Optional[str] = None) -> bool:
        revoked = self.tokens.revoke(token.id)
        self.audit.log_event("logout", subject=token.account_id, realm=token.realm, ip=ip,
                             user_agent=user_agent, metadata={"token_id": token.id})
        return revoked

    def logout_all(self, token: TokenRecord, ip: Optional[str] = None, user_agent: Optional[str] = None) -> int:
        count = self.tokens.revoke_all(token.account_id)
        self.audit.log_event("logout_all", subject=token.account_id, realm=token.realm, ip=ip,
                             user_agent=user_agent, metadata={"revoked_tokens": count})
        return count
