"""Request gates that run in front of the authentication core."""
import logging
from functools import wraps

from flask import g, make_response, request

from security.errors import AccountInactive, InvalidCredentials, StoreUnavailable, ValidationFailed
from security.rate_limit import GLOBAL_AUTH_KEY
from security.suspicious import Action, RequestContext
from utils.auth_context import client_ip, services, user_agent
from utils.responses import auth_error_response, error_response

logger = logging.getLogger(__name__)

# Login outcomes that charge the login gates; lockouts and outages do not
CHARGED_LOGIN_ERRORS = {InvalidCredentials.code, AccountInactive.code, ValidationFailed.code}


def _realm():
    ctx = getattr(g, "auth_context", None)
    return ctx.realm if ctx else None


def screen_request():
    """Suspicious-activity check; ``block`` stops the request here."""
    svc = services()
    ctx = RequestContext(
        ip=client_ip(),
        user_agent=request.headers.get("User-Agent"),
        method=request.method,
        path=request.path,
        query_string=request.query_string.decode("latin-1"),
    )
    verdict = svc.detector.assess(ctx)
    if not verdict.suspicious:
        return None

    svc.audit.log_event(
        "suspicious_activity",
        subject=ctx.ip,
        severity="alert" if verdict.action is Action.BLOCK else "warning",
        ip=ctx.ip,
        user_agent=ctx.user_agent,
        metadata={"reason": verdict.reason, "action": verdict.action.value,
                  "method": ctx.method, "path": ctx.path},
    )
    if verdict.action is Action.BLOCK:
        return error_response("Request blocked due to suspicious activity.", 403, code="SUSPICIOUS_ACTIVITY")
    g.flagged = verdict.reason
    return None


def enforce_api_limits():
    """General quota, then the progressive quota for signed-in accounts."""
    svc = services()
    ip = client_ip()
    account = getattr(g, "account", None)

    result = svc.limiter.check_api_limit(account.id if account else None, ip)
    g.rate_limit = result
    if not result.allowed:
        if account is not None:
            svc.limiter.record_violation(f"account:{account.id}")
        svc.audit.log_event("rate_limit_exceeded", subject=account.id if account else ip, severity="warning",
                            realm=_realm(), ip=ip, user_agent=user_agent(),
                            metadata={"gate": "api", "retry_after": result.retry_after})
        return auth_error_response(result.to_error(), headers=result.headers())

    if account is None:
        return None

    progressive = svc.limiter.apply_progressive_limit(f"account:{account.id}")
    if not progressive.allowed:
        svc.audit.log_event("rate_limit_exceeded", subject=account.id, severity="warning",
                            realm=_realm(), ip=ip, user_agent=user_agent(),
                            metadata={"gate": "progressive", "level": progressive.level,
                                      "retry_after": progressive.retry_after})
        return auth_error_response(
            progressive.to_error("Progressive rate limit applied due to previous violations."),
            headers=progressive.headers(),
        )
    return None


def add_rate_limit_headers(resp):
    result = getattr(g, "rate_limit", None)
    if result is not None and result.allowed:
        for name, value in result.headers().items():
            resp.headers.setdefault(name, value)
    return resp


def throttle_auth_attempts(fn):
    """
    Per-IP and global login gates. Checked before the view, charged after it
    when the view reports a failed login in ``g.login_error``; successful
    logins cost nothing.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        svc = services()
        ip = client_ip()

        gate = svc.limiter.check_auth_gates(ip)
        if not gate.allowed:
            is_global = gate.key == GLOBAL_AUTH_KEY
            svc.audit.log_event("rate_limit_exceeded", subject=ip, severity="warning", realm=_realm(),
                                ip=ip, user_agent=user_agent(),
                                metadata={"gate": gate.key, "retry_after": gate.retry_after})
            message = (
                "Service temporarily unavailable due to high demand. Please try again later."
                if is_global else
                "Too many authentication attempts. Please try again later."
            )
            return auth_error_response(gate.to_error(message), headers=gate.headers(),
                                       code="AUTH_GLOBAL_LIMIT" if is_global else "AUTH_RATE_LIMIT")

        g.login_error = None
        resp = make_response(fn(*args, **kwargs))
        error = g.pop("login_error", None)
        if error is not None and error.code in CHARGED_LOGIN_ERRORS:
            try:
                svc.limiter.record_auth_failure(ip)
            except StoreUnavailable:
                logger.error("Could not charge login gates for ip=%s", ip)
        return resp
    return wrapper


def limit_sensitive_operation(operation: str):
    """
    Usage: @limit_sensitive_operation("admin_action")
    Per-account quota for ``operation``; must sit under ``login_required``.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            svc = services()
            account = g.account
            result = svc.limiter.check_sensitive_operation(operation, account.id)
            if not result.allowed:
                svc.audit.log_event("rate_limit_exceeded", subject=account.id, severity="warning", realm=_realm(),
                                    ip=client_ip(), user_agent=user_agent(),
                                    metadata={"gate": operation, "retry_after": result.retry_after})
                return auth_error_response(result.to_error(f"Rate limit exceeded for operation: {operation}"),
                                           headers=result.headers(), code="SENSITIVE_OPERATION_LIMIT")
            return fn(*args, **kwargs)
        return wrapper
    return decorator
