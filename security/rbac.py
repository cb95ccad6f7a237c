from functools import wraps
from flask import g

from utils.auth_context import auth_context
from utils.responses import error_response


def require_roles(*role_names: str):
    """
    Usage: @require_roles("super_admin")
    Must sit under a ``login_required`` decorator.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            account = getattr(g, "account", None)
            if account is None:
                return error_response("Authentication required", 401, code="UNAUTHENTICATED")

            if account.role != "super_admin" and account.role not in role_names:
                return error_response("Forbidden", 403, code="FORBIDDEN")

            return fn(*args, **kwargs)
        return wrapper
    return decorator


def require_ability(ability: str):
    """
    Usage: @require_ability("security:read")
    The bearer token must grant ``ability`` (or ``*``) in the current context.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token = getattr(g, "token", None)
            if token is None:
                return error_response("Authentication required", 401, code="UNAUTHENTICATED")

            if not auth_context().allows(token.abilities, ability):
                return error_response("Token lacks the required ability", 403, code="MISSING_ABILITY")

            return fn(*args, **kwargs)
        return wrapper
    return decorator
