from functools import wraps
from flask import current_app, g, request

from security.context import AuthContext
from utils.responses import error_response


def services():
    return current_app.extensions["security"]


def client_ip() -> str:
    # trusted proxy hops are resolved by ProxyFix in create_app
    return request.remote_addr or "unknown"


def user_agent() -> str:
    return (request.headers.get("User-Agent") or "")[:255]


def bearer_token():
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def auth_context() -> AuthContext:
    # set by the blueprint before any view runs
    return g.auth_context


def load_current_account():
    g.token = None
    g.account = None
    raw_token = bearer_token()
    if not raw_token:
        return
    resolved = services().auth.resolve_token(raw_token, auth_context())
    if resolved:
        g.token, g.account = resolved


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "account", None) is None:
            return error_response("Authentication required", 401, code="UNAUTHENTICATED")
        return fn(*args, **kwargs)
    return wrapper
