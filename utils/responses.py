from flask import jsonify

from security.errors import AuthError
from utils.clock import utcnow


def _meta(extra=None) -> dict:
    meta = {"timestamp": utcnow().isoformat() + "Z"}
    meta.update({k: v for k, v in (extra or {}).items() if v is not None})
    return meta


def success_response(message: str = "Operation successful", data=None, status: int = 200, meta=None, headers=None):
    resp = jsonify(success=True, message=message, data=data, meta=_meta(meta))
    resp.status_code = status
    for name, value in (headers or {}).items():
        resp.headers[name] = value
    return resp


def error_response(message: str = "An error occurred", status: int = 400, code=None, errors=None,
                   meta=None, headers=None):
    resp = jsonify(success=False, message=message, errors=errors, meta=_meta({"error_code": code, **(meta or {})}))
    resp.status_code = status
    for name, value in (headers or {}).items():
        resp.headers[name] = value
    return resp


def auth_error_response(error: AuthError, headers=None, code=None):
    """Render a member of the error taxonomy, adding Retry-After where it has one."""
    headers = dict(headers or {})
    retry_after = getattr(error, "retry_after", None)
    if retry_after is not None:
        headers.setdefault("Retry-After", str(retry_after))
    limit = getattr(error, "limit", None)
    if limit is not None:
        headers.setdefault("X-RateLimit-Limit", str(limit))
        headers.setdefault("X-RateLimit-Remaining", str(getattr(error, "remaining", 0)))
    return error_response(error.message, error.http_status, code=code or error.code, errors=error.to_dict(),
                          headers=headers)
