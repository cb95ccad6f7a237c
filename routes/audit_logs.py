import json

from flask import Blueprint, request, g

from models.audit_log import AuditLog
from security.context import AuthContext
from security.middleware import enforce_api_limits, limit_sensitive_operation
from security.rbac import require_ability, require_roles
from utils.auth_context import load_current_account, login_required, services
from utils.responses import success_response

audit_bp = Blueprint("security_admin", __name__, url_prefix="/central/security")


@audit_bp.before_request
def _prepare():
    g.auth_context = AuthContext.central()
    load_current_account()
    return enforce_api_limits()


@audit_bp.get("/audit-logs")
@login_required
@require_roles("super_admin")
@require_ability("security:read")
@limit_sensitive_operation("admin_action")
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    event = request.args.get("event")
    realm = request.args.get("realm")

    q = AuditLog.query
    if event:
        q = q.filter(AuditLog.event == event)
    if realm:
        q = q.filter(AuditLog.realm == realm)

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return success_response("Audit logs", data=[
        {
            "id": r.id,
            "event": r.event,
            "subject": r.subject,
            "severity": r.severity,
            "realm": r.realm,
            "ip": r.ip,
            "user_agent": r.user_agent,
            "context": json.loads(r.context_json) if r.context_json else None,
            "timestamp": r.timestamp.isoformat(),
        }
        for r in rows
    ])


@audit_bp.get("/login-stats")
@login_required
@require_roles("super_admin")
@require_ability("security:read")
@limit_sensitive_operation("admin_action")
def login_stats():
    days = request.args.get("days", type=int) or 7
    days = max(1, min(days, 90))
    tracker = services().tracker
    return success_response("Login statistics", data={
        "statistics": tracker.statistics(days),
        "top_failed_ips": tracker.top_failed_ips(limit=10, days=days),
    })
