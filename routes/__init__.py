from .health import health_bp
from .auth import central_auth_bp, tenant_auth_bp
from .audit_logs import audit_bp
