import json

from models import db
from models.audit_log import AuditLog
from models.login_attempt import LoginAttempt
from models.user import Account
from security.context import AccountStatus, AuthContext
from security.rate_limit import GLOBAL_AUTH_KEY, auth_ip_key
from security.tokens import namespaced_abilities
from stores.base import AccountRecord
from tests.conftest import STRONG_PASSWORD


def _headers(ip="198.51.100.20", token=None):
    headers = {"X-Forwarded-For": ip}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _register(client, email="user@example.com", tenant_id="acme", ip="198.51.100.20"):
    return client.post(f"/tenants/{tenant_id}/auth/register",
                       json={"email": email, "password": STRONG_PASSWORD}, headers=_headers(ip))


def _login(client, email="user@example.com", password=STRONG_PASSWORD, prefix="/tenants/acme/auth",
           ip="198.51.100.20"):
    return client.post(f"{prefix}/login", json={"email": email, "password": password}, headers=_headers(ip))


def _create_central_admin(app, email="root@example.com", role="super_admin"):
    runner = app.test_cli_runner()
    return runner.invoke(args=["create-central-admin", email, "--role", role, "--password", STRONG_PASSWORD])


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


def test_register_login_me_logout(client):
    resp = _register(client)
    assert resp.status_code == 201
    assert resp.get_json()["data"]["abilities"] == ["tenant:acme:*"]

    resp = _login(client, email="  USER@example.com ")
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["data"]["token_type"] == "Bearer"
    token = body["data"]["token"]

    resp = client.get("/tenants/acme/auth/me", headers=_headers(token=token))
    assert resp.status_code == 200
    assert resp.get_json()["data"]["account"]["email"] == "user@example.com"
    assert resp.headers["X-RateLimit-Limit"] == "100"

    assert client.post("/tenants/acme/auth/logout", headers=_headers(token=token)).status_code == 200
    assert client.get("/tenants/acme/auth/me", headers=_headers(token=token)).status_code == 401


def test_wrong_password_is_generic_401(client):
    _register(client)

    wrong = _login(client, password="Wr0ng!Pass")
    unknown = _login(client, email="nobody@example.com")

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.get_json()["message"] == unknown.get_json()["message"]
    assert wrong.get_json()["meta"]["error_code"] == "INVALID_CREDENTIALS"


def test_missing_fields_are_rejected(client):
    resp = client.post("/tenants/acme/auth/login", json={"email": "user@example.com"}, headers=_headers())
    assert resp.status_code == 422


def test_account_lockout_spans_ips(client):
    _register(client)
    for i in range(5):
        assert _login(client, password="Wr0ng!Pass", ip=f"192.0.2.{i}").status_code == 401

    resp = _login(client, ip="192.0.2.99")

    assert resp.status_code == 429
    assert resp.get_json()["meta"]["error_code"] == "ACCOUNT_LOCKED"
    assert int(resp.headers["Retry-After"]) > 0


def test_ip_gate_charged_only_by_failures(client):
    _register(client)
    for _ in range(6):
        assert _login(client, ip="192.0.2.50").status_code == 200

    for i in range(5):
        assert _login(client, email=f"ghost{i}@example.com", ip="192.0.2.60").status_code == 401

    resp = _login(client, ip="192.0.2.60")
    assert resp.status_code == 429
    assert resp.get_json()["meta"]["error_code"] == "AUTH_RATE_LIMIT"
    assert 0 < int(resp.headers["Retry-After"]) <= 60
    assert resp.headers["X-RateLimit-Limit"] == "5"


def test_anonymous_api_quota(client):
    for _ in range(20):
        assert client.get("/central/auth/me", headers=_headers("192.0.2.70")).status_code == 401

    resp = client.get("/central/auth/me", headers=_headers("192.0.2.70"))
    assert resp.status_code == 429
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" in resp.headers


def test_suspicious_request_is_blocked(client):
    resp = client.get("/health?file=../../etc/passwd", headers=_headers())
    assert resp.status_code == 403
    assert resp.get_json()["meta"]["error_code"] == "SUSPICIOUS_ACTIVITY"


def test_tenant_token_is_refused_elsewhere(client):
    _register(client)
    token = _login(client).get_json()["data"]["token"]

    assert client.get("/central/auth/me", headers=_headers(token=token)).status_code == 401
    assert client.get("/tenants/globex/auth/me", headers=_headers(token=token)).status_code == 401
    assert client.get("/central/security/audit-logs", headers=_headers(token=token)).status_code == 401


def test_central_has_no_self_registration(client):
    resp = client.post("/central/auth/register", json={"email": "x@example.com", "password": STRONG_PASSWORD},
                       headers=_headers())
    assert resp.status_code in (404, 405)


def test_change_password_and_logout_all(client):
    _register(client)
    first = _login(client).get_json()["data"]["token"]
    second = _login(client).get_json()["data"]["token"]

    resp = client.post("/tenants/acme/auth/change-password",
                       json={"current_password": STRONG_PASSWORD, "new_password": "N3w!Secret9"},
                       headers=_headers(token=first))
    assert resp.status_code == 200
    assert client.get("/tenants/acme/auth/me", headers=_headers(token=second)).status_code == 401

    weak = client.post("/tenants/acme/auth/change-password",
                       json={"current_password": "N3w!Secret9", "new_password": "weak"},
                       headers=_headers(token=first))
    assert weak.status_code == 422
    assert weak.get_json()["errors"]["rule"] == "too_short"

    resp = client.post("/tenants/acme/auth/logout-all", headers=_headers(token=first))
    assert resp.get_json()["data"]["revoked_tokens"] == 1


def test_super_admin_reads_audit_logs_and_stats(app, client):
    result = _create_central_admin(app)
    assert result.exit_code == 0, result.output

    token = _login(client, email="root@example.com", prefix="/central/auth").get_json()["data"]["token"]

    resp = client.get("/central/security/audit-logs?event=login_success", headers=_headers(token=token))
    assert resp.status_code == 200
    events = resp.get_json()["data"]
    assert events and all(e["event"] == "login_success" for e in events)
    assert events[0]["realm"] == "central"

    resp = client.get("/central/security/login-stats", headers=_headers(token=token))
    assert resp.status_code == 200
    assert resp.get_json()["data"]["statistics"]["successful_attempts"] == 1


def test_plain_central_admin_cannot_read_audit_logs(app, client):
    assert _create_central_admin(app, "ops@example.com", role="admin").exit_code == 0
    token = _login(client, email="ops@example.com", prefix="/central/auth").get_json()["data"]["token"]

    resp = client.get("/central/security/audit-logs", headers=_headers(token=token))
    assert resp.status_code == 403


def test_cli_rejects_weak_admin_password(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["create-central-admin", "root@example.com", "--password", "weak"])
    assert result.exit_code != 0
    assert "at least 8 characters" in result.output


def test_cli_prune_and_stats(app, client):
    _register(client)
    _login(client, password="Wr0ng!Pass")

    runner = app.test_cli_runner()
    stats = runner.invoke(args=["login-stats", "--days", "1"])
    assert "failed_attempts: 1" in stats.output
    assert "198.51.100.20: 1 failed" in stats.output

    pruned = runner.invoke(args=["prune-login-attempts"])
    assert "Deleted 0 login attempts" in pruned.output


def _counter_status(app, *keys):
    with app.app_context():
        return app.extensions["security"].limiter.status(keys)


def test_forwarded_for_global_does_not_touch_the_global_key_twice(app, client):
    for _ in range(3):
        assert _login(client, email="ghost@example.com", ip="global").status_code == 401

    status = _counter_status(app, GLOBAL_AUTH_KEY, auth_ip_key("global"))
    assert status[GLOBAL_AUTH_KEY]["attempts"] == 3
    assert status[auth_ip_key("global")]["attempts"] == 3


def test_only_the_trusted_proxy_hop_is_used(app, client):
    client.post("/tenants/acme/auth/login", json={"email": "ghost@example.com", "password": "Wr0ng!Pass"},
                headers={"X-Forwarded-For": "6.6.6.6, 198.51.100.9"})

    with app.app_context():
        assert LoginAttempt.query.one().ip_address == "198.51.100.9"


def test_suspended_login_charges_the_gates(app, client):
    _register(client)
    with app.app_context():
        Account.query.filter_by(email="user@example.com").update({"status": AccountStatus.SUSPENDED})
        db.session.commit()

    resp = _login(client, ip="192.0.2.80")
    assert resp.status_code == 403
    assert resp.get_json()["meta"]["error_code"] == "ACCOUNT_INACTIVE"

    status = _counter_status(app, auth_ip_key("192.0.2.80"), GLOBAL_AUTH_KEY)
    assert status[auth_ip_key("192.0.2.80")]["attempts"] == 1
    assert status[GLOBAL_AUTH_KEY]["attempts"] == 1


def test_lockout_does_not_charge_the_gates(app, client):
    _register(client)
    for i in range(5):
        _login(client, password="Wr0ng!Pass", ip=f"192.0.2.{i + 10}")

    assert _login(client, ip="192.0.2.90").status_code == 429
    assert _counter_status(app, auth_ip_key("192.0.2.90"))[auth_ip_key("192.0.2.90")]["attempts"] == 0


def test_flagged_request_passes_and_is_audited(app, client):
    resp = client.get("/health", headers={"User-Agent": "curl/8.5.0", "X-Forwarded-For": "192.0.2.30"})
    assert resp.status_code == 200

    with app.app_context():
        row = AuditLog.query.filter_by(event="suspicious_activity").one()
        assert row.ip == "192.0.2.30"
        assert json.loads(row.context_json)["action"] == "flag"
        assert json.loads(row.context_json)["reason"] == "unusual_user_agent"


def test_token_without_security_ability_is_refused(app, client):
    assert _create_central_admin(app).exit_code == 0
    central = AuthContext.central()
    with app.app_context():
        svc = app.extensions["security"]
        account: AccountRecord = svc.stores.credentials.find_by_email("root@example.com", central.realm)
        token = svc.stores.tokens.issue(account, central, namespaced_abilities(central, ["profile:read"]))

    resp = client.get("/central/security/audit-logs", headers=_headers(token=token.plain_text))
    assert resp.status_code == 403
    assert resp.get_json()["meta"]["error_code"] == "MISSING_ABILITY"


def test_admin_security_routes_have_an_operation_quota(app, client):
    assert _create_central_admin(app).exit_code == 0
    token = _login(client, email="root@example.com", prefix="/central/auth").get_json()["data"]["token"]

    for _ in range(20):
        assert client.get("/central/security/login-stats", headers=_headers(token=token)).status_code == 200

    resp = client.get("/central/security/audit-logs", headers=_headers(token=token))
    assert resp.status_code == 429
    assert resp.get_json()["meta"]["error_code"] == "SENSITIVE_OPERATION_LIMIT"
    assert "Retry-After" in resp.headers


def test_cli_rate_limit_status_and_clear(app, client):
    for _ in range(2):
        _login(client, email="ghost@example.com", ip="192.0.2.40")

    runner = app.test_cli_runner()
    status = runner.invoke(args=["rate-limit-status", auth_ip_key("192.0.2.40")])
    assert f"{auth_ip_key('192.0.2.40')}: 2 attempts" in status.output

    cleared = runner.invoke(args=["clear-rate-limit", auth_ip_key("192.0.2.40"), "--forgive", "account:1"])
    assert cleared.exit_code == 0, cleared.output
    assert "Forgave account:1" in cleared.output
    assert _counter_status(app, auth_ip_key("192.0.2.40"))[auth_ip_key("192.0.2.40")]["attempts"] == 0
