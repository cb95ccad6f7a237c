from datetime import timedelta

import bcrypt
import pytest

from security.authentication import LoginState, normalize_email
from security.context import AccountStatus, AuthContext
from security.errors import (
    AccountInactive,
    AccountLocked,
    InvalidCredentials,
    RateLimitExceeded,
    StoreUnavailable,
    ValidationFailed,
)
from security.password import dummy_hash
from tests.conftest import STRONG_PASSWORD

IP = "203.0.113.10"


def _login(services, email, password, context, now, ip=IP):
    return services.auth.authenticate(email, password, context, ip, "pytest-agent", now=now)


def test_successful_login_issues_namespaced_token(services, stores, make_account, tenant, now):
    account = make_account()

    result = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now)

    assert result.success
    assert result.state is LoginState.TOKEN_ISSUED
    assert result.account.id == account.id
    assert result.token.record.abilities == ["tenant:acme:*"]
    assert result.token.record.expires_at == now + timedelta(hours=8)
    assert stores.credentials.get(account.id).last_login_at == now
    assert [a.success for a in stores.attempts.attempts] == [True]
    assert "login_success" in stores.audit.kinds()


def test_central_login_gets_central_abilities(services, make_account, now):
    central = AuthContext.central()
    make_account("root@example.com", context=central, role="super_admin")

    result = _login(services, "root@example.com", STRONG_PASSWORD, central, now)

    assert result.success
    assert result.token.record.abilities == ["central:*"]
    assert result.token.record.realm == "central"


def test_unknown_email_and_wrong_password_look_the_same(services, stores, make_account, tenant, now):
    make_account()

    wrong = _login(services, "user@example.com", "Wr0ng!Pass", tenant, now)
    unknown = _login(services, "nobody@example.com", STRONG_PASSWORD, tenant, now)

    for result in (wrong, unknown):
        assert not result.success
        assert isinstance(result.error, InvalidCredentials)
        assert result.state is LoginState.ATTEMPT_RECORDED
    assert wrong.error.message == unknown.error.message
    assert [a.success for a in stores.attempts.attempts] == [False, False]


def test_accounts_are_scoped_to_their_realm(services, make_account, now):
    make_account(context=AuthContext.tenant("acme"))

    result = _login(services, "user@example.com", STRONG_PASSWORD, AuthContext.tenant("globex"), now)
    assert isinstance(result.error, InvalidCredentials)

    result = _login(services, "user@example.com", STRONG_PASSWORD, AuthContext.central(), now)
    assert isinstance(result.error, InvalidCredentials)


def test_lockout_rejects_even_the_right_password(services, stores, make_account, tenant, now):
    make_account()
    for i in range(5):
        result = _login(services, "user@example.com", "Wr0ng!Pass", tenant, now + timedelta(seconds=i))
        assert isinstance(result.error, InvalidCredentials)

    result = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now + timedelta(seconds=5))

    assert not result.success
    assert isinstance(result.error, AccountLocked)
    assert result.state is LoginState.LOCKOUT_CHECK
    assert result.error.retry_after == 15 * 60 - 5
    # the rejected attempt is audited but not recorded
    assert len(stores.attempts.attempts) == 5
    assert stores.audit.kinds().count("login_locked") == 1


def test_lockout_lifts_when_failures_age_out(services, make_account, tenant, now):
    make_account()
    for i in range(5):
        _login(services, "user@example.com", "Wr0ng!Pass", tenant, now)

    result = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now + timedelta(minutes=15, seconds=1))
    assert result.success


def test_suspended_account_is_refused_and_recorded(services, stores, make_account, tenant, now):
    account = make_account(status=AccountStatus.SUSPENDED)

    result = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now)

    assert isinstance(result.error, AccountInactive)
    assert result.error.http_status == 403
    attempt = stores.attempts.attempts[-1]
    assert attempt.success is False
    assert attempt.user_id == account.id


def test_deleted_account_behaves_like_unknown(services, make_account, tenant, now):
    make_account(status=AccountStatus.DELETED)

    result = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now)
    assert isinstance(result.error, InvalidCredentials)


def test_store_outage_becomes_store_unavailable(services, stores, make_account, tenant, now):
    make_account()
    stores.credentials._lock.acquire()
    try:
        result = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now)
    finally:
        stores.credentials._lock.release()

    assert not result.success
    assert isinstance(result.error, StoreUnavailable)
    assert result.error.http_status == 503


def test_unexpected_error_becomes_store_unavailable(services, stores, make_account, tenant, now, monkeypatch):
    make_account()

    def boom(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(stores.tokens, "issue", boom)
    result = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now)

    assert isinstance(result.error, StoreUnavailable)


def test_audit_failures_never_fail_a_login(services, stores, make_account, tenant, now, monkeypatch):
    make_account()

    def boom(event):
        raise RuntimeError("audit table gone")

    monkeypatch.setattr(stores.audit, "write", boom)
    result = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now)

    assert result.success


def test_token_is_only_honoured_in_its_own_context(services, make_account, tenant, now):
    make_account()
    plain = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now).token.plain_text

    assert services.auth.resolve_token(plain, tenant, now) is not None
    assert services.auth.resolve_token(plain, AuthContext.central(), now) is None
    assert services.auth.resolve_token(plain, AuthContext.tenant("globex"), now) is None
    assert services.auth.resolve_token(plain, tenant, now + timedelta(hours=9)) is None


def test_token_for_suspended_account_is_refused(services, stores, make_account, tenant, now):
    account = make_account()
    plain = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now).token.plain_text

    stores.credentials.set_status(account.id, AccountStatus.SUSPENDED)
    assert services.auth.resolve_token(plain, tenant, now) is None


def test_logout_revokes_token(services, make_account, tenant, now):
    make_account()
    first = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now).token
    second = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now).token

    token, _ = services.auth.resolve_token(first.plain_text, tenant, now)
    assert services.auth.logout(token)
    assert services.auth.resolve_token(first.plain_text, tenant, now) is None
    assert services.auth.resolve_token(second.plain_text, tenant, now) is not None

    token, _ = services.auth.resolve_token(second.plain_text, tenant, now)
    assert services.auth.logout_all(token) == 1
    assert services.auth.resolve_token(second.plain_text, tenant, now) is None


def test_register_creates_account_and_token(services, stores, tenant, now):
    result = services.auth.register("new@example.com", STRONG_PASSWORD, tenant, now=now)

    assert result.success
    assert result.account.realm == "tenant:acme"
    assert result.account.role == "member"
    assert result.token.record.abilities == ["tenant:acme:*"]
    assert "register_success" in stores.audit.kinds()


@pytest.mark.parametrize("email,password,rule", [
    ("not-an-email", STRONG_PASSWORD, "email"),
    ("new@example.com", "short", "too_short"),
    ("new@example.com", "Password@123", "too_common"),
    ("new@example.com", None, "wrong_type"),
])
def test_register_reports_failed_rule(services, tenant, now, email, password, rule):
    result = services.auth.register(email, password, tenant, now=now)

    assert isinstance(result.error, ValidationFailed)
    assert result.error.rule == rule
    assert result.error.http_status == 422


def test_register_rejects_duplicates_per_realm_only(services, make_account, tenant, now):
    make_account("dup@example.com")

    result = services.auth.register("dup@example.com", STRONG_PASSWORD, tenant, now=now)
    assert result.error.rule == "unique"

    other = services.auth.register("dup@example.com", STRONG_PASSWORD, AuthContext.tenant("globex"), now=now)
    assert other.success


def test_change_password_revokes_other_tokens(services, make_account, tenant, now):
    account = make_account()
    current = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now).token
    other = _login(services, "user@example.com", STRONG_PASSWORD, tenant, now).token

    result = services.auth.change_password(account.id, STRONG_PASSWORD, "N3w!Secret9", tenant,
                                           current_token_id=current.record.id, now=now)

    assert result.success
    assert services.auth.resolve_token(current.plain_text, tenant, now) is not None
    assert services.auth.resolve_token(other.plain_text, tenant, now) is None
    assert _login(services, "user@example.com", "N3w!Secret9", tenant, now).success


def test_change_password_checks_current_and_reuse(services, make_account, tenant, now):
    account = make_account()

    wrong = services.auth.change_password(account.id, "Wr0ng!Pass", "N3w!Secret9", tenant, now=now)
    assert isinstance(wrong.error, InvalidCredentials)

    reused = services.auth.change_password(account.id, STRONG_PASSWORD, STRONG_PASSWORD, tenant, now=now)
    assert reused.error.rule == "reused"

    weak = services.auth.change_password(account.id, STRONG_PASSWORD, "weakpass", tenant, now=now)
    assert weak.error.rule == "missing_uppercase"


def test_normalize_email():
    assert normalize_email("  User@Example.COM ") == "user@example.com"
    assert normalize_email(None) == ""
    assert normalize_email(42) == ""


def test_unknown_email_pays_the_same_bcrypt_cost(services, make_account, tenant, now, monkeypatch):
    make_account()
    costs = []
    checkpw = bcrypt.checkpw

    def recording_checkpw(candidate, hashed):
        costs.append(hashed[:7])
        return checkpw(candidate, hashed)

    monkeypatch.setattr(bcrypt, "checkpw", recording_checkpw)
    _login(services, "user@example.com", "Wr0ng!Pass", tenant, now)
    _login(services, "nobody@example.com", "Wr0ng!Pass", tenant, now)

    # both comparisons run at BCRYPT_ROUNDS=4
    assert costs == [b"$2b$04$", b"$2b$04$"]


def test_dummy_hash_follows_requested_cost():
    assert dummy_hash(5).startswith(b"$2b$05$")
    assert dummy_hash(5) is dummy_hash(5)


def test_password_changes_are_rate_limited(services, stores, make_account, tenant, now):
    account = make_account()
    for _ in range(3):
        services.auth.change_password(account.id, "Wr0ng!Pass", "N3w!Secret9", tenant, now=now)

    result = services.auth.change_password(account.id, STRONG_PASSWORD, "N3w!Secret9", tenant, now=now)

    assert isinstance(result.error, RateLimitExceeded)
    assert result.error.retry_after == 900
    assert "rate_limit_exceeded" in stores.audit.kinds()
    assert _login(services, "user@example.com", STRONG_PASSWORD, tenant, now).success
