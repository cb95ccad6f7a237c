from datetime import timedelta

import pytest

from security.errors import RateLimitExceeded, StoreUnavailable
from security.rate_limit import GLOBAL_AUTH_KEY, RateLimiter, auth_ip_key
from security.settings import SecuritySettings


@pytest.fixture
def limiter(stores):
    return RateLimiter(stores.counters, stores.penalties, SecuritySettings())


def test_check_limit_allows_up_to_max_then_denies(limiter, now):
    results = [limiter.check_limit("k", 3, 60, now=now) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results[:3]] == [2, 1, 0]
    assert results[3].retry_after == 60


def test_window_resets_after_expiry(limiter, now):
    for _ in range(3):
        limiter.check_limit("k", 3, 60, now=now)

    assert not limiter.check_limit("k", 3, 60, now=now + timedelta(seconds=59)).allowed
    assert limiter.check_limit("k", 3, 60, now=now + timedelta(seconds=60)).allowed


def test_denial_converts_to_error_and_headers(limiter, now):
    limiter.check_limit("k", 1, 30, now=now)
    denied = limiter.check_limit("k", 1, 30, now=now + timedelta(seconds=10))

    error = denied.to_error()
    assert isinstance(error, RateLimitExceeded)
    assert error.http_status == 429
    assert error.retry_after == 20
    assert denied.headers() == {"X-RateLimit-Limit": "1", "X-RateLimit-Remaining": "0", "Retry-After": "20"}


def test_auth_gates_are_only_charged_by_failures(limiter, now):
    for _ in range(10):
        assert limiter.check_auth_gates("1.1.1.1", now=now).allowed

    for _ in range(5):
        limiter.record_auth_failure("1.1.1.1", now=now)

    gate = limiter.check_auth_gates("1.1.1.1", now=now)
    assert not gate.allowed
    assert gate.key == auth_ip_key("1.1.1.1")
    assert limiter.check_auth_gates("2.2.2.2", now=now).allowed


def test_global_gate_trips_after_a_thousand_failures(limiter, now):
    for i in range(1000):
        limiter.record_auth_failure(f"10.{i // 250}.0.{i % 250}", now=now)

    gate = limiter.check_auth_gates("192.0.2.1", now=now + timedelta(seconds=1))
    assert not gate.allowed
    assert gate.key == GLOBAL_AUTH_KEY
    assert 0 < gate.retry_after <= 60


def test_api_quota_depends_on_authentication(limiter, now):
    anonymous = [limiter.check_api_limit(ip="1.1.1.1", now=now) for _ in range(21)]
    assert anonymous[-1].allowed is False
    assert anonymous[0].limit == 20

    signed_in = [limiter.check_api_limit(user_id=7, ip="1.1.1.1", now=now) for _ in range(100)]
    assert all(r.allowed for r in signed_in)
    assert signed_in[0].limit == 100
    assert not limiter.check_api_limit(user_id=7, ip="1.1.1.1", now=now).allowed


def test_progressive_level_escalates_and_decays(limiter, now):
    assert limiter.progressive_tier(limiter.progressive_level("account:1", now)) == (1000, 3600)

    for i in range(3):
        limiter.record_violation("account:1", now=now + timedelta(minutes=i))

    level = limiter.progressive_level("account:1", now + timedelta(minutes=5))
    assert level == 3
    assert limiter.progressive_tier(level) == (50, 1800)

    quiet = now + timedelta(minutes=2, days=1, seconds=1)
    assert limiter.progressive_level("account:1", quiet) == 0
    assert limiter.record_violation("account:1", now=quiet) == 1


@pytest.mark.parametrize("level,tier", [(0, (1000, 3600)), (1, (200, 900)), (2, (200, 900)),
                                        (4, (50, 1800)), (5, (10, 3600)), (9, (10, 3600))])
def test_progressive_tiers(limiter, level, tier):
    assert limiter.progressive_tier(level) == tier


def test_progressive_limit_uses_reduced_quota(stores, now):
    limiter = RateLimiter(stores.counters, stores.penalties,
                          SecuritySettings(progressive_tiers=((1, 2, 900), (0, 100, 3600))))
    limiter.record_violation("account:9", now=now)

    results = [limiter.apply_progressive_limit("account:9", now=now) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, False]
    assert results[-1].level == 1
    assert results[-1].headers()["X-Progressive-Level"] == "1"


def test_status_reports_attempts_and_remaining_time(limiter, now):
    limiter.record_auth_failure("1.1.1.1", now=now)

    status = limiter.status([auth_ip_key("1.1.1.1"), "api:ip:none"], now=now + timedelta(seconds=15))
    assert status[auth_ip_key("1.1.1.1")] == {"attempts": 1, "remaining_time": 45}
    assert status["api:ip:none"] == {"attempts": 0, "remaining_time": 0}


def test_clear_forgets_counter(limiter, now):
    limiter.check_limit("k", 1, 60, now=now)
    limiter.clear("k")
    assert limiter.check_limit("k", 1, 60, now=now).allowed


def test_busy_store_raises_store_unavailable(stores, limiter, now):
    stores.counters._lock.acquire()
    try:
        with pytest.raises(StoreUnavailable):
            limiter.check_limit("k", 1, 60, now=now)
    finally:
        stores.counters._lock.release()


def test_ip_named_global_gets_its_own_counter(limiter, now):
    limiter.record_auth_failure("global", now=now)

    status = limiter.status([GLOBAL_AUTH_KEY, auth_ip_key("global")], now=now)
    assert status[GLOBAL_AUTH_KEY]["attempts"] == 1
    assert status[auth_ip_key("global")]["attempts"] == 1


def test_sensitive_operations_have_their_own_quotas(limiter, now):
    results = [limiter.check_sensitive_operation("password_reset", 7, now=now) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert results[-1].key == "sensitive:password_reset:7"
    assert results[-1].retry_after == 900
    assert limiter.check_sensitive_operation("password_reset", 8, now=now).allowed
    assert limiter.check_sensitive_operation("export_data", 7, now=now).allowed


def test_sensitive_limit_table(limiter):
    assert limiter.sensitive_limit("admin_action") == (20, 3600)
    assert limiter.sensitive_limit("password_change") == (3, 900)
    assert limiter.sensitive_limit("something_else") == (5, 3600)


def test_forgive_drops_violations_and_progressive_window(limiter, now):
    limiter.record_violation("account:3", now=now)
    limiter.apply_progressive_limit("account:3", now=now)

    limiter.forgive("account:3")

    assert limiter.progressive_level("account:3", now) == 0
    assert limiter.status(["progressive:account:3"], now=now)["progressive:account:3"]["attempts"] == 0
