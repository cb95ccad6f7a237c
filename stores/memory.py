"""
In-process implementations of the store contracts.

Thread-safe via a single lock per store; a lock that cannot be taken within
``timeout`` seconds surfaces as ``StoreUnavailable`` instead of hanging.
Used by the unit tests and fine for a single-process deployment.
"""
import itertools
import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from security.context import AccountStatus, AuthContext
from security.errors import StoreUnavailable
from security.tokens import belongs_to, generate_token, hash_token
from stores.base import (
    AccountRecord,
    AttemptRecord,
    AttemptScope,
    AuditEvent,
    CounterState,
    IssuedToken,
    PenaltyState,
    TokenRecord,
)

DEFAULT_TIMEOUT = 5.0


class _Locked:
    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self._lock = threading.Lock()
        self._timeout = timeout

    @contextmanager
    def _locked(self):
        if not self._lock.acquire(timeout=self._timeout):
            raise StoreUnavailable()
        try:
            yield
        finally:
            self._lock.release()


class MemoryCredentialStore(_Locked):
    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self._accounts: Dict[int, AccountRecord] = {}
        self._ids = itertools.count(1)

    def find_by_email(self, email: str, realm: str) -> Optional[AccountRecord]:
        with self._locked():
            for account in self._accounts.values():
                if account.realm == realm and account.email == email:
                    return account
        return None

    def get(self, account_id: int) -> Optional[AccountRecord]:
        with self._locked():
            return self._accounts.get(account_id)

    def create(self, realm: str, email: str, password_hash: str, role: str,
               status: AccountStatus = AccountStatus.ACTIVE) -> AccountRecord:
        with self._locked():
            if any(a.realm == realm and a.email == email for a in self._accounts.values()):
                raise ValueError("Email already registered")
            account = AccountRecord(next(self._ids), realm, email, password_hash, role, status)
            self._accounts[account.id] = account
            return account

    def set_status(self, account_id: int, status: AccountStatus) -> None:
        with self._locked():
            self._accounts[account_id] = replace(self._accounts[account_id], status=status)

    def delete(self, account_id: int) -> None:
        with self._locked():
            self._accounts.pop(account_id, None)

    def update_password(self, account_id: int, password_hash: str, changed_at: datetime) -> None:
        with self._locked():
            self._accounts[account_id] = replace(self._accounts[account_id], password_hash=password_hash)

    def touch_last_login(self, account_id: int, when: datetime) -> None:
        with self._locked():
            self._accounts[account_id] = replace(self._accounts[account_id], last_login_at=when)


class MemoryAttemptStore(_Locked):
    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self.attempts: List[AttemptRecord] = []

    def append(self, attempt: AttemptRecord) -> None:
        with self._locked():
            self.attempts.append(attempt)

    def failure_times(self, scope: AttemptScope, value: str, since: datetime, until: datetime) -> List[datetime]:
        attr = "email" if scope is AttemptScope.EMAIL else "ip_address"
        with self._locked():
            times = [
                a.attempted_at for a in self.attempts
                if not a.success and getattr(a, attr) == value and since <= a.attempted_at <= until
            ]
        return sorted(times)

    def count_failures(self, scope: AttemptScope, value: str, since: datetime, until: datetime) -> int:
        return len(self.failure_times(scope, value, since, until))

    def delete_before(self, cutoff: datetime) -> int:
        with self._locked():
            kept = [a for a in self.attempts if a.attempted_at >= cutoff]
            deleted = len(self.attempts) - len(kept)
            self.attempts = kept
        return deleted

    def summary(self, since: datetime) -> dict:
        with self._locked():
            recent = [a for a in self.attempts if a.attempted_at >= since]
        return {
            "total_attempts": len(recent),
            "successful_attempts": sum(1 for a in recent if a.success),
            "unique_emails": len({a.email for a in recent}),
            "unique_ips": len({a.ip_address for a in recent}),
        }

    def top_failed_ips(self, since: datetime, limit: int) -> List[dict]:
        with self._locked():
            counts = Counter(a.ip_address for a in self.attempts if not a.success and a.attempted_at >= since)
        return [{"ip_address": ip, "failed_count": n} for ip, n in counts.most_common(limit)]


class MemoryCounterStore(_Locked):
    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self._counters: Dict[str, CounterState] = {}

    def hit(self, key: str, decay_seconds: int, now: datetime) -> CounterState:
        with self._locked():
            current = self._counters.get(key)
            if current is None or current.window_expires_at <= now:
                current = CounterState(1, now + timedelta(seconds=decay_seconds))
            else:
                current = CounterState(current.count + 1, current.window_expires_at)
            self._counters[key] = current
            return current

    def get(self, key: str, now: datetime) -> Optional[CounterState]:
        with self._locked():
            current = self._counters.get(key)
        if current is None or current.window_expires_at <= now:
            return None
        return current

    def clear(self, key: str) -> None:
        with self._locked():
            self._counters.pop(key, None)


class MemoryPenaltyStore(_Locked):
    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self._states: Dict[str, PenaltyState] = {}

    def get(self, subject_key: str) -> PenaltyState:
        with self._locked():
            return self._states.get(subject_key, PenaltyState(0))

    def escalate(self, subject_key: str, now: datetime, decay_seconds: int) -> PenaltyState:
        with self._locked():
            state = self._states.get(subject_key)
            if state is None or state.last_escalated_at is None or \
                    (now - state.last_escalated_at).total_seconds() > decay_seconds:
                state = PenaltyState(1, now)
            else:
                state = PenaltyState(state.level + 1, now)
            self._states[subject_key] = state
            return state

    def reset(self, subject_key: str) -> None:
        with self._locked():
            self._states.pop(subject_key, None)


class MemoryAuditSink(_Locked):
    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self.events: List[AuditEvent] = []

    def write(self, event: AuditEvent) -> None:
        with self._locked():
            self.events.append(event)

    def kinds(self) -> List[str]:
        return [e.event for e in self.events]


class MemoryTokenIssuer(_Locked):
    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self._tokens: Dict[str, TokenRecord] = {}
        self._revoked = set()
        self._ids = itertools.count(1)

    def issue(self, account: AccountRecord, context: AuthContext, abilities: List[str],
              name: str = "session", expires_at: Optional[datetime] = None) -> IssuedToken:
        if account.realm != context.realm:
            raise ValueError("Account does not belong to this context")
        if not belongs_to(context.realm, abilities, context):
            raise ValueError("Abilities must be namespaced to the token's context")
        plain_text = generate_token()
        with self._locked():
            record = TokenRecord(next(self._ids), account.id, context.realm, name, list(abilities), expires_at)
            self._tokens[hash_token(plain_text)] = record
        return IssuedToken(plain_text, record)

    def authenticate(self, plain_text: str, context: AuthContext, now: datetime) -> Optional[TokenRecord]:
        if not plain_text:
            return None
        with self._locked():
            record = self._tokens.get(hash_token(plain_text))
            if record is None or record.id in self._revoked:
                return None
        if record.expires_at is not None and record.expires_at <= now:
            return None
        if not belongs_to(record.realm, record.abilities, context):
            return None
        return record

    def revoke(self, token_id: int) -> bool:
        with self._locked():
            if token_id in self._revoked or all(r.id != token_id for r in self._tokens.values()):
                return False
            self._revoked.add(token_id)
            return True

    def revoke_all(self, account_id: int, except_token_id: Optional[int] = None) -> int:
        with self._locked():
            ids = {
                r.id for r in self._tokens.values()
                if r.account_id == account_id and r.id != except_token_id and r.id not in self._revoked
            }
            self._revoked |= ids
            return len(ids)
