"""
Boundary contracts the security core talks to.

The core never touches the ORM directly: it reads accounts, appends login
attempts, bumps counters and writes audit events through these protocols.
``stores.sql`` backs them with Flask-SQLAlchemy, ``stores.memory`` keeps
everything in process. Implementations raise ``StoreUnavailable`` when the
backing store cannot answer in time.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from security.context import AccountStatus, AuthContext


class AttemptScope(str, enum.Enum):
    EMAIL = "email"
    IP = "ip"


@dataclass(frozen=True)
class AccountRecord:
    id: int
    realm: str
    email: str
    password_hash: str
    role: str
    status: AccountStatus
    last_login_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.ACTIVE


@dataclass(frozen=True)
class AttemptRecord:
    email: str
    ip_address: str
    user_agent: str
    success: bool
    attempted_at: datetime
    user_id: Optional[int] = None


@dataclass(frozen=True)
class CounterState:
    count: int
    window_expires_at: datetime


@dataclass(frozen=True)
class PenaltyState:
    level: int
    last_escalated_at: Optional[datetime] = None


@dataclass(frozen=True)
class TokenRecord:
    id: int
    account_id: int
    realm: str
    name: str
    abilities: List[str]
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class IssuedToken:
    plain_text: str
    record: TokenRecord


@dataclass
class AuditEvent:
    event: str
    subject: Optional[str] = None
    severity: str = "info"
    realm: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    context: dict = field(default_factory=dict)
    timestamp: Optional[datetime] = None


class CredentialStore(Protocol):
    def find_by_email(self, email: str, realm: str) -> Optional[AccountRecord]: ...

    def get(self, account_id: int) -> Optional[AccountRecord]: ...

    def create(self, realm: str, email: str, password_hash: str, role: str) -> AccountRecord: ...

    def update_password(self, account_id: int, password_hash: str, changed_at: datetime) -> None: ...

    def touch_last_login(self, account_id: int, when: datetime) -> None: ...


class AttemptStore(Protocol):
    def append(self, attempt: AttemptRecord) -> None: ...

    def failure_times(self, scope: AttemptScope, value: str, since: datetime, until: datetime) -> List[datetime]:
        """Failed attempt timestamps inside ``[since, until]``, oldest first."""
        ...

    def count_failures(self, scope: AttemptScope, value: str, since: datetime, until: datetime) -> int: ...

    def delete_before(self, cutoff: datetime) -> int: ...

    def summary(self, since: datetime) -> dict: ...

    def top_failed_ips(self, since: datetime, limit: int) -> List[dict]: ...


class CounterStore(Protocol):
    def hit(self, key: str, decay_seconds: int, now: datetime) -> CounterState:
        """Atomically add one to ``key``, opening a new window if the old one expired."""
        ...

    def get(self, key: str, now: datetime) -> Optional[CounterState]: ...

    def clear(self, key: str) -> None: ...


class PenaltyStore(Protocol):
    def get(self, subject_key: str) -> PenaltyState: ...

    def escalate(self, subject_key: str, now: datetime, decay_seconds: int) -> PenaltyState: ...

    def reset(self, subject_key: str) -> None: ...


class AuditSink(Protocol):
    def write(self, event: AuditEvent) -> None: ...


class TokenIssuer(Protocol):
    def issue(self, account: AccountRecord, context: AuthContext, abilities: List[str],
              name: str = "session", expires_at: Optional[datetime] = None) -> IssuedToken: ...

    def authenticate(self, plain_text: str, context: AuthContext, now: datetime) -> Optional[TokenRecord]: ...

    def revoke(self, token_id: int) -> bool: ...

    def revoke_all(self, account_id: int, except_token_id: Optional[int] = None) -> int: ...
