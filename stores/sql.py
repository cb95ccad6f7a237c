"""Flask-SQLAlchemy implementations of the store contracts."""
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from models import db
from models.audit_log import AuditLog
from models.ip_rate_limit import ProgressiveLimitState, RateLimitCounter
from models.login_attempt import LoginAttempt
from models.session import AccessToken
from models.user import Account
from security.context import AuthContext
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
from utils.clock import utcnow

logger = logging.getLogger(__name__)

# Connection problems and pool/lock timeouts; anything else is a bug and propagates
_TRANSIENT = (OperationalError, InterfaceError, PoolTimeoutError)

_INSERT_RETRIES = 3


class DuplicateAccount(ValueError):
    pass


def _rollback_quietly():
    try:
        db.session.rollback()
    except SQLAlchemyError:
        logger.debug("Rollback after store failure also failed", exc_info=True)


@contextmanager
def _store_call(operation: str):
    try:
        yield
    except _TRANSIENT as exc:
        _rollback_quietly()
        logger.error("Store call %s failed: %s", operation, exc)
        raise StoreUnavailable() from exc


def _account_record(row: Account) -> AccountRecord:
    return AccountRecord(
        id=row.id,
        realm=row.realm,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        status=row.status,
        last_login_at=row.last_login_at,
    )


def _token_record(row: AccessToken) -> TokenRecord:
    return TokenRecord(
        id=row.id,
        account_id=row.account_id,
        realm=row.realm,
        name=row.name,
        abilities=list(row.abilities or []),
        expires_at=row.expires_at,
    )


class SqlCredentialStore:
    def find_by_email(self, email: str, realm: str) -> Optional[AccountRecord]:
        with _store_call("accounts.find_by_email"):
            row = Account.query.filter_by(realm=realm, email=email).first()
        return _account_record(row) if row else None

    def get(self, account_id: int) -> Optional[AccountRecord]:
        with _store_call("accounts.get"):
            row = db.session.get(Account, account_id)
        return _account_record(row) if row else None

    def create(self, realm: str, email: str, password_hash: str, role: str) -> AccountRecord:
        with _store_call("accounts.create"):
            row = Account(realm=realm, email=email, password_hash=password_hash, role=role)
            db.session.add(row)
            try:
                db.session.commit()
            except IntegrityError as exc:
                db.session.rollback()
                raise DuplicateAccount("Email already registered") from exc
            return _account_record(row)

    def update_password(self, account_id: int, password_hash: str, changed_at: datetime) -> None:
        with _store_call("accounts.update_password"):
            Account.query.filter_by(id=account_id).update(
                {"password_hash": password_hash, "password_changed_at": changed_at}
            )
            db.session.commit()

    def touch_last_login(self, account_id: int, when: datetime) -> None:
        with _store_call("accounts.touch_last_login"):
            Account.query.filter_by(id=account_id).update({"last_login_at": when})
            db.session.commit()


def _scope_column(scope: AttemptScope):
    return LoginAttempt.email if scope is AttemptScope.EMAIL else LoginAttempt.ip_address


class SqlAttemptStore:
    def append(self, attempt: AttemptRecord) -> None:
        with _store_call("login_attempts.append"):
            db.session.add(LoginAttempt(
                user_id=attempt.user_id,
                email=attempt.email,
                ip_address=attempt.ip_address,
                user_agent=(attempt.user_agent or "")[:255],
                success=attempt.success,
                attempted_at=attempt.attempted_at,
            ))
            db.session.commit()

    def _failures(self, scope: AttemptScope, value: str, since: datetime, until: datetime):
        return LoginAttempt.query.filter(
            _scope_column(scope) == value,
            LoginAttempt.success.is_(False),
            LoginAttempt.attempted_at >= since,
            LoginAttempt.attempted_at <= until,
        )

    def failure_times(self, scope: AttemptScope, value: str, since: datetime, until: datetime) -> List[datetime]:
        with _store_call("login_attempts.failure_times"):
            rows = (
                self._failures(scope, value, since, until)
                .with_entities(LoginAttempt.attempted_at)
                .order_by(LoginAttempt.attempted_at.asc())
                .all()
            )
        return [r[0] for r in rows]

    def count_failures(self, scope: AttemptScope, value: str, since: datetime, until: datetime) -> int:
        with _store_call("login_attempts.count_failures"):
            return self._failures(scope, value, since, until).count()

    def delete_before(self, cutoff: datetime) -> int:
        with _store_call("login_attempts.delete_before"):
            deleted = LoginAttempt.query.filter(LoginAttempt.attempted_at < cutoff).delete(synchronize_session=False)
            db.session.commit()
            return deleted

    def summary(self, since: datetime) -> dict:
        with _store_call("login_attempts.summary"):
            q = LoginAttempt.query.filter(LoginAttempt.attempted_at >= since)
            total = q.count()
            successful = q.filter(LoginAttempt.success.is_(True)).count()
            unique_emails = q.with_entities(func.count(func.distinct(LoginAttempt.email))).scalar() or 0
            unique_ips = q.with_entities(func.count(func.distinct(LoginAttempt.ip_address))).scalar() or 0
        return {
            "total_attempts": total,
            "successful_attempts": successful,
            "unique_emails": unique_emails,
            "unique_ips": unique_ips,
        }

    def top_failed_ips(self, since: datetime, limit: int) -> List[dict]:
        with _store_call("login_attempts.top_failed_ips"):
            failed_count = func.count(LoginAttempt.id).label("failed_count")
            rows = (
                db.session.query(LoginAttempt.ip_address, failed_count)
                .filter(LoginAttempt.attempted_at >= since, LoginAttempt.success.is_(False))
                .group_by(LoginAttempt.ip_address)
                .order_by(failed_count.desc())
                .limit(limit)
                .all()
            )
        return [{"ip_address": ip, "failed_count": count} for ip, count in rows]


class SqlCounterStore:
    """
    Fixed-window counters in ``rate_limit_counters``.

    Increments are single ``UPDATE ... SET count = count + 1`` statements so
    concurrent hits never lose updates; a missing row is inserted and a lost
    insert race falls back to the update.
    """

    def hit(self, key: str, decay_seconds: int, now: datetime) -> CounterState:
        expires = now + timedelta(seconds=decay_seconds)
        with _store_call("counters.hit"):
            for _ in range(_INSERT_RETRIES):
                result = db.session.execute(
                    update(RateLimitCounter)
                    .where(RateLimitCounter.key == key, RateLimitCounter.window_expires_at > now)
                    .values(count=RateLimitCounter.count + 1, updated_at=now)
                )
                if result.rowcount == 0:
                    # window is over: start a fresh one
                    result = db.session.execute(
                        update(RateLimitCounter)
                        .where(RateLimitCounter.key == key, RateLimitCounter.window_expires_at <= now)
                        .values(count=1, window_expires_at=expires, updated_at=now)
                    )
                if result.rowcount == 0:
                    db.session.add(RateLimitCounter(key=key, count=1, window_expires_at=expires, updated_at=now))
                    try:
                        db.session.commit()
                    except IntegrityError:
                        db.session.rollback()
                        continue
                else:
                    db.session.commit()

                row = RateLimitCounter.query.filter_by(key=key).first()
                return CounterState(row.count, row.window_expires_at)

        raise StoreUnavailable(f"Could not increment counter {key}")

    def get(self, key: str, now: datetime) -> Optional[CounterState]:
        with _store_call("counters.get"):
            row = RateLimitCounter.query.filter_by(key=key).first()
        if not row or row.window_expires_at <= now:
            return None
        return CounterState(row.count, row.window_expires_at)

    def clear(self, key: str) -> None:
        with _store_call("counters.clear"):
            RateLimitCounter.query.filter_by(key=key).delete(synchronize_session=False)
            db.session.commit()


class SqlPenaltyStore:
    def get(self, subject_key: str) -> PenaltyState:
        with _store_call("penalties.get"):
            row = ProgressiveLimitState.query.filter_by(subject_key=subject_key).first()
        if not row:
            return PenaltyState(0)
        return PenaltyState(row.level, row.last_escalated_at)

    def escalate(self, subject_key: str, now: datetime, decay_seconds: int) -> PenaltyState:
        with _store_call("penalties.escalate"):
            for _ in range(_INSERT_RETRIES):
                row = (
                    ProgressiveLimitState.query
                    .filter_by(subject_key=subject_key)
                    .with_for_update()
                    .first()
                )
                if not row:
                    row = ProgressiveLimitState(subject_key=subject_key, level=1, last_escalated_at=now)
                    db.session.add(row)
                elif (now - row.last_escalated_at).total_seconds() > decay_seconds:
                    row.level = 1
                    row.last_escalated_at = now
                else:
                    row.level += 1
                    row.last_escalated_at = now
                try:
                    db.session.commit()
                except IntegrityError:
                    db.session.rollback()
                    continue
                return PenaltyState(row.level, row.last_escalated_at)

        raise StoreUnavailable(f"Could not escalate {subject_key}")

    def reset(self, subject_key: str) -> None:
        with _store_call("penalties.reset"):
            ProgressiveLimitState.query.filter_by(subject_key=subject_key).delete(synchronize_session=False)
            db.session.commit()


class SqlAuditSink:
    def write(self, event: AuditEvent) -> None:
        row = AuditLog(
            event=event.event,
            subject=event.subject,
            severity=event.severity,
            realm=event.realm,
            ip=event.ip,
            user_agent=event.user_agent[:255] if event.user_agent else None,
            context_json=json.dumps(event.context, default=str) if event.context else None,
            timestamp=event.timestamp or utcnow(),
        )
        try:
            db.session.add(row)
            db.session.commit()
        except SQLAlchemyError:
            _rollback_quietly()
            raise


class SqlTokenIssuer:
    def issue(self, account: AccountRecord, context: AuthContext, abilities: List[str],
              name: str = "session", expires_at: Optional[datetime] = None) -> IssuedToken:
        if account.realm != context.realm:
            raise ValueError("Account does not belong to this context")
        if not belongs_to(context.realm, abilities, context):
            raise ValueError("Abilities must be namespaced to the token's context")

        plain_text = generate_token()
        with _store_call("tokens.issue"):
            row = AccessToken(
                account_id=account.id,
                realm=context.realm,
                name=name,
                token_hash=hash_token(plain_text),
                abilities=list(abilities),
                expires_at=expires_at,
            )
            db.session.add(row)
            db.session.commit()
            return IssuedToken(plain_text, _token_record(row))

    def authenticate(self, plain_text: str, context: AuthContext, now: datetime) -> Optional[TokenRecord]:
        if not plain_text:
            return None
        with _store_call("tokens.authenticate"):
            row = AccessToken.query.filter_by(token_hash=hash_token(plain_text), revoked=False).first()
            if not row:
                return None
            if row.expires_at is not None and row.expires_at <= now:
                return None
            if not belongs_to(row.realm, row.abilities, context):
                logger.warning("Token %s presented outside its realm %s", row.id, row.realm)
                return None

            row.last_used_at = now
            db.session.commit()
            return _token_record(row)

    def revoke(self, token_id: int) -> bool:
        with _store_call("tokens.revoke"):
            updated = AccessToken.query.filter_by(id=token_id, revoked=False).update({"revoked": True})
            db.session.commit()
            return updated > 0

    def revoke_all(self, account_id: int, except_token_id: Optional[int] = None) -> int:
        with _store_call("tokens.revoke_all"):
            q = AccessToken.query.filter_by(account_id=account_id, revoked=False)
            if except_token_id is not None:
                q = q.filter(AccessToken.id != except_token_id)
            updated = q.update({"revoked": True}, synchronize_session=False)
            db.session.commit()
            return updated
