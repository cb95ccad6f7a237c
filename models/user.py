from models.db import db
from security.context import AccountStatus
from utils.clock import utcnow


class Account(db.Model):
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("realm", "email", name="uq_accounts_realm_email"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # "central" or "tenant:<tenant_id>"
    realm = db.Column(db.String(100), nullable=False, index=True)
    # stored normalised (stripped + lowercased) and matched exactly
    email = db.Column(db.String(255), nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(50), nullable=False, default="member")  # e.g. super_admin, admin, owner, member
    status = db.Column(
        db.Enum(AccountStatus, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        nullable=False,
        default=AccountStatus.ACTIVE,
    )

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)
    password_changed_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    tokens = db.relationship("AccessToken", back_populates="account", cascade="all, delete-orphan")
