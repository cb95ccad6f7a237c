from models.db import db
from utils.clock import utcnow


class AccessToken(db.Model):
    __tablename__ = "access_tokens"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    realm = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(100), nullable=False, default="session")

    # store only hashed token in DB (never store raw token)
    token_hash = db.Column(db.String(128), unique=True, nullable=False, index=True)
    abilities = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    revoked = db.Column(db.Boolean, default=False, nullable=False)

    account = db.relationship("Account", back_populates="tokens")
