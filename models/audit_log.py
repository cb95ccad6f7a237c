from models.db import db
from utils.clock import utcnow


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    event = db.Column(db.String(80), nullable=False, index=True)  # e.g. login_failed, rate_limit_exceeded
    subject = db.Column(db.String(255), nullable=True)            # email, account id or ip
    severity = db.Column(db.String(16), nullable=False, default="info")
    realm = db.Column(db.String(100), nullable=True)              # "central" or "tenant:<id>"

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    context_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
