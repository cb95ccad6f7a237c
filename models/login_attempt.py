from models.db import db
from utils.clock import utcnow


class LoginAttempt(db.Model):
    __tablename__ = "login_attempts"
    __table_args__ = (
        db.Index("ix_login_attempts_email_attempted_at", "email", "attempted_at"),
        db.Index("ix_login_attempts_ip_attempted_at", "ip_address", "attempted_at"),
        db.Index("ix_login_attempts_user_attempted_at", "user_id", "attempted_at"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # weak reference: no FK so attempts outlive deleted accounts
    user_id = db.Column(db.Integer, nullable=True)

    # We track both email + ip to stop both targeted and broad attacks
    email = db.Column(db.String(255), nullable=False)
    ip_address = db.Column(db.String(64), nullable=False)
    user_agent = db.Column(db.String(255), nullable=False, default="")

    success = db.Column(db.Boolean, nullable=False, default=False)
    attempted_at = db.Column(db.DateTime, default=utcnow, nullable=False)
