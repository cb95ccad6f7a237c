from models.db import db
from utils.clock import utcnow


class RateLimitCounter(db.Model):
    __tablename__ = "rate_limit_counters"

    id = db.Column(db.Integer, primary_key=True)
    # e.g. "auth:ip:10.0.0.1", "auth:global", "api:user:7"
    key = db.Column(db.String(191), unique=True, nullable=False, index=True)

    count = db.Column(db.Integer, default=0, nullable=False)
    window_expires_at = db.Column(db.DateTime, nullable=False)

    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ProgressiveLimitState(db.Model):
    __tablename__ = "progressive_limits"

    id = db.Column(db.Integer, primary_key=True)
    subject_key = db.Column(db.String(191), unique=True, nullable=False, index=True)

    level = db.Column(db.Integer, default=0, nullable=False)
    last_escalated_at = db.Column(db.DateTime, nullable=False)
