from __future__ import annotations

from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint
from .extensions import db


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class HostKeyFingerprint(db.Model):
    """One (fingerprint, host) association of the persistent fingerprint database."""
    __tablename__ = "host_key_fingerprint"
    __table_args__ = (
        UniqueConstraint("fingerprint", "host", "port", name="uq_fingerprint_host_port"),
    )

    id = db.Column(db.Integer, primary_key=True)
    fingerprint = db.Column(db.String(128), nullable=False, index=True)
    host = db.Column(db.String(255), nullable=False, index=True)
    port = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
