from __future__ import annotations

from ..extensions import db
from orderdesk.time_utils import to_utc_z, utcnow

AUDIT_ACTIONS = ("INSERT", "UPDATE", "DELETE", "SELECT", "LOGIN", "LOGOUT", "ERROR")


class AuditEntry(db.Model):
    """
    Forensic before/after record of a sensitive mutation.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    No foreign keys: entries must outlive whatever they describe.
    """
    __tablename__ = "audit_entries"
    __table_args__ = (
        db.Index("ix_audit_entries_table_record", "table_name", "record_id"),
        db.Index("ix_audit_entries_actor", "actor_id"),
        db.Index("ix_audit_entries_created", "created_at"),
        db.CheckConstraint(
            "action IN ('INSERT', 'UPDATE', 'DELETE', 'SELECT', 'LOGIN', 'LOGOUT', 'ERROR')",
            name="ck_audit_entries_action",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(36), nullable=False, unique=True)

    table_name = db.Column(db.String(64), nullable=False)
    record_id = db.Column(db.Integer, nullable=True)
    action = db.Column(db.String(16), nullable=False)

    before = db.Column(db.JSON, nullable=True)
    after = db.Column(db.JSON, nullable=True)

    # Client context
    actor_id = db.Column(db.Integer, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    endpoint = db.Column(db.String(255), nullable=True)
    http_method = db.Column(db.String(8), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "public_id": self.public_id,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "action": self.action,
            "before": self.before,
            "after": self.after,
            "actor_id": self.actor_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "endpoint": self.endpoint,
            "http_method": self.http_method,
            "created_at": to_utc_z(self.created_at),
        }
