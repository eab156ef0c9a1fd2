import json
from datetime import datetime

from tutorpay.extensions import db


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    # resolve_dispute_refund, fee_settings_update, wallet_anomaly, ...
    action = db.Column(db.String(64), nullable=False, index=True)
    target_type = db.Column(db.String(64), nullable=True)
    target_id = db.Column(db.String(64), nullable=True)
    meta = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @classmethod
    def record(cls, action: str, *, actor_user_id=None, target_type=None, target_id=None, meta=None) -> "AuditLog":
        row = cls(
            actor_user_id=int(actor_user_id) if actor_user_id is not None else None,
            action=action,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
            meta=json.dumps(meta, default=str) if meta is not None else None,
        )
        db.session.add(row)
        return row

    def to_dict(self):
        return {
            "id": int(self.id),
            "actor_user_id": int(self.actor_user_id) if self.actor_user_id else None,
            "action": self.action,
            "target_type": self.target_type or "",
            "target_id": self.target_id,
            "meta": self.meta or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
