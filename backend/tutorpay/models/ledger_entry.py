from datetime import datetime

from sqlalchemy import text

from tutorpay.extensions import db

ENTRY_TYPES = (
    "escrow_hold",
    "escrow_release",
    "refund",
    "platform_fee",
    "withdrawal",
    "withdrawal_completed",
)

ENTRY_STATUSES = ("pending", "completed", "failed")


class LedgerEntry(db.Model):
    """Append-only money movement. Never updated once written."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        # One completed entry per gateway reference; replays collide here.
        db.Index(
            "uq_ledger_entries_completed_reference",
            "gateway_reference",
            unique=True,
            sqlite_where=text("status = 'completed' AND gateway_reference IS NOT NULL"),
            postgresql_where=text("status = 'completed' AND gateway_reference IS NOT NULL"),
        ),
        db.CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="BDT")
    status = db.Column(db.String(16), nullable=False, default="completed")

    related_assignment_id = db.Column(db.String(64), nullable=True, index=True)
    gateway_reference = db.Column(db.String(128), nullable=True, index=True)

    meta = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "type": self.type,
            "amount": float(self.amount or 0),
            "currency": self.currency or "BDT",
            "status": self.status,
            "related_assignment_id": self.related_assignment_id,
            "gateway_reference": self.gateway_reference or "",
            "meta": self.meta or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
