from datetime import datetime

from tutorpay.extensions import db

UNPAID = "unpaid"
HELD = "held"
RELEASED = "released"
REFUNDED = "refunded"
SPLIT_SETTLED = "split_settled"
CANCELLED = "cancelled"

TERMINAL_STATES = (RELEASED, REFUNDED, SPLIT_SETTLED, CANCELLED)


class EscrowRecord(db.Model):
    __tablename__ = "escrow_records"

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.String(64), nullable=False, unique=True, index=True)

    student_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    tutor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Agreed amount until funded; fixed at hold time afterwards
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="BDT")
    state = db.Column(db.String(16), nullable=False, default=UNPAID, index=True)

    gateway_invoice_id = db.Column(db.String(128), nullable=True, index=True)
    resolution_meta = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    held_at = db.Column(db.DateTime, nullable=True)
    settled_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self):
        return {
            "id": int(self.id),
            "assignment_id": self.assignment_id,
            "student_id": int(self.student_id),
            "tutor_id": int(self.tutor_id) if self.tutor_id else None,
            "amount": float(self.amount or 0),
            "currency": self.currency or "BDT",
            "state": self.state,
            "gateway_invoice_id": self.gateway_invoice_id or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "held_at": self.held_at.isoformat() if self.held_at else None,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
        }
