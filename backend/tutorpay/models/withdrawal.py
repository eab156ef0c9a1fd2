from datetime import datetime

from tutorpay.extensions import db


class WithdrawalRequest(db.Model):
    __tablename__ = "withdrawal_requests"

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING|COMPLETED

    account_name = db.Column(db.String(120), nullable=False, default="")
    account_number = db.Column(db.String(64), nullable=False, default="")
    bank_name = db.Column(db.String(120), nullable=False, default="")
    branch_name = db.Column(db.String(120), nullable=False, default="")
    routing_number = db.Column(db.String(32), nullable=False, default="")

    requested_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    completed_by = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "transaction_id": self.transaction_id,
            "user_id": int(self.user_id),
            "amount": float(self.amount or 0),
            "status": self.status,
            "bank_name": self.bank_name,
            "account_last4": (self.account_number or "")[-4:],
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
