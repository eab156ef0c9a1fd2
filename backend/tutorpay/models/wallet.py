from datetime import datetime

from tutorpay.extensions import db


class Wallet(db.Model):
    __tablename__ = "wallets"
    __table_args__ = (
        db.CheckConstraint("available_balance >= 0", name="ck_wallets_available_non_negative"),
        db.CheckConstraint("escrow_balance >= 0", name="ck_wallets_escrow_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    available_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    # Funds held on this account's behalf (escrow), never withdrawable
    escrow_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_earnings = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="BDT")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "user_id": int(self.user_id),
            "available_balance": float(self.available_balance or 0),
            "escrow_balance": float(self.escrow_balance or 0),
            "total_earnings": float(self.total_earnings or 0),
            "currency": self.currency or "BDT",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
