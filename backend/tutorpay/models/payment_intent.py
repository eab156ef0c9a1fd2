from datetime import datetime

from tutorpay.extensions import db


class PaymentIntent(db.Model):
    """Pending checkout for an assignment, keyed by the gateway invoice id."""

    __tablename__ = "payment_intents"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    assignment_id = db.Column(db.String(64), nullable=False, index=True)

    provider = db.Column(db.String(32), nullable=False, default="uddoktapay")
    reference = db.Column(db.String(128), nullable=False, unique=True)
    amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="BDT")
    checkout_url = db.Column(db.String(512), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="pending")  # pending|completed|failed|cancelled|refunded|expired|orphaned

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    verified_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column(db.Text, nullable=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "assignment_id": self.assignment_id,
            "provider": self.provider,
            "reference": self.reference,
            "amount": float(self.amount or 0),
            "currency": self.currency,
            "checkout_url": self.checkout_url or "",
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "meta": self.meta or "",
        }
