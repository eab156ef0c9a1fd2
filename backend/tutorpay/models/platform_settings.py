from datetime import datetime

from tutorpay.extensions import db


class PlatformSettings(db.Model):
    __tablename__ = "platform_settings"

    id = db.Column(db.Integer, primary_key=True)

    platform_fee_rate = db.Column(db.Numeric(6, 4), nullable=False, default=0.1)
    min_transaction_fee = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    updated_by = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "platform_fee_rate": float(self.platform_fee_rate or 0),
            "min_transaction_fee": float(self.min_transaction_fee or 0),
            "updated_by": int(self.updated_by) if self.updated_by else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
