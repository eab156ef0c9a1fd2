from datetime import datetime

from tutorpay.extensions import db


class IdempotencyKey(db.Model):
    """Client-supplied Idempotency-Key and the response it produced."""

    __tablename__ = "idempotency_keys"
    __table_args__ = (db.UniqueConstraint("user_id", "key", name="uq_idempotency_keys_user_key"),)

    id = db.Column(db.Integer, primary_key=True)

    key = db.Column(db.String(128), nullable=False)
    user_id = db.Column(db.Integer, nullable=True)
    route = db.Column(db.String(128), nullable=False, default="")
    request_hash = db.Column(db.String(64), nullable=False, default="")

    response_json = db.Column(db.Text, nullable=True)
    status_code = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def completed(self) -> bool:
        return self.status_code is not None
