from datetime import datetime

from tutorpay.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)

    # student | tutor | admin | platform
    role = db.Column(db.String(32), nullable=False, default="student")

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() == "admin"

    @property
    def is_tutor(self) -> bool:
        return (self.role or "").strip().lower() == "tutor"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role or "student",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
