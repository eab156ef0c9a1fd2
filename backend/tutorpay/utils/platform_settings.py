from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from tutorpay.extensions import db
from tutorpay.models import AuditLog, PlatformSettings, User
from tutorpay.utils.settlement import FeeConfig

PLATFORM_EMAIL = "platform@tutorpay.local"


def current_settings() -> PlatformSettings | None:
    return PlatformSettings.query.order_by(PlatformSettings.id.asc()).first()


def load_fee_config() -> FeeConfig:
    """Fee rate and floor as stored right now. Read per settlement, never cached."""
    row = current_settings()
    if row is None:
        return FeeConfig.of(current_app.config.get("PLATFORM_FEE_RATE", 0) or 0, 0)
    return FeeConfig.of(row.platform_fee_rate or 0, row.min_transaction_fee or 0)


def update_fee_settings(*, platform_fee_rate=None, min_transaction_fee=None, admin_id: int | None = None) -> PlatformSettings:
    existing = load_fee_config()
    fees = FeeConfig.of(
        existing.platform_fee_rate if platform_fee_rate is None else platform_fee_rate,
        existing.min_transaction_fee if min_transaction_fee is None else min_transaction_fee,
    )
    row = current_settings()
    if row is None:
        row = PlatformSettings()
        db.session.add(row)
    before = {"platform_fee_rate": str(existing.platform_fee_rate), "min_transaction_fee": str(existing.min_transaction_fee)}
    row.platform_fee_rate = fees.platform_fee_rate
    row.min_transaction_fee = fees.min_transaction_fee
    row.updated_by = admin_id
    row.updated_at = datetime.utcnow()
    AuditLog.record(
        "fee_settings_update",
        actor_user_id=admin_id,
        target_type="platform_settings",
        meta={
            "before": before,
            "after": {"platform_fee_rate": str(fees.platform_fee_rate), "min_transaction_fee": str(fees.min_transaction_fee)},
        },
    )
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info("Fee settings updated by admin=%s rate=%s min_fee=%s", admin_id, fees.platform_fee_rate, fees.min_transaction_fee)
    return row


def platform_user_id() -> int:
    """Account that receives platform fees.

    PLATFORM_USER_ID wins when set, then the first "platform" user, then the
    first admin. If none exists a dedicated platform user is created.
    """
    raw = str(current_app.config.get("PLATFORM_USER_ID") or "").strip()
    if raw.isdigit():
        return int(raw)
    for role in ("platform", "admin"):
        u = User.query.filter_by(role=role).order_by(User.id.asc()).first()
        if u:
            return int(u.id)
    u = User(name="Platform", email=PLATFORM_EMAIL, role="platform")
    try:
        db.session.add(u)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        u = User.query.filter_by(email=PLATFORM_EMAIL).first()
        if not u:
            raise
    return int(u.id)
