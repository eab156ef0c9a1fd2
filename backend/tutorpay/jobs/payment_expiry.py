from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app

from tutorpay.extensions import db
from tutorpay.models import PaymentIntent


def expire_stale_intents(*, older_than_minutes: int | None = None, now: datetime | None = None) -> dict:
    """Mark abandoned pending checkouts as expired.

    Only the intent row changes. A payment that completes after expiry is
    still applied when its webhook or verify call arrives.
    """
    ttl = older_than_minutes if older_than_minutes is not None else current_app.config.get("PAYMENT_INTENT_TTL_MINUTES", 60)
    cutoff = (now or datetime.utcnow()) - timedelta(minutes=max(1, int(ttl)))
    try:
        expired = PaymentIntent.query.filter(
            PaymentIntent.status == "pending",
            PaymentIntent.created_at < cutoff,
        ).update({PaymentIntent.status: "expired"}, synchronize_session=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    if expired:
        current_app.logger.info("Expired %s stale payment intents older than %s", expired, cutoff.isoformat())
    return {"expired": int(expired or 0), "cutoff": cutoff.isoformat()}
