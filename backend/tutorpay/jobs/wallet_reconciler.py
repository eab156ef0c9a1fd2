from __future__ import annotations

from datetime import datetime

from flask import current_app

from tutorpay.extensions import db
from tutorpay.models import AuditLog, Wallet
from tutorpay.utils.ledger import balances_from_ledger
from tutorpay.utils.money import to_money

BUCKETS = ("available_balance", "escrow_balance", "total_earnings")


def reconcile_wallets(*, limit: int = 500, tolerance=0) -> dict:
    """Detect wallet anomalies (ledger vs stored buckets).

    This does NOT auto-correct balances. Each anomalous wallet gets one
    wallet_anomaly AuditLog row so it is visible to admins.
    """
    checked = 0
    anomalies = []
    now = datetime.utcnow()
    tol = to_money(tolerance)

    wallets = Wallet.query.order_by(Wallet.id.asc()).limit(int(limit)).all()
    for w in wallets:
        checked += 1
        expected = balances_from_ledger(int(w.user_id))

        issues = []
        stored = {}
        for bucket in BUCKETS:
            stored[bucket] = to_money(getattr(w, bucket) or 0)
            if abs(stored[bucket] - expected[bucket]) > tol:
                issues.append(f"{bucket}_mismatch")
            if bucket != "total_earnings" and stored[bucket] < 0:
                issues.append(f"negative_{bucket}")
        if not issues:
            continue

        meta = {
            "issues": issues,
            "wallet_id": int(w.id),
            "user_id": int(w.user_id),
            "stored": {k: str(v) for k, v in stored.items()},
            "expected": {k: str(v) for k, v in expected.items()},
            "at": now.isoformat(),
        }
        anomalies.append(meta)
        AuditLog.record("wallet_anomaly", target_type="wallet", target_id=int(w.id), meta=meta)
        current_app.logger.warning("Wallet anomaly user=%s issues=%s", w.user_id, ",".join(issues))

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return {"checked": checked, "anomalies": len(anomalies), "details": anomalies}
