from __future__ import annotations

from flask import Blueprint, jsonify, request

from tutorpay.jobs.payment_expiry import expire_stale_intents
from tutorpay.jobs.wallet_reconciler import reconcile_wallets
from tutorpay.utils.authz import current_user, is_admin

recon_bp = Blueprint("recon_bp", __name__, url_prefix="/api/admin/reconcile")


@recon_bp.post("")
def run_recon():
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Admin required"}), 403
    data = request.get_json(silent=True) or {}
    try:
        limit = int(data.get("limit") or 500)
    except (TypeError, ValueError):
        limit = 500
    res = reconcile_wallets(limit=limit)
    if data.get("expire_intents"):
        res["intents"] = expire_stale_intents()
    return jsonify(res), 200
