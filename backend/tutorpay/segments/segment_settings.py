from __future__ import annotations

from flask import Blueprint, jsonify, request

from tutorpay.utils.authz import current_user, is_admin
from tutorpay.utils.platform_settings import current_settings, load_fee_config, update_fee_settings

settings_bp = Blueprint("settings_bp", __name__, url_prefix="/api/admin/settings")


@settings_bp.get("/fees")
def get_fee_settings():
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Admin required"}), 403
    row = current_settings()
    if row is not None:
        return jsonify({"ok": True, "settings": row.to_dict()}), 200
    fees = load_fee_config()
    return jsonify({
        "ok": True,
        "settings": {
            "platform_fee_rate": float(fees.platform_fee_rate),
            "min_transaction_fee": float(fees.min_transaction_fee),
            "updated_by": None,
            "updated_at": None,
        },
    }), 200


@settings_bp.put("/fees")
def put_fee_settings():
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Admin required"}), 403
    payload = request.get_json(silent=True) or {}
    row = update_fee_settings(
        platform_fee_rate=payload.get("platform_fee_rate", payload.get("platformFeeRate")),
        min_transaction_fee=payload.get("min_transaction_fee", payload.get("minTransactionFee")),
        admin_id=int(u.id),
    )
    return jsonify({"ok": True, "settings": row.to_dict()}), 200
