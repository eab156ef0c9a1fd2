from __future__ import annotations

from flask import Blueprint, jsonify, request

from tutorpay.models import WithdrawalRequest
from tutorpay.utils import ledger
from tutorpay.utils.authz import current_user, is_admin
from tutorpay.utils.wallets import complete_withdrawal, get_or_create_wallet, request_withdrawal

wallets_bp = Blueprint("wallets_bp", __name__, url_prefix="/api/wallet")
admin_withdrawals_bp = Blueprint("admin_withdrawals_bp", __name__, url_prefix="/api/admin/withdrawals")


@wallets_bp.get("")
def my_wallet():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    w = get_or_create_wallet(int(u.id))
    return jsonify({"ok": True, "wallet": w.to_dict()}), 200


@wallets_bp.get("/ledger")
def my_ledger():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    try:
        limit = int(request.args.get("limit") or 100)
    except ValueError:
        limit = 100
    rows = ledger.list_by_user(int(u.id), limit=limit)
    return jsonify([t.to_dict() for t in rows]), 200


@wallets_bp.post("/withdrawals")
def withdraw():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    payload = request.get_json(silent=True) or {}
    wr = request_withdrawal(u, payload.get("amount"), payload.get("bank_details") or payload.get("bankDetails"))
    w = get_or_create_wallet(int(u.id))
    return jsonify({"ok": True, "withdrawal": wr.to_dict(), "wallet": w.to_dict()}), 201


@wallets_bp.get("/withdrawals")
def my_withdrawals():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    rows = WithdrawalRequest.query.filter_by(user_id=int(u.id)).order_by(WithdrawalRequest.requested_at.desc()).limit(100).all()
    return jsonify([r.to_dict() for r in rows]), 200


@admin_withdrawals_bp.get("")
def admin_list_withdrawals():
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Admin required"}), 403
    status = (request.args.get("status") or "PENDING").strip().upper()
    rows = WithdrawalRequest.query.filter_by(status=status).order_by(WithdrawalRequest.requested_at.asc()).limit(200).all()
    return jsonify([r.to_dict() for r in rows]), 200


@admin_withdrawals_bp.post("/<transaction_id>/complete")
def admin_complete_withdrawal(transaction_id: str):
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Admin required"}), 403
    wr = complete_withdrawal(transaction_id, admin_id=int(u.id))
    return jsonify({"ok": True, "withdrawal": wr.to_dict()}), 200
