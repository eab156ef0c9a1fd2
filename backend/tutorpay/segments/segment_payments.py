from __future__ import annotations

from flask import Blueprint, current_app, jsonify, redirect, request

from tutorpay import escrow
from tutorpay.errors import EscrowError
from tutorpay.payments import service
from tutorpay.utils.authz import current_user
from tutorpay.utils.gateway_client import extract_invoice_id
from tutorpay.utils.idempotency import lookup_response, release_key, store_response

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")


@payments_bp.post("/checkout")
def checkout():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401

    payload = request.get_json(silent=True) or {}
    assignment_id = str(payload.get("assignment_id") or payload.get("assignmentId") or "").strip()
    if not assignment_id:
        return jsonify({"status": "failed", "message": "assignment_id is required"}), 400

    record = escrow.require_escrow(assignment_id)
    if int(record.student_id) != int(u.id):
        return jsonify({"status": "failed", "message": "Only the student can pay for this assignment"}), 403

    idem = lookup_response(int(u.id), "/api/payments/checkout", payload)
    if idem is not None and idem[0] != "miss":
        return jsonify(idem[1]), idem[2]
    row = idem[1] if idem is not None else None

    try:
        result = service.create_checkout(record, u, amount=payload.get("amount"), method=str(payload.get("method") or ""))
    except Exception:
        if row is not None:
            release_key(row)
        raise

    body = {"status": "success", "message": "Payment checkout initialized", "data": result}
    if row is not None:
        store_response(row, body, 201)
    return jsonify(body), 201


@payments_bp.route("/verify", methods=["GET", "POST"])
def verify():
    body = request.get_json(silent=True) or {}
    invoice_id = (
        (request.args.get("invoice_id") or "").strip()
        or str(body.get("invoice_id") or "").strip()
        or (request.args.get("invoiceId") or "").strip()
        or str(body.get("invoiceId") or "").strip()
    )
    result = service.verify_and_apply(invoice_id, source="manual_verify")
    return jsonify({"status": "success", "message": "Payment verification completed", "data": result}), 200


@payments_bp.get("/callback")
def callback():
    """Gateway redirect after the payer finishes. Always lands on the frontend."""
    invoice_id = (
        extract_invoice_id(request.args.get("invoice_id"))
        or extract_invoice_id(request.args.get("invoiceId"))
    )
    assignment_id = (request.args.get("assignment_id") or "").strip() or None
    payment_state = "failed"
    try:
        if invoice_id:
            result = service.verify_and_apply(invoice_id, source="gateway_redirect")
            assignment_id = result.get("assignment_id") or assignment_id
            payment_state = result.get("payment_state") or "failed"
    except EscrowError as e:
        current_app.logger.warning("Payment callback for invoice %s failed: %s", invoice_id, e)
    return redirect(service.frontend_redirect_url(assignment_id, payment_state, invoice_id))


@payments_bp.get("/cancel")
def cancel():
    invoice_id = (
        extract_invoice_id(request.args.get("invoice_id"))
        or extract_invoice_id(request.args.get("invoiceId"))
    )
    assignment_id = (request.args.get("assignment_id") or "").strip() or None
    assignment_id = service.mark_cancelled(invoice_id, assignment_id)
    return redirect(service.frontend_redirect_url(assignment_id, "cancelled", invoice_id))


@payments_bp.post("/webhook")
def webhook():
    payload = request.get_json(silent=True) or {}
    result = service.handle_webhook(request.headers, payload)
    return jsonify({"status": "success", "message": "Webhook processed", "data": result}), 200
