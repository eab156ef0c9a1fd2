from __future__ import annotations

from flask import Blueprint, jsonify, request

from tutorpay import escrow
from tutorpay.models.escrow_record import HELD
from tutorpay.utils import ledger
from tutorpay.utils.authz import current_user, is_admin

escrow_bp = Blueprint("escrow_bp", __name__, url_prefix="/api/escrow")


def _can_view(u, record) -> bool:
    if is_admin(u):
        return True
    return int(u.id) in (int(record.student_id), int(record.tutor_id or 0))


@escrow_bp.post("")
def open_escrow():
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    payload = request.get_json(silent=True) or {}

    student_id = payload.get("student_id") or u.id
    try:
        student_id = int(student_id)
        tutor_id = int(payload["tutor_id"]) if payload.get("tutor_id") else None
    except (TypeError, ValueError):
        return jsonify({"status": "failed", "message": "student_id and tutor_id must be integers"}), 400
    if not is_admin(u) and student_id != int(u.id):
        return jsonify({"status": "failed", "message": "Forbidden"}), 403

    record = escrow.open_escrow(
        assignment_id=payload.get("assignment_id") or payload.get("assignmentId"),
        student_id=student_id,
        tutor_id=tutor_id,
        amount=payload.get("amount") or 0,
    )
    return jsonify({"status": "success", "escrow": record.to_dict()}), 201


@escrow_bp.get("/<assignment_id>")
def get_escrow(assignment_id: str):
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    record = escrow.require_escrow(assignment_id)
    if not _can_view(u, record):
        return jsonify({"status": "failed", "message": "Forbidden"}), 403
    entries = ledger.list_by_assignment(record.assignment_id)
    return jsonify({"status": "success", "escrow": record.to_dict(), "ledger": [e.to_dict() for e in entries]}), 200


@escrow_bp.post("/<assignment_id>/accept-delivery")
def accept_delivery(assignment_id: str):
    u = current_user()
    if not u:
        return jsonify({"message": "Unauthorized"}), 401
    record = escrow.require_escrow(assignment_id)
    if int(record.student_id) != int(u.id):
        return jsonify({"status": "failed", "message": "Only the student can accept delivery"}), 403
    breakdown = escrow.release(record, actor_id=int(u.id))
    return jsonify({"status": "success", "message": "Escrow released", "settlement": breakdown.to_dict()}), 200


@escrow_bp.post("/<assignment_id>/cancel")
def cancel_escrow(assignment_id: str):
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Admin required"}), 403
    payload = request.get_json(silent=True) or {}
    record = escrow.require_escrow(assignment_id)
    if record.state == HELD:
        breakdown = escrow.refund(record, actor_id=int(u.id), source="admin_cancel")
        return jsonify({"status": "success", "message": "Escrow refunded", "settlement": breakdown.to_dict()}), 200
    escrow.cancel(record, actor_id=int(u.id), reason=str(payload.get("reason") or "")[:500])
    return jsonify({"status": "success", "message": "Escrow cancelled", "escrow": record.to_dict()}), 200
