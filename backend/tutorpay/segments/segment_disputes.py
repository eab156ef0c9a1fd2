from __future__ import annotations

from flask import Blueprint, jsonify, request

from tutorpay import escrow
from tutorpay.models.escrow_record import HELD
from tutorpay.utils import disputes, ledger, settlement
from tutorpay.utils.authz import current_user, is_admin

disputes_bp = Blueprint("disputes_bp", __name__, url_prefix="/api/admin/disputes")


@disputes_bp.get("/<assignment_id>")
def dispute_detail(assignment_id: str):
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Admin required"}), 403
    record = escrow.require_escrow(assignment_id)
    out = {
        "status": "success",
        "escrow": record.to_dict(),
        "escrow_amount": float(record.amount or 0) if record.state == HELD else 0.0,
        "financially_actionable": record.state == HELD,
        "ledger": [e.to_dict() for e in ledger.list_by_assignment(record.assignment_id)],
    }

    # ?resolution_type=split&student_percent=30 previews one ruling, otherwise all of them
    if request.args.get("resolution_type"):
        ruling = disputes.DisputeRuling.from_payload(request.args.to_dict())
        out["preview"] = disputes.preview(record, ruling)
    elif record.state == HELD:
        out["previews"] = {
            kind: disputes.preview(record, disputes.DisputeRuling(resolution_type=kind))
            for kind in settlement.RESOLUTION_TYPES
        }
    return jsonify(out), 200


@disputes_bp.post("/<assignment_id>/resolve")
def resolve_dispute(assignment_id: str):
    u = current_user()
    if not is_admin(u):
        return jsonify({"message": "Admin required"}), 403
    ruling = disputes.DisputeRuling.from_payload(request.get_json(silent=True) or {})
    record = escrow.require_escrow(assignment_id)
    summary = disputes.resolve(record, ruling, admin_id=int(u.id))
    return jsonify({"status": "success", "message": "Dispute resolved", "data": summary}), 200
