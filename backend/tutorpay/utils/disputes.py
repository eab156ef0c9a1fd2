from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from tutorpay import escrow
from tutorpay.errors import EscrowNotHeldError, InvalidRulingError
from tutorpay.extensions import db
from tutorpay.models import AuditLog, EscrowRecord
from tutorpay.models.escrow_record import CANCELLED, UNPAID
from tutorpay.utils import settlement
from tutorpay.utils.platform_settings import load_fee_config


@dataclass(frozen=True)
class DisputeRuling:
    resolution_type: str
    student_percent: object = None
    notes: str = ""

    @classmethod
    def from_payload(cls, payload: dict) -> "DisputeRuling":
        payload = payload or {}
        kind = str(payload.get("resolution_type") or payload.get("resolutionType") or "").strip().lower()
        if kind not in settlement.RESOLUTION_TYPES:
            raise InvalidRulingError(f"Invalid resolution type: {kind or 'missing'}")
        pct = payload.get("student_percent", payload.get("studentPercent"))
        notes = str(payload.get("reason") or payload.get("notes") or payload.get("resolution_notes") or "").strip()
        return cls(resolution_type=kind, student_percent=pct, notes=notes[:1000])


def _summary(record: EscrowRecord, breakdown: settlement.SettlementBreakdown | None, ruling: DisputeRuling) -> dict:
    if breakdown is None:
        return {
            "assignment_id": record.assignment_id,
            "state": record.state,
            "resolution_type": ruling.resolution_type,
            "no_financial_transfer": True,
            "escrow_amount": 0.0,
            "student_amount": 0.0,
            "tutor_amount": 0.0,
            "platform_fee": 0.0,
        }
    out = {"assignment_id": record.assignment_id, "state": record.state, "no_financial_transfer": False}
    out.update(breakdown.to_dict())
    return out


def preview(record: EscrowRecord, ruling: DisputeRuling) -> dict:
    """What resolving now would pay out, without moving anything."""
    if record.state == UNPAID:
        return _summary(record, None, ruling)
    if record.is_terminal:
        raise EscrowNotHeldError(state=record.state)
    breakdown = settlement.compute(ruling.resolution_type, record.amount, load_fee_config(), ruling.student_percent)
    return _summary(record, breakdown, ruling)


def resolve(record: EscrowRecord, ruling: DisputeRuling, *, admin_id: int | None = None) -> dict:
    action = f"resolve_dispute_{ruling.resolution_type}"

    if record.state == UNPAID:
        # Nothing was ever paid in; close the case without touching wallets.
        try:
            escrow.transition(record, UNPAID, CANCELLED, {"ruling": ruling.resolution_type, "notes": ruling.notes, "no_financial_transfer": True})
            AuditLog.record(
                action,
                actor_user_id=admin_id,
                target_type="escrow",
                target_id=record.assignment_id,
                meta={"no_financial_transfer": True, "notes": ruling.notes},
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.info("Dispute on unpaid assignment=%s closed without transfer", record.assignment_id)
        return _summary(record, None, ruling)

    meta = {"notes": ruling.notes, "admin_id": admin_id}
    if ruling.resolution_type == settlement.SPLIT:
        meta["student_percent"] = str(settlement.clamp_percent(ruling.student_percent))
    breakdown = escrow.resolve_held(
        record,
        ruling.resolution_type,
        student_percent=ruling.student_percent,
        actor_id=admin_id,
        action=action,
        meta=meta,
    )
    return _summary(record, breakdown, ruling)
