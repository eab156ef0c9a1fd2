"""Escrow lifecycle for assignment payments.

An escrow record moves ``unpaid -> held`` when the gateway confirms payment and
then ``held -> released | refunded | split_settled`` exactly once. Unfunded
records can only be cancelled. Every transition out of a state is a
conditional UPDATE on that state, so of two concurrent resolutions only one
ever claims the record; the other gets EscrowNotHeldError and moves no money.

Funds for a held escrow sit in the student's ``escrow_balance`` bucket.
"""

from __future__ import annotations

import json
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from tutorpay.errors import (
    DuplicateReferenceError,
    EscrowNotFoundError,
    EscrowNotHeldError,
    InsufficientFundsError,
    InvalidRulingError,
    InvalidTransitionError,
    LedgerInvariantError,
)
from tutorpay.extensions import db
from tutorpay.models import AuditLog, EscrowRecord, PaymentIntent
from tutorpay.models.escrow_record import CANCELLED, HELD, REFUNDED, RELEASED, SPLIT_SETTLED, UNPAID
from tutorpay.utils import ledger, settlement, wallets
from tutorpay.utils.money import ZERO, positive_money, to_money
from tutorpay.utils.platform_settings import load_fee_config, platform_user_id

ORPHANED = "orphaned"

TARGET_STATES = {
    settlement.RELEASE: RELEASED,
    settlement.REFUND: REFUNDED,
    settlement.SPLIT: SPLIT_SETTLED,
}


def _now() -> datetime:
    return datetime.utcnow()


def get_escrow(assignment_id) -> EscrowRecord | None:
    if assignment_id is None or not str(assignment_id).strip():
        return None
    return EscrowRecord.query.filter_by(assignment_id=str(assignment_id).strip()).first()


def require_escrow(assignment_id) -> EscrowRecord:
    record = get_escrow(assignment_id)
    if not record:
        raise EscrowNotFoundError(f"No escrow for assignment {assignment_id}")
    return record


def open_escrow(*, assignment_id, student_id: int, tutor_id: int | None = None, amount=0, currency: str | None = None) -> EscrowRecord:
    """Create the unpaid record for an assignment, or update its terms while still unpaid."""
    aid = str(assignment_id or "").strip()
    if not aid:
        raise EscrowNotFoundError("assignment_id is required")
    agreed = to_money(amount or 0)
    record = get_escrow(aid)
    if record and record.state != UNPAID:
        return record
    if record is None:
        record = EscrowRecord(
            assignment_id=aid,
            student_id=int(student_id),
            currency=currency or current_app.config.get("PAYMENT_CURRENCY", "BDT"),
        )
        db.session.add(record)
    record.tutor_id = int(tutor_id) if tutor_id else record.tutor_id
    record.amount = max(agreed, ZERO)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        record = get_escrow(aid)
        if not record:
            raise
    return record


def _hold_result(
    record: EscrowRecord | None,
    reference: str,
    *,
    applied: bool,
    replayed: bool = False,
    already_paid: bool = False,
    needs_refund: bool = False,
) -> dict:
    return {
        "assignment_id": record.assignment_id if record else None,
        "reference": reference,
        "state": record.state if record else None,
        "amount": float(record.amount or 0) if record else 0.0,
        "applied": applied,
        "replayed": replayed,
        "already_paid": already_paid,
        "needs_refund": needs_refund,
    }


def _replay(reference: str) -> dict | None:
    prior = ledger.find_by_gateway_reference(reference)
    if not prior:
        return None
    return _hold_result(get_escrow(prior.related_assignment_id), reference, applied=False, replayed=True)


def _not_applied(record: EscrowRecord, reference: str, amount, source: str) -> dict:
    """Outcome for a confirmed payment that lost the claim on an escrow no longer unpaid.

    A held escrow was funded by another invoice. A closed escrow can never take
    the money, so the intent is marked orphaned and an audit row is left for a
    manual gateway refund.
    """
    if record.state == HELD:
        current_app.logger.warning(
            "Payment %s for assignment %s arrived but escrow is already held by %s",
            reference, record.assignment_id, record.gateway_invoice_id,
        )
        return _hold_result(record, reference, applied=False, already_paid=True)

    intent = PaymentIntent.query.filter_by(reference=reference).first()
    if intent is None or intent.status != ORPHANED:
        try:
            if intent is not None:
                intent.status = ORPHANED
                intent.verified_at = _now()
            AuditLog.record(
                "payment_orphaned",
                target_type="escrow",
                target_id=record.assignment_id,
                meta={"reference": reference, "amount": str(amount), "escrow_state": record.state, "source": source},
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    current_app.logger.error(
        "Payment %s of %s for assignment %s captured after escrow became %s; needs gateway refund",
        reference, amount, record.assignment_id, record.state,
    )
    return _hold_result(record, reference, applied=False, needs_refund=True)


def hold(*, assignment_id, amount, reference: str, student_id: int | None = None, tutor_id: int | None = None, source: str = "") -> dict:
    """Record a confirmed gateway payment against an escrow.

    Applying the same reference twice returns the first result with
    ``replayed`` set and touches no balances.
    """
    ref = (reference or "").strip()
    replay = _replay(ref)
    if replay:
        return replay

    amt = positive_money(amount)
    record = get_escrow(assignment_id)
    student = int(record.student_id) if record else (int(student_id) if student_id else None)
    if student is None:
        raise EscrowNotFoundError(f"No escrow for assignment {assignment_id}")
    wallets.ensure_wallets(student)

    now = _now()
    try:
        if record is None:
            record = EscrowRecord(
                assignment_id=str(assignment_id).strip(),
                student_id=student,
                tutor_id=int(tutor_id) if tutor_id else None,
                amount=amt,
                currency=current_app.config.get("PAYMENT_CURRENCY", "BDT"),
                state=HELD,
                gateway_invoice_id=ref,
                held_at=now,
            )
            db.session.add(record)
            db.session.flush()
        else:
            values = {
                EscrowRecord.state: HELD,
                EscrowRecord.amount: amt,
                EscrowRecord.gateway_invoice_id: ref,
                EscrowRecord.held_at: now,
            }
            if tutor_id and not record.tutor_id:
                values[EscrowRecord.tutor_id] = int(tutor_id)
            claimed = EscrowRecord.query.filter_by(id=record.id, state=UNPAID).update(values, synchronize_session="fetch")
            if not claimed:
                db.session.rollback()
                replay = _replay(ref)
                if replay:
                    return replay
                return _not_applied(get_escrow(record.assignment_id), ref, amt, source)

        wallets.credit(student, amt, wallets.ESCROW)
        ledger.append(
            user_id=student,
            type=ledger.ESCROW_HOLD,
            amount=amt,
            related_assignment_id=record.assignment_id,
            gateway_reference=ref,
            meta={"source": source} if source else None,
        )
        PaymentIntent.query.filter_by(reference=ref).update(
            {PaymentIntent.status: "completed", PaymentIntent.verified_at: now},
            synchronize_session="fetch",
        )
        db.session.commit()
    except (IntegrityError, DuplicateReferenceError):
        db.session.rollback()
        replay = _replay(ref)
        if replay:
            return replay
        record = get_escrow(assignment_id)
        if record and record.state != UNPAID:
            return _not_applied(record, ref, amt, source)
        raise
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Escrow held assignment=%s amount=%s ref=%s source=%s", record.assignment_id, amt, ref, source)
    return _hold_result(record, ref, applied=True)


def transition(record: EscrowRecord, from_state: str, to_state: str, meta: dict | None = None) -> None:
    values = {EscrowRecord.state: to_state, EscrowRecord.settled_at: _now()}
    if meta is not None:
        values[EscrowRecord.resolution_meta] = json.dumps(meta, default=str)
    claimed = EscrowRecord.query.filter_by(id=record.id, state=from_state).update(values, synchronize_session=False)
    if not claimed:
        current = db.session.query(EscrowRecord.state).filter_by(id=record.id).scalar()
        raise EscrowNotHeldError(state=current)
    if record in db.session:
        db.session.expire(record)


def settle(record: EscrowRecord, breakdown: settlement.SettlementBreakdown, *, platform_id: int, meta: dict | None = None) -> None:
    """Move a held escrow into its terminal state and pay out the breakdown.

    Runs inside the caller's transaction and never commits. Wallets for every
    payee must already exist.
    """
    target = TARGET_STATES[breakdown.resolution_type]
    held = to_money(record.amount)
    student_id = int(record.student_id)
    tutor_id = int(record.tutor_id) if record.tutor_id else None
    assignment_id = record.assignment_id

    if breakdown.escrow_amount != held:
        raise LedgerInvariantError(f"Breakdown is for {breakdown.escrow_amount} but escrow holds {held}")
    if breakdown.allocated > held:
        raise LedgerInvariantError(f"Breakdown allocates {breakdown.allocated} of {held} held")
    if breakdown.tutor_amount > 0 and tutor_id is None:
        raise InvalidRulingError("Escrow has no tutor to pay")

    transition(record, HELD, target, meta)

    try:
        wallets.debit(student_id, held, wallets.ESCROW)
    except InsufficientFundsError as e:
        current_app.logger.error("Escrow bucket short for student=%s assignment=%s held=%s", student_id, assignment_id, held)
        raise LedgerInvariantError(f"Student escrow balance below held amount for {assignment_id}") from e

    if breakdown.student_amount > 0:
        wallets.credit(student_id, breakdown.student_amount, wallets.AVAILABLE)
        ledger.append(user_id=student_id, type=ledger.REFUND, amount=breakdown.student_amount, related_assignment_id=assignment_id)
    if breakdown.tutor_amount > 0:
        wallets.credit(tutor_id, breakdown.tutor_amount, wallets.AVAILABLE, earnings=True)
        ledger.append(user_id=tutor_id, type=ledger.ESCROW_RELEASE, amount=breakdown.tutor_amount, related_assignment_id=assignment_id)
    if breakdown.platform_fee > 0:
        wallets.credit(platform_id, breakdown.platform_fee, wallets.AVAILABLE)
        ledger.append(user_id=platform_id, type=ledger.PLATFORM_FEE, amount=breakdown.platform_fee, related_assignment_id=assignment_id)


def resolve_held(record: EscrowRecord, resolution_type: str, *, student_percent=None, actor_id: int | None = None, action: str, meta: dict | None = None) -> settlement.SettlementBreakdown:
    if record.state != HELD:
        raise EscrowNotHeldError(state=record.state)
    breakdown = settlement.compute(resolution_type, record.amount, load_fee_config(), student_percent)
    platform_id = platform_user_id()
    wallets.ensure_wallets(record.student_id, record.tutor_id, platform_id)

    details = dict(meta or {})
    details.update(breakdown.to_dict())
    try:
        settle(record, breakdown, platform_id=platform_id, meta=details)
        AuditLog.record(action, actor_user_id=actor_id, target_type="escrow", target_id=record.assignment_id, meta=details)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info(
        "Escrow %s assignment=%s student=%s tutor=%s fee=%s",
        breakdown.resolution_type, record.assignment_id, breakdown.student_amount, breakdown.tutor_amount, breakdown.platform_fee,
    )
    return breakdown


def release(record: EscrowRecord, *, actor_id: int | None = None, source: str = "delivery_accepted") -> settlement.SettlementBreakdown:
    return resolve_held(record, settlement.RELEASE, actor_id=actor_id, action="escrow_release", meta={"source": source})


def refund(record: EscrowRecord, *, actor_id: int | None = None, source: str = "admin_cancel") -> settlement.SettlementBreakdown:
    return resolve_held(record, settlement.REFUND, actor_id=actor_id, action="escrow_refund", meta={"source": source})


def cancel(record: EscrowRecord, *, actor_id: int | None = None, reason: str = "") -> EscrowRecord:
    """Close an escrow that was never funded. Funded escrows must be refunded instead."""
    if record.state == HELD:
        raise InvalidTransitionError("Funded escrow cannot be cancelled; refund it instead", state=HELD)
    if record.is_terminal:
        raise EscrowNotHeldError(state=record.state)
    try:
        transition(record, UNPAID, CANCELLED, {"reason": reason, "no_financial_transfer": True})
        AuditLog.record("escrow_cancel", actor_user_id=actor_id, target_type="escrow", target_id=record.assignment_id, meta={"reason": reason})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info("Escrow cancelled before funding assignment=%s", record.assignment_id)
    return record
