from __future__ import annotations

import json
from typing import Any

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from tutorpay.errors import DuplicateReferenceError
from tutorpay.extensions import db
from tutorpay.models import EscrowRecord, LedgerEntry
from tutorpay.models.escrow_record import HELD
from tutorpay.models.ledger_entry import ENTRY_STATUSES, ENTRY_TYPES
from tutorpay.utils.money import positive_money, to_money

ESCROW_HOLD = "escrow_hold"
ESCROW_RELEASE = "escrow_release"
REFUND = "refund"
PLATFORM_FEE = "platform_fee"
WITHDRAWAL = "withdrawal"
WITHDRAWAL_COMPLETED = "withdrawal_completed"

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"


def find_by_gateway_reference(reference: str | None, *, status: str = COMPLETED) -> LedgerEntry | None:
    ref = (reference or "").strip()
    if not ref:
        return None
    return (
        LedgerEntry.query.filter_by(gateway_reference=ref, status=status)
        .order_by(LedgerEntry.id.asc())
        .first()
    )


def append(
    *,
    user_id: int,
    type: str,
    amount,
    status: str = COMPLETED,
    currency: str | None = None,
    related_assignment_id: str | None = None,
    gateway_reference: str | None = None,
    meta: Any = None,
) -> LedgerEntry:
    """Add one immutable entry to the current transaction (flushed, not committed).

    A completed entry whose gateway_reference was already used raises
    DuplicateReferenceError. If that surfaces at flush time the session is
    left needing a rollback, which is the caller's job.
    """
    if type not in ENTRY_TYPES:
        raise ValueError(f"Unknown ledger entry type: {type!r}")
    if status not in ENTRY_STATUSES:
        raise ValueError(f"Unknown ledger entry status: {status!r}")

    ref = (gateway_reference or "").strip() or None
    unique_ref = bool(ref) and status == COMPLETED
    if unique_ref:
        existing = find_by_gateway_reference(ref)
        if existing:
            raise DuplicateReferenceError(ref, existing=existing)

    entry = LedgerEntry(
        user_id=int(user_id),
        type=type,
        amount=positive_money(amount),
        currency=currency or current_app.config.get("PAYMENT_CURRENCY", "BDT"),
        status=status,
        related_assignment_id=str(related_assignment_id) if related_assignment_id is not None else None,
        gateway_reference=ref,
        meta=json.dumps(meta, default=str) if meta is not None and not isinstance(meta, str) else meta,
    )
    db.session.add(entry)
    try:
        db.session.flush()
    except IntegrityError as e:
        if unique_ref:
            raise DuplicateReferenceError(ref) from e
        raise
    return entry


def list_by_assignment(assignment_id: str) -> list[LedgerEntry]:
    return (
        LedgerEntry.query.filter_by(related_assignment_id=str(assignment_id))
        .order_by(LedgerEntry.id.asc())
        .all()
    )


def list_by_user(user_id: int, *, limit: int = 100) -> list[LedgerEntry]:
    return (
        LedgerEntry.query.filter_by(user_id=int(user_id))
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .limit(max(1, min(int(limit), 500)))
        .all()
    )


def _sum(user_id: int, types, statuses=(COMPLETED,)):
    total = db.session.query(func.coalesce(func.sum(LedgerEntry.amount), 0)).filter(
        LedgerEntry.user_id == int(user_id),
        LedgerEntry.type.in_(types),
        LedgerEntry.status.in_(statuses),
    ).scalar()
    return to_money(total or 0)


def balances_from_ledger(user_id: int) -> dict:
    """Wallet buckets as implied by the ledger and the escrows still held."""
    credits = _sum(user_id, (REFUND, ESCROW_RELEASE, PLATFORM_FEE))
    withdrawn = _sum(user_id, (WITHDRAWAL,), (PENDING, COMPLETED))
    held = db.session.query(func.coalesce(func.sum(EscrowRecord.amount), 0)).filter(
        EscrowRecord.student_id == int(user_id),
        EscrowRecord.state == HELD,
    ).scalar()
    return {
        "available_balance": credits - withdrawn,
        "escrow_balance": to_money(held or 0),
        "total_earnings": _sum(user_id, (ESCROW_RELEASE,)),
    }
