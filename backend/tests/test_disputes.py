import json
from decimal import Decimal

import pytest

from tutorpay import escrow
from tutorpay.errors import EscrowNotHeldError, InvalidAmountError, InvalidRulingError
from tutorpay.models import AuditLog, LedgerEntry
from tutorpay.utils import ledger
from tutorpay.utils.disputes import DisputeRuling, preview, resolve


def test_split_ruling_settles_per_breakdown(app, held_escrow, set_fees, admin, student, tutor, platform, balances):
    set_fees("0.1", 20)
    record = held_escrow(1000)

    summary = resolve(record, DisputeRuling(resolution_type="split", student_percent=30, notes="partial delivery"), admin_id=admin.id)

    assert summary["state"] == "split_settled"
    assert summary["no_financial_transfer"] is False
    assert (summary["student_amount"], summary["tutor_amount"], summary["platform_fee"]) == (300.0, 630.0, 70.0)
    assert balances(student) == {"available": Decimal("300.00"), "escrow": Decimal("0.00"), "earnings": Decimal("0.00")}
    assert balances(tutor)["available"] == Decimal("630.00")
    assert balances(platform)["available"] == Decimal("70.00")

    log = AuditLog.query.filter_by(action="resolve_dispute_split").one()
    assert log.actor_user_id == admin.id
    assert json.loads(log.meta)["notes"] == "partial delivery"


def test_unpaid_dispute_closes_without_transfer(app, admin, student, tutor):
    record = escrow.open_escrow(assignment_id="u-1", student_id=student.id, tutor_id=tutor.id, amount=500)

    summary = resolve(record, DisputeRuling(resolution_type="release"), admin_id=admin.id)

    assert summary["no_financial_transfer"] is True
    assert summary["state"] == "cancelled"
    assert LedgerEntry.query.count() == 0
    assert AuditLog.query.filter_by(action="resolve_dispute_release").count() == 1


def test_second_ruling_on_same_dispute_is_rejected(app, held_escrow, admin, tutor, balances):
    record = held_escrow(250)
    resolve(record, DisputeRuling(resolution_type="release"), admin_id=admin.id)
    with pytest.raises(EscrowNotHeldError):
        resolve(escrow.require_escrow(record.assignment_id), DisputeRuling(resolution_type="refund"), admin_id=admin.id)
    assert balances(tutor)["available"] == Decimal("250.00")
    assert LedgerEntry.query.filter_by(type="refund").count() == 0


def test_invalid_percent_rejected_before_any_mutation(app, held_escrow, admin, student, balances):
    record = held_escrow(100)
    with pytest.raises(InvalidAmountError):
        resolve(record, DisputeRuling(resolution_type="split", student_percent="lots"), admin_id=admin.id)
    assert escrow.require_escrow(record.assignment_id).state == "held"
    assert balances(student)["escrow"] == Decimal("100.00")


def test_fee_changes_apply_to_later_rulings(app, held_escrow, set_fees, admin, platform, balances):
    set_fees("0.1", 0)
    first = held_escrow(100)
    second = held_escrow(100)
    resolve(first, DisputeRuling(resolution_type="release"), admin_id=admin.id)
    set_fees("0.2", 0)
    resolve(second, DisputeRuling(resolution_type="release"), admin_id=admin.id)
    fees = sorted(e.amount for e in LedgerEntry.query.filter_by(type="platform_fee").all())
    assert fees == [Decimal("10.00"), Decimal("20.00")]
    assert balances(platform)["available"] == Decimal("30.00")


def test_preview_moves_nothing(app, held_escrow, set_fees, student):
    set_fees("0.1", 20)
    record = held_escrow(1000)
    p = preview(record, DisputeRuling(resolution_type="split", student_percent=30))
    assert (p["student_amount"], p["tutor_amount"], p["platform_fee"]) == (300.0, 630.0, 70.0)
    assert escrow.require_escrow(record.assignment_id).state == "held"
    assert [e.type for e in ledger.list_by_assignment(record.assignment_id)] == ["escrow_hold"]


@pytest.mark.parametrize("payload", [{}, {"resolution_type": "partial"}, {"resolutionType": ""}])
def test_ruling_payload_validation(payload):
    with pytest.raises(InvalidRulingError):
        DisputeRuling.from_payload(payload)


def test_ruling_payload_accepts_camel_case():
    r = DisputeRuling.from_payload({"resolutionType": "Split", "studentPercent": 40, "reason": "late"})
    assert (r.resolution_type, r.student_percent, r.notes) == ("split", 40, "late")
