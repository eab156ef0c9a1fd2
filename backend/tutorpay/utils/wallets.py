from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from tutorpay.errors import (
    DuplicateReferenceError,
    InsufficientFundsError,
    InvalidAmountError,
    WithdrawalError,
)
from tutorpay.extensions import db
from tutorpay.models import AuditLog, User, Wallet, WithdrawalRequest
from tutorpay.utils import ledger
from tutorpay.utils.money import positive_money

AVAILABLE = "available"
ESCROW = "escrow"

MIN_WITHDRAWAL_AMOUNT = 100
MAX_WITHDRAWALS_PER_DAY = 3
REQUIRED_BANK_FIELDS = ("account_name", "account_number", "bank_name", "branch_name", "routing_number")


def _now() -> datetime:
    return datetime.utcnow()


def _column(bucket: str):
    if bucket == AVAILABLE:
        return Wallet.available_balance
    if bucket == ESCROW:
        return Wallet.escrow_balance
    raise ValueError(f"Unknown wallet bucket: {bucket!r}")


def _default_currency() -> str:
    return current_app.config.get("PAYMENT_CURRENCY", "BDT")


def get_or_create_wallet(user_id: int) -> Wallet:
    w = Wallet.query.filter_by(user_id=int(user_id)).first()
    if w:
        return w
    w = Wallet(user_id=int(user_id), available_balance=0, escrow_balance=0, total_earnings=0, currency=_default_currency())
    try:
        db.session.add(w)
        db.session.commit()
        return w
    except IntegrityError:
        db.session.rollback()
        w = Wallet.query.filter_by(user_id=int(user_id)).first()
        if w:
            return w
        raise


def ensure_wallets(*user_ids) -> None:
    """Create missing wallets up front, before any money-moving transaction opens."""
    for uid in user_ids:
        if uid is not None:
            get_or_create_wallet(int(uid))


def credit(user_id: int, amount, bucket: str = AVAILABLE, *, earnings: bool = False) -> None:
    """Add to a wallet bucket. Does not commit; the caller owns the transaction."""
    amt = positive_money(amount)
    col = _column(bucket)
    values = {col: col + amt, Wallet.updated_at: _now()}
    if earnings:
        values[Wallet.total_earnings] = Wallet.total_earnings + amt
    updated = Wallet.query.filter(Wallet.user_id == int(user_id)).update(values, synchronize_session="fetch")
    if updated:
        return
    w = Wallet(user_id=int(user_id), available_balance=0, escrow_balance=0, total_earnings=0, currency=_default_currency())
    setattr(w, col.key, amt)
    if earnings:
        w.total_earnings = amt
    db.session.add(w)
    db.session.flush()


def debit(user_id: int, amount, bucket: str = AVAILABLE) -> None:
    """Subtract from a wallet bucket, refusing to go below zero.

    The balance check and the subtraction are one conditional UPDATE, so two
    concurrent debits can never both pass the check.
    """
    amt = positive_money(amount)
    col = _column(bucket)
    updated = (
        Wallet.query.filter(Wallet.user_id == int(user_id), col >= amt)
        .update({col: col - amt, Wallet.updated_at: _now()}, synchronize_session="fetch")
    )
    if not updated:
        raise InsufficientFundsError(f"Insufficient {bucket} balance for user {int(user_id)}")


def move_between_buckets(user_id: int, amount, from_bucket: str, to_bucket: str) -> None:
    if from_bucket == to_bucket:
        raise ValueError("from_bucket and to_bucket must differ")
    amt = positive_money(amount)
    src = _column(from_bucket)
    dst = _column(to_bucket)
    updated = (
        Wallet.query.filter(Wallet.user_id == int(user_id), src >= amt)
        .update({src: src - amt, dst: dst + amt, Wallet.updated_at: _now()}, synchronize_session="fetch")
    )
    if not updated:
        raise InsufficientFundsError(f"Insufficient {from_bucket} balance for user {int(user_id)}")


def _clean_bank_details(bank_details) -> dict:
    if not isinstance(bank_details, dict):
        raise WithdrawalError("Bank details are required", code="INVALID_BANK_DETAILS")
    cleaned = {}
    for field in REQUIRED_BANK_FIELDS:
        value = bank_details.get(field)
        cleaned[field] = value.strip() if isinstance(value, str) else ""
        if not cleaned[field]:
            raise WithdrawalError(f"Bank detail {field} is required", code="INVALID_BANK_DETAILS")
    return cleaned


def _withdrawals_today(user_id: int) -> int:
    start = _now().replace(hour=0, minute=0, second=0, microsecond=0)
    return WithdrawalRequest.query.filter(
        WithdrawalRequest.user_id == int(user_id),
        WithdrawalRequest.requested_at >= start,
        WithdrawalRequest.requested_at < start + timedelta(days=1),
    ).count()


def request_withdrawal(user: User, amount, bank_details) -> WithdrawalRequest:
    if not user or not user.is_tutor:
        raise WithdrawalError("Only tutors can withdraw", code="FORBIDDEN", status_code=403)
    try:
        amt = positive_money(amount)
    except InvalidAmountError:
        raise WithdrawalError("Amount must be greater than 0", code="INVALID_AMOUNT") from None
    if amt < MIN_WITHDRAWAL_AMOUNT:
        raise WithdrawalError(f"Minimum withdrawal is {MIN_WITHDRAWAL_AMOUNT} {_default_currency()}", code="MIN_WITHDRAWAL")
    bank = _clean_bank_details(bank_details)
    if _withdrawals_today(int(user.id)) >= MAX_WITHDRAWALS_PER_DAY:
        raise WithdrawalError(
            f"Maximum {MAX_WITHDRAWALS_PER_DAY} withdrawals per day allowed",
            code="WITHDRAWAL_LIMIT",
            status_code=429,
        )

    get_or_create_wallet(int(user.id))
    transaction_id = uuid.uuid4().hex
    try:
        debit(int(user.id), amt, AVAILABLE)
        wr = WithdrawalRequest(transaction_id=transaction_id, user_id=int(user.id), amount=amt, status="PENDING", **bank)
        db.session.add(wr)
        ledger.append(
            user_id=int(user.id),
            type=ledger.WITHDRAWAL,
            amount=amt,
            status=ledger.PENDING,
            gateway_reference=transaction_id,
            meta={"bank_name": bank["bank_name"], "account_last4": bank["account_number"][-4:]},
        )
        db.session.commit()
    except InsufficientFundsError:
        db.session.rollback()
        raise WithdrawalError("Amount cannot exceed available balance", code="INSUFFICIENT_BALANCE") from None
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Withdrawal requested user=%s amount=%s txn=%s", user.id, amt, transaction_id)
    return wr


def complete_withdrawal(transaction_id: str, admin_id: int | None = None) -> WithdrawalRequest:
    wr = WithdrawalRequest.query.filter_by(transaction_id=(transaction_id or "").strip()).first()
    if not wr:
        raise WithdrawalError("Withdrawal not found", code="NOT_FOUND", status_code=404)
    if wr.status == "COMPLETED":
        raise DuplicateReferenceError(wr.transaction_id, existing=ledger.find_by_gateway_reference(wr.transaction_id))

    now = _now()
    try:
        claimed = WithdrawalRequest.query.filter_by(id=wr.id, status="PENDING").update(
            {WithdrawalRequest.status: "COMPLETED", WithdrawalRequest.completed_at: now, WithdrawalRequest.completed_by: admin_id},
            synchronize_session="fetch",
        )
        if not claimed:
            raise DuplicateReferenceError(wr.transaction_id)
        ledger.append(
            user_id=int(wr.user_id),
            type=ledger.WITHDRAWAL_COMPLETED,
            amount=wr.amount,
            gateway_reference=wr.transaction_id,
            meta={"completed_by": admin_id},
        )
        AuditLog.record(
            "withdrawal_completed",
            actor_user_id=admin_id,
            target_type="withdrawal",
            target_id=wr.transaction_id,
            meta={"amount": str(wr.amount), "user_id": int(wr.user_id)},
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateReferenceError(wr.transaction_id) from None
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("Withdrawal completed txn=%s by admin=%s", wr.transaction_id, admin_id)
    return wr
