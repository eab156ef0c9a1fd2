"""Fee and settlement arithmetic for escrow payouts.

Everything here is pure: callers pass the fee configuration in explicitly and
nothing touches the database. All outputs are rounded half-up to cents and a
breakdown never allocates more than the escrow held.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from tutorpay.errors import InvalidAmountError, InvalidRulingError
from tutorpay.utils.money import ZERO, round2, to_decimal

RELEASE = "release"
REFUND = "refund"
SPLIT = "split"

RESOLUTION_TYPES = (REFUND, RELEASE, SPLIT)

DEFAULT_SPLIT_PERCENT = Decimal("50")


@dataclass(frozen=True)
class FeeConfig:
    platform_fee_rate: Decimal
    min_transaction_fee: Decimal

    @classmethod
    def of(cls, platform_fee_rate, min_transaction_fee=0) -> "FeeConfig":
        rate = to_decimal(platform_fee_rate, field="platform_fee_rate")
        min_fee = to_decimal(min_transaction_fee, field="min_transaction_fee")
        if rate < 0 or rate > 1:
            raise InvalidAmountError("platform_fee_rate must be between 0 and 1")
        if min_fee < 0:
            raise InvalidAmountError("min_transaction_fee must be >= 0")
        return cls(platform_fee_rate=rate, min_transaction_fee=round2(min_fee))


@dataclass(frozen=True)
class SettlementBreakdown:
    resolution_type: str
    escrow_amount: Decimal
    student_amount: Decimal
    tutor_amount: Decimal
    platform_fee: Decimal

    @property
    def allocated(self) -> Decimal:
        return self.student_amount + self.tutor_amount + self.platform_fee

    def to_dict(self) -> dict:
        return {
            "resolution_type": self.resolution_type,
            "escrow_amount": float(self.escrow_amount),
            "student_amount": float(self.student_amount),
            "tutor_amount": float(self.tutor_amount),
            "platform_fee": float(self.platform_fee),
        }


def _escrow(escrow_amount) -> Decimal:
    amt = to_decimal(escrow_amount, field="escrow_amount")
    if amt < 0:
        raise InvalidAmountError("escrow_amount must not be negative")
    return round2(amt)


def _fee_on(share: Decimal, fees: FeeConfig) -> Decimal:
    """Platform fee levied on a tutor share, floored at min fee and capped at the share."""
    if share <= 0 or fees.platform_fee_rate <= 0:
        return ZERO
    fee = max(round2(share * fees.platform_fee_rate), fees.min_transaction_fee)
    # A floor larger than the share would pay out money that was never held.
    return min(fee, share)


def release(escrow_amount, fees: FeeConfig) -> SettlementBreakdown:
    held = _escrow(escrow_amount)
    fee = _fee_on(held, fees)
    return SettlementBreakdown(
        resolution_type=RELEASE,
        escrow_amount=held,
        student_amount=ZERO,
        tutor_amount=max(ZERO, held - fee),
        platform_fee=fee,
    )


def refund(escrow_amount, fees: FeeConfig | None = None) -> SettlementBreakdown:
    held = _escrow(escrow_amount)
    return SettlementBreakdown(
        resolution_type=REFUND,
        escrow_amount=held,
        student_amount=held,
        tutor_amount=ZERO,
        platform_fee=ZERO,
    )


def clamp_percent(student_percent) -> Decimal:
    if student_percent is None or (isinstance(student_percent, str) and not student_percent.strip()):
        return DEFAULT_SPLIT_PERCENT
    pct = to_decimal(student_percent, field="student_percent")
    return min(Decimal("100"), max(Decimal("0"), pct))


def split(escrow_amount, student_percent, fees: FeeConfig) -> SettlementBreakdown:
    held = _escrow(escrow_amount)
    pct = clamp_percent(student_percent)
    student_amount = round2(held * pct / Decimal("100"))
    tutor_share = held - student_amount
    # Fee only ever comes out of the tutor's share.
    fee = _fee_on(tutor_share, fees)
    return SettlementBreakdown(
        resolution_type=SPLIT,
        escrow_amount=held,
        student_amount=student_amount,
        tutor_amount=max(ZERO, tutor_share - fee),
        platform_fee=fee,
    )


def compute(resolution_type: str, escrow_amount, fees: FeeConfig, student_percent=None) -> SettlementBreakdown:
    kind = (resolution_type or "").strip().lower()
    if kind == RELEASE:
        return release(escrow_amount, fees)
    if kind == REFUND:
        return refund(escrow_amount, fees)
    if kind == SPLIT:
        return split(escrow_amount, student_percent, fees)
    raise InvalidRulingError(f"Invalid resolution type: {resolution_type!r}")
