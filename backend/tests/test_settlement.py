from decimal import Decimal

import pytest

from tutorpay.errors import InvalidAmountError, InvalidRulingError
from tutorpay.utils import settlement
from tutorpay.utils.settlement import FeeConfig


def D(v):
    return Decimal(str(v))


def test_split_thirty_seventy_with_fee_floor_below_percentage():
    b = settlement.split(1000, 30, FeeConfig.of("0.1", 20))
    assert b.student_amount == D("300.00")
    assert b.platform_fee == D("70.00")
    assert b.tutor_amount == D("630.00")
    assert b.allocated == D("1000.00")


def test_release_uses_minimum_fee_when_percentage_is_smaller():
    b = settlement.release(500, FeeConfig.of("0.05", 50))
    assert b.platform_fee == D("50.00")
    assert b.tutor_amount == D("450.00")
    assert b.student_amount == D("0.00")


def test_refund_takes_no_fee_whatever_the_config():
    b = settlement.refund(200, FeeConfig.of("0.25", 75))
    assert (b.student_amount, b.tutor_amount, b.platform_fee) == (D("200.00"), D("0.00"), D("0.00"))


def test_zero_rate_means_no_fee_even_with_minimum_set():
    b = settlement.release(300, FeeConfig.of(0, 40))
    assert b.platform_fee == D("0.00")
    assert b.tutor_amount == D("300.00")


def test_split_fee_never_touches_student_share():
    b = settlement.split(100, 100, FeeConfig.of("0.1", 20))
    assert b.student_amount == D("100.00")
    assert b.tutor_amount == D("0.00")
    assert b.platform_fee == D("0.00")


def test_split_zero_percent_matches_release():
    fees = FeeConfig.of("0.1", 20)
    s = settlement.split(640, 0, fees)
    r = settlement.release(640, fees)
    assert (s.tutor_amount, s.platform_fee) == (r.tutor_amount, r.platform_fee)


@pytest.mark.parametrize("pct, expected_student", [(-20, "0.00"), (150, "1000.00"), (None, "500.00"), ("", "500.00")])
def test_split_percent_is_clamped_or_defaulted(pct, expected_student):
    b = settlement.split(1000, pct, FeeConfig.of(0))
    assert b.student_amount == D(expected_student)


def test_fee_floor_is_capped_at_the_tutor_share():
    b = settlement.split(100, 90, FeeConfig.of("0.1", 50))
    assert b.student_amount == D("90.00")
    assert b.platform_fee == D("10.00")
    assert b.tutor_amount == D("0.00")
    assert b.allocated == D("100.00")


def test_rounding_is_half_up_to_cents():
    b = settlement.split(D("100.01"), 50, FeeConfig.of(0))
    # 50.005 rounds up
    assert b.student_amount == D("50.01")
    assert b.tutor_amount == D("50.00")


@pytest.mark.parametrize("amount", ["0.01", "1", "99.99", "333.33", "1000", "12345.67"])
@pytest.mark.parametrize("pct", [0, 1, 33.3, 50, 99, 100])
def test_conservation_never_over_allocates(amount, pct):
    fees = FeeConfig.of("0.15", 7)
    for b in (
        settlement.release(amount, fees),
        settlement.refund(amount, fees),
        settlement.split(amount, pct, fees),
    ):
        assert b.allocated <= b.escrow_amount
        assert min(b.student_amount, b.tutor_amount, b.platform_fee) >= 0


@pytest.mark.parametrize("bad", ["abc", float("nan"), float("inf"), True, None])
def test_malformed_amounts_are_rejected(bad):
    with pytest.raises(InvalidAmountError):
        settlement.release(bad, FeeConfig.of(0))


def test_negative_escrow_amount_rejected():
    with pytest.raises(InvalidAmountError):
        settlement.refund(-5)


@pytest.mark.parametrize("rate, min_fee", [(-0.1, 0), (1.5, 0), (0.1, -1), ("x", 0)])
def test_fee_config_validation(rate, min_fee):
    with pytest.raises(InvalidAmountError):
        FeeConfig.of(rate, min_fee)


def test_compute_dispatches_and_rejects_unknown_type():
    fees = FeeConfig.of("0.1", 20)
    assert settlement.compute("SPLIT", 1000, fees, 30).tutor_amount == D("630.00")
    with pytest.raises(InvalidRulingError):
        settlement.compute("partial", 1000, fees)
