from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from admitflow.api.v1.fees import ledger
from admitflow.core.enums import PaymentStatus
from admitflow.core.exceptions import LedgerError
from admitflow.core.schemas import FeeInfo, Installment

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _fee(total="30000", discount="10", installments=None) -> FeeInfo:
    return FeeInfo(total=Decimal(total), discount_percent=Decimal(discount), installments=installments or [])


def _nine_thousand(paid=True, due=None):
    return [
        Installment(
            id=f"I{n}",
            amount=Decimal("9000"),
            due_date=due or NOW + timedelta(days=30 * n),
            paid_at=NOW if paid else None,
        )
        for n in (1, 2, 3)
    ]


def test_discounted_total() -> None:
    assert ledger.discounted_total(Decimal("30000"), Decimal("10")) == Decimal("27000")
    assert ledger.discounted_total(100, 0) == Decimal("100")
    assert ledger.discounted_total(Decimal("999"), Decimal("50")) == Decimal("500")  # 499.5 rounds up


def test_third_installment_takes_remainder() -> None:
    fee = _fee()
    fee = ledger.add_installment(fee, NOW, Decimal("10000")).fee
    fee = ledger.add_installment(fee, NOW, Decimal("8000")).fee
    result = ledger.add_installment(fee, NOW, Decimal("1"))
    assert result.installment.amount == Decimal("9000")
    assert result.installment.id == "I3"
    assert [i.amount for i in result.fee.installments] == [Decimal("10000"), Decimal("8000"), Decimal("9000")]


def test_fourth_installment_rejected() -> None:
    fee = _fee(installments=_nine_thousand(paid=False))
    with pytest.raises(LedgerError):
        ledger.add_installment(fee, NOW, Decimal("100"))


def test_third_installment_rejected_when_nothing_left() -> None:
    fee = _fee()
    fee = ledger.add_installment(fee, NOW, Decimal("20000")).fee
    fee = ledger.add_installment(fee, NOW, Decimal("7000")).fee
    with pytest.raises(LedgerError):
        ledger.add_installment(fee, NOW)


def test_amount_clamped_to_allowance() -> None:
    fee = _fee()
    result = ledger.add_installment(fee, NOW, Decimal("50000"))
    assert result.clamped is True
    assert result.installment.amount == Decimal("27000")
    assert result.requested_amount == Decimal("50000")


def test_non_positive_amount_rejected() -> None:
    with pytest.raises(LedgerError):
        ledger.add_installment(_fee(), NOW, Decimal("0"))
    with pytest.raises(LedgerError):
        ledger.add_installment(_fee(), NOW)


def test_payment_status_paid() -> None:
    fee = _fee(total="27000", discount="0", installments=_nine_thousand(paid=True))
    assert ledger.payment_status(fee, NOW) == PaymentStatus.PAID


def test_payment_status_overdue_regardless_of_others() -> None:
    items = _nine_thousand(paid=True)
    items[1] = items[1].model_copy(update={"paid_at": None, "due_date": NOW - timedelta(days=1)})
    fee = _fee(total="27000", discount="0", installments=items)
    assert ledger.payment_status(fee, NOW) == PaymentStatus.OVERDUE


def test_payment_status_pending() -> None:
    fee = _fee(total="27000", discount="0", installments=_nine_thousand(paid=False))
    assert ledger.payment_status(fee, NOW) == PaymentStatus.PENDING


def test_due_exactly_now_is_not_overdue() -> None:
    fee = _fee(installments=[Installment(id="I1", amount=Decimal("100"), due_date=NOW)])
    assert ledger.payment_status(fee, NOW) == PaymentStatus.PENDING


def test_totals_and_collection() -> None:
    fee = _fee(total="27000", discount="0", installments=_nine_thousand(paid=False))
    assert ledger.total_paid(fee) == Decimal("0")
    assert ledger.pending_amount(fee) == Decimal("27000")

    result = ledger.collect_next_installment(fee, NOW)
    assert result.installment.id == "I1"
    assert result.installment.paid_at == NOW
    assert ledger.total_paid(result.fee) == Decimal("9000")
    assert ledger.next_unpaid_installment(result.fee).id == "I2"

    all_paid = ledger.mark_all_paid(result.fee, NOW)
    assert ledger.payment_status(all_paid, NOW) == PaymentStatus.PAID
    with pytest.raises(LedgerError):
        ledger.collect_next_installment(all_paid)


def test_mark_unknown_installment() -> None:
    with pytest.raises(LedgerError):
        ledger.mark_installment_paid(_fee(installments=_nine_thousand(paid=False)), "I9")


def test_apply_discount_bounds() -> None:
    assert ledger.apply_discount(_fee(), 25).discount_percent == Decimal("25")
    with pytest.raises(LedgerError):
        ledger.apply_discount(_fee(), 101)
