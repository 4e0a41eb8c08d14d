"""
Fee ledger: discounted totals, installment allocation and derived payment status.
Pure functions over FeeInfo; callers persist the returned copies.
At most 3 installments; the 3rd always takes whatever is left of the discounted total.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from admitflow.core.enums import PaymentStatus
from admitflow.core.exceptions import LedgerError
from admitflow.core.schemas import FeeInfo, Installment

MAX_INSTALLMENTS = 3


def _to_decimal(val) -> Decimal:
    if val is None:
        return Decimal("0")
    return val if isinstance(val, Decimal) else Decimal(str(val))


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def discounted_total(total, discount_percent) -> Decimal:
    """round(total * (1 - discount_percent / 100)), halves rounded up."""
    total = _to_decimal(total)
    pct = _to_decimal(discount_percent)
    value = total * (Decimal("1") - pct / Decimal("100"))
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def allocated(fee: FeeInfo) -> Decimal:
    return sum((_to_decimal(i.amount) for i in fee.installments), Decimal("0"))


def remaining_allowance(fee: FeeInfo) -> Decimal:
    return max(Decimal("0"), discounted_total(fee.total, fee.discount_percent) - allocated(fee))


@dataclass
class InstallmentResult:
    fee: FeeInfo
    installment: Installment
    clamped: bool = False
    requested_amount: Optional[Decimal] = None


def add_installment(fee: FeeInfo, due_date: datetime, amount=None) -> InstallmentResult:
    """
    Append the next installment.

    - 4th installment: rejected.
    - 3rd installment: amount forced to the remainder (caller amount ignored); rejected if nothing is left.
    - 1st/2nd: caller amount clamped to the remaining allowance; `clamped` reports it.
    """
    current = list(fee.installments)
    if len(current) >= MAX_INSTALLMENTS:
        raise LedgerError(f"Maximum {MAX_INSTALLMENTS} installments allowed")

    new_id = f"I{len(current) + 1}"
    remaining = discounted_total(fee.total, fee.discount_percent) - allocated(fee)

    if len(current) == MAX_INSTALLMENTS - 1:
        amount_to_use = max(Decimal("0"), remaining)
        if amount_to_use <= 0:
            raise LedgerError("No remaining fee to assign for the 3rd installment")
        inst = Installment(id=new_id, amount=amount_to_use, due_date=due_date)
        return InstallmentResult(
            fee=fee.model_copy(update={"installments": current + [inst]}),
            installment=inst,
            requested_amount=_to_decimal(amount) if amount is not None else None,
        )

    requested = _to_decimal(amount)
    max_allowed = max(Decimal("0"), remaining)
    clamped = requested > max_allowed
    amount_to_use = max_allowed if clamped else requested
    if amount_to_use <= 0:
        raise LedgerError("Enter a positive amount" if not clamped else "No remaining fee to assign")
    inst = Installment(id=new_id, amount=amount_to_use, due_date=due_date)
    return InstallmentResult(
        fee=fee.model_copy(update={"installments": current + [inst]}),
        installment=inst,
        clamped=clamped,
        requested_amount=requested,
    )


def payment_status(fee: FeeInfo, now: Optional[datetime] = None) -> PaymentStatus:
    now = _aware(now or datetime.now(timezone.utc))
    unpaid = [i for i in fee.installments if i.paid_at is None]
    if not unpaid:
        return PaymentStatus.PAID
    if any(_aware(i.due_date) < now for i in unpaid):
        return PaymentStatus.OVERDUE
    return PaymentStatus.PENDING


def total_paid(fee: FeeInfo) -> Decimal:
    return sum((_to_decimal(i.amount) for i in fee.installments if i.paid_at is not None), Decimal("0"))


def pending_amount(fee: FeeInfo) -> Decimal:
    return max(Decimal("0"), discounted_total(fee.total, fee.discount_percent) - total_paid(fee))


def next_unpaid_installment(fee: FeeInfo) -> Optional[Installment]:
    for inst in fee.installments:
        if inst.paid_at is None:
            return inst
    return None


def mark_installment_paid(fee: FeeInfo, installment_id: str, paid_at: Optional[datetime] = None) -> FeeInfo:
    paid_at = paid_at or datetime.now(timezone.utc)
    found = False
    items = []
    for inst in fee.installments:
        if inst.id == installment_id:
            found = True
            if inst.paid_at is None:
                inst = inst.model_copy(update={"paid_at": paid_at})
        items.append(inst)
    if not found:
        raise LedgerError(f"Installment {installment_id} not found")
    return fee.model_copy(update={"installments": items})


def collect_next_installment(fee: FeeInfo, paid_at: Optional[datetime] = None) -> InstallmentResult:
    inst = next_unpaid_installment(fee)
    if inst is None:
        raise LedgerError("All installments paid")
    updated = mark_installment_paid(fee, inst.id, paid_at)
    paid = next(i for i in updated.installments if i.id == inst.id)
    return InstallmentResult(fee=updated, installment=paid)


def mark_all_paid(fee: FeeInfo, paid_at: Optional[datetime] = None) -> FeeInfo:
    paid_at = paid_at or datetime.now(timezone.utc)
    return fee.model_copy(
        update={
            "installments": [
                i if i.paid_at is not None else i.model_copy(update={"paid_at": paid_at})
                for i in fee.installments
            ]
        }
    )


def apply_discount(fee: FeeInfo, discount_percent) -> FeeInfo:
    """Set the discount. Already-saved installments are left as they are."""
    pct = _to_decimal(discount_percent)
    if pct < 0 or pct > 100:
        raise LedgerError("Discount must be between 0 and 100 percent")
    return fee.model_copy(update={"discount_percent": pct})
