"""Profit and capital split of loan payments, with renewal carry-forward.

A loan's profit is ``requested * rate``. A renewal adds whatever profit its
predecessor still had pending, but the amount to pay stays
``requested + requested * rate``; each payment therefore carries a larger
share of profit. Pending profit is always recomputed from the stored
payment transactions of the predecessor, so a chain of renewals
accumulates it hop by hop.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from loan_import.engine.rules import is_past_bad_debt
from loan_import.models import Loan
from loan_import.store.base import Repository

PROFIT_QUANTUM = Decimal("0.0001")
ZERO = Decimal("0")


def quantize(value: Decimal, quantum: Decimal = PROFIT_QUANTUM) -> Decimal:
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LoanProfit:
    """Profit terms used to split every payment of one loan."""

    base_profit: Decimal
    pending_from_predecessor: Decimal
    total_to_pay: Decimal

    @property
    def total_profit(self) -> Decimal:
        return self.base_profit + self.pending_from_predecessor


@dataclass(frozen=True)
class PaymentSplit:
    profit: Decimal
    capital: Decimal


@dataclass(frozen=True)
class ProfitSummary:
    total_profit_payed: Decimal
    pending_profit_to_pay: Decimal


def loan_profit(
    requested_amount: Decimal,
    rate: Decimal,
    pending_from_predecessor: Decimal = ZERO,
) -> LoanProfit:
    """Profit terms of a loan.

    Parameters
    ----------
    requested_amount : Decimal
        Amount requested by the borrower.
    rate : Decimal
        Flat rate of the loan type.
    pending_from_predecessor : Decimal
        Profit the renewed loan still owed; zero for standalone loans.

    Returns
    -------
    LoanProfit
        Base profit, carried profit and total amount to pay.
    """
    base_profit = requested_amount * rate
    return LoanProfit(
        base_profit=base_profit,
        pending_from_predecessor=pending_from_predecessor,
        total_to_pay=requested_amount + base_profit,
    )


def split_payment(
    amount: Decimal,
    terms: LoanProfit,
    received_at: date,
    bad_debt_date: date | None = None,
) -> PaymentSplit:
    """Split one payment into profit and capital.

    Payments received after the bad-debt date are booked entirely as
    profit. Otherwise profit is proportional to the loan's total profit
    over its total amount to pay, and capital is the remainder, so the two
    always add up to ``amount``.
    """
    if is_past_bad_debt(bad_debt_date, received_at):
        return PaymentSplit(profit=amount, capital=ZERO)
    if terms.total_to_pay == 0:
        profit = ZERO
    else:
        profit = quantize(amount * terms.total_profit / terms.total_to_pay)
    return PaymentSplit(profit=profit, capital=amount - profit)


async def pending_profit(repository: Repository, loan: Loan) -> Decimal:
    """Profit of ``loan`` not yet covered by its stored payment transactions."""
    paid = await repository.payment_profit_total(loan.id)
    return loan.profit_amount - paid


async def profit_summary(repository: Repository, loan: Loan) -> ProfitSummary:
    paid = await repository.payment_profit_total(loan.id)
    return ProfitSummary(total_profit_payed=paid, pending_profit_to_pay=loan.profit_amount - paid)
