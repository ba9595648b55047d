"""Loan accounting engine for LoanBook.

Pure calculations that turn a loan's terms plus its payment history into
balances, interest accrual, payment allocation and status. Nothing here
reads the wall clock: every time-dependent function takes ``now``.

Every function tolerates a missing loan and returns the zero value of its
result type, so display code can call it before a record is loaded.

Interest is simple, not amortized:
- Total due for fixed frequencies is ``principal * period_rate * installments``
  on top of the principal; for ``custom`` (or when the schedule is incomplete)
  it is a calendar-day count ``principal * rate * days / 365``.
- Payment allocation charges one flat period of interest on the remaining
  principal for fixed frequencies, and a daily accrual since the last payment
  for ``custom``. The two day-count conventions differ on purpose.
"""
from datetime import datetime
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from loanbook.config import DAYS_PER_YEAR, PERIODS_PER_YEAR, DEFAULT_THRESHOLD_DAYS
from loanbook.models import Loan, LoanStatus, Payment, PaymentDistribution, PaymentFrequency


def as_date(value):
    """Truncate datetimes to calendar dates; leave dates and None untouched."""
    if isinstance(value, datetime):
        return value.date()
    return value


def _days_between(start, end) -> int:
    """Whole days from start to end (negative if end is before start)."""
    return (as_date(end) - as_date(start)).days


def _annual_rate(loan: Loan) -> float:
    return loan.interest_rate / 100


def _day_count_interest(loan: Loan) -> float:
    days_total = _days_between(loan.issue_date, loan.due_date)
    return loan.principal * _annual_rate(loan) * (days_total / DAYS_PER_YEAR)


def _sum(payments: Optional[Iterable[Payment]], attr: str) -> float:
    return sum(getattr(p, attr) for p in (payments or []))


def calculate_total_due(loan: Optional[Loan]) -> float:
    """Calculate the total amount due for a loan (principal + interest)."""
    if loan is None:
        return 0.0

    principal = loan.principal

    if loan.frequency and loan.installments:
        periods_per_year = PERIODS_PER_YEAR.get(loan.frequency)
        if periods_per_year is None:
            # Custom schedule: interest follows the calendar days of the loan
            return principal + _day_count_interest(loan)

        period_rate = _annual_rate(loan) / periods_per_year
        interest = principal * period_rate * loan.installments
    else:
        interest = _day_count_interest(loan)

    return principal + interest


def calculate_remaining_balance(loan: Optional[Loan], payments: Iterable[Payment] = None) -> float:
    """Calculate the remaining balance on a loan after all payments."""
    if loan is None:
        return 0.0

    total_paid = _sum(payments, 'amount')
    return max(0.0, calculate_total_due(loan) - total_paid)


def calculate_principal_balance(loan: Optional[Loan], payments: Iterable[Payment] = None) -> float:
    """Calculate the principal still outstanding after all payments."""
    if loan is None:
        return 0.0

    principal_paid = _sum(payments, 'principal')
    return max(0.0, loan.principal - principal_paid)


def _check_date(loan: Loan):
    return loan.next_payment_date if loan.next_payment_date else loan.due_date


def is_loan_overdue(loan: Optional[Loan], now) -> bool:
    """Check whether a loan is past its next payment date or its due date."""
    if loan is None:
        return False
    if loan.status == LoanStatus.PAID:
        return False

    today = as_date(now)

    if loan.next_payment_date and today > as_date(loan.next_payment_date):
        return True

    return today > as_date(loan.due_date)


def get_days_overdue(loan: Optional[Loan], now) -> int:
    """Get the number of whole days a loan is past its payment date.

    The next payment date is used when present, the due date otherwise.
    """
    if loan is None:
        return 0
    if loan.status == LoanStatus.PAID:
        return 0

    days = _days_between(_check_date(loan), now)
    return days if days > 0 else 0


def _distribution_period_rate(loan: Loan) -> float:
    rate = _annual_rate(loan)
    if not loan.frequency:
        return rate
    periods_per_year = PERIODS_PER_YEAR.get(loan.frequency)
    if periods_per_year is None:
        return rate / DAYS_PER_YEAR
    return rate / periods_per_year


def calculate_payment_distribution(
    loan: Optional[Loan],
    payment_amount: float,
    payments: Iterable[Payment] = None,
    now=None,
) -> PaymentDistribution:
    """Distribute a payment between principal and interest.

    Interest due is accrued on the remaining principal: one flat period for
    fixed frequencies, or daily since the last payment (or issue date) for
    custom schedules. The payment covers interest first; whatever is left
    goes to principal. A payment smaller than the interest due is taken
    entirely as interest, with nothing carried forward.

    Args:
        loan: The loan receiving the payment.
        payment_amount: Amount being paid.
        payments: Payments already recorded against the loan.
        now: Date the payment is valued at. Required for custom schedules.

    Returns:
        PaymentDistribution whose portions add up to payment_amount.

    Raises:
        ValueError: If now is missing for a custom schedule.
    """
    if loan is None:
        return PaymentDistribution(principal=0.0, interest=0.0)
    if now is None and loan.frequency == PaymentFrequency.CUSTOM:
        raise ValueError("now is required to accrue interest on a custom schedule")

    payments = list(payments or [])

    if payments:
        last_payment_date = max(as_date(p.date) for p in payments)
    else:
        last_payment_date = as_date(loan.issue_date)

    remaining_principal = calculate_principal_balance(loan, payments)

    if loan.frequency == PaymentFrequency.CUSTOM:
        # A payment dated before the last one accrues nothing
        days_since_last_payment = max(0, _days_between(last_payment_date, now))
        accrued_interest = remaining_principal * _annual_rate(loan) * (days_since_last_payment / DAYS_PER_YEAR)
    else:
        accrued_interest = remaining_principal * _distribution_period_rate(loan)

    if payment_amount > accrued_interest:
        return PaymentDistribution(
            principal=payment_amount - accrued_interest,
            interest=accrued_interest
        )

    return PaymentDistribution(principal=0.0, interest=payment_amount)


def determine_new_loan_status(
    loan: Optional[Loan],
    payments: Iterable[Payment] = None,
    now=None,
    threshold_days: int = DEFAULT_THRESHOLD_DAYS,
) -> str:
    """Determine a loan's status from its payments and the current date.

    Evaluated in order, first match wins: fully paid, defaulted
    (``threshold_days`` or more overdue), overdue, active. ``now`` must be
    given for any loan that is not fully paid.
    """
    if loan is None:
        return LoanStatus.ACTIVE

    if calculate_remaining_balance(loan, payments) <= 0:
        return LoanStatus.PAID

    days_overdue = get_days_overdue(loan, now)
    if days_overdue >= threshold_days:
        return LoanStatus.DEFAULTED
    if days_overdue > 0:
        return LoanStatus.OVERDUE

    return LoanStatus.ACTIVE


_FREQUENCY_STEPS = {
    PaymentFrequency.WEEKLY: relativedelta(weeks=1),
    PaymentFrequency.BIWEEKLY: relativedelta(weeks=2),
    PaymentFrequency.MONTHLY: relativedelta(months=1),
    PaymentFrequency.QUARTERLY: relativedelta(months=3),
    PaymentFrequency.YEARLY: relativedelta(months=12),
}


def calculate_next_payment_date(from_date, frequency: str):
    """Calculate the next payment date one period after ``from_date``.

    Unknown and custom frequencies fall back to monthly.
    """
    if from_date is None:
        return None
    step = _FREQUENCY_STEPS.get(frequency, relativedelta(months=1))
    return from_date + step


def calculate_installment_amount(loan: Optional[Loan]) -> float:
    """Calculate the installment amount from the loan's total due."""
    if loan is None:
        return 0.0

    total_due = calculate_total_due(loan)
    if not loan.installments or loan.installments <= 0:
        return total_due

    return total_due / loan.installments
