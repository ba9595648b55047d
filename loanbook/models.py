"""Domain model for LoanBook: borrowers, loans, payments and settings."""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

from loanbook import config


class LoanStatus:
    """Loan status constants. Status is derived, never set by callers."""
    ACTIVE = "active"
    PAID = "paid"
    OVERDUE = "overdue"
    DEFAULTED = "defaulted"

    ALL = (ACTIVE, PAID, OVERDUE, DEFAULTED)


class PaymentFrequency:
    """Payment frequency constants."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"

    ALL = (WEEKLY, BIWEEKLY, MONTHLY, QUARTERLY, YEARLY, CUSTOM)


@dataclass
class Borrower:
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Loan:
    """A loan issued to a borrower.

    ``borrower_name`` is a projection of the owning Borrower's name kept in
    sync by the store on every rename; it is not a second source of truth.
    ``interest_rate`` is the annual rate in percent (12 means 12%).
    """
    id: str
    borrower_id: str
    borrower_name: str
    principal: float
    interest_rate: float
    issue_date: date
    due_date: date
    status: str = LoanStatus.ACTIVE
    frequency: str = config.DEFAULT_PAYMENT_FREQUENCY
    next_payment_date: Optional[date] = None
    installments: Optional[int] = None
    installment_amount: Optional[float] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Payment:
    """A payment against a loan, split into principal and interest portions."""
    id: str
    loan_id: str
    date: date
    amount: float
    principal: float
    interest: float
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class PaymentDistribution:
    """Split of a payment amount into its principal and interest portions."""
    principal: float = 0.0
    interest: float = 0.0


@dataclass
class Settings:
    """Defaults offered when creating new loans. Not read by the engine."""
    default_interest_rate: float = config.DEFAULT_INTEREST_RATE
    default_payment_frequency: str = config.DEFAULT_PAYMENT_FREQUENCY
    default_installments: int = config.DEFAULT_INSTALLMENTS
    currency: str = config.DEFAULT_CURRENCY


@dataclass
class LoanWithDetails:
    """DTO for the loan detail view: a loan, its borrower and its payments."""
    loan: Loan
    borrower: Borrower
    payments: List[Payment] = field(default_factory=list)


@dataclass
class LoanMetrics:
    total_lent: float
    accrued_interest: float
    overdue_amount: float
    received_recently: float


@dataclass
class StatusDistribution:
    active: int = 0
    paid: int = 0
    overdue: int = 0
    defaulted: int = 0

    def as_dict(self):
        return {
            LoanStatus.ACTIVE: self.active,
            LoanStatus.PAID: self.paid,
            LoanStatus.OVERDUE: self.overdue,
            LoanStatus.DEFAULTED: self.defaulted,
        }
