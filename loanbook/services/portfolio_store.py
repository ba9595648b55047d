"""Portfolio store for LoanBook.

This service holds the borrower, loan and payment collections in memory
and handles:
- Record creation with sequential ids and creation stamps
- Referential checks (no orphan loans or payments)
- Cascade deletes (borrower -> loans -> payments)
- Keeping the denormalized borrower name on loans in sync
- The status sweep after every payment write
"""
import logging
import math
import threading
from contextlib import contextmanager
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from loanbook.config import DEFAULT_UPCOMING_DAYS
from loanbook.exceptions import (
    BorrowerHasOpenLoansError,
    BorrowerNotFoundError,
    LoanNotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from loanbook.models import (
    Borrower,
    Loan,
    LoanStatus,
    LoanWithDetails,
    Payment,
    PaymentFrequency,
    Settings,
)
from loanbook.services.loan_calculator import (
    as_date,
    calculate_installment_amount,
    calculate_next_payment_date,
    calculate_payment_distribution,
)

logger = logging.getLogger(__name__)

# Fields callers may never change through update_*
_PROTECTED_FIELDS = {'id', 'created_at'}


def _next_id(records) -> str:
    """Generate the next sequential id for a collection (max + 1)."""
    max_id_num = 0
    for record in records:
        try:
            id_num = int(record.id)
        except (TypeError, ValueError):
            continue
        if id_num > max_id_num:
            max_id_num = id_num
    return str(max_id_num + 1)


def _find(records, record_id):
    for index, record in enumerate(records):
        if record.id == record_id:
            return index, record
    return None, None


def _check_fields(model, changes: dict, extra_protected=()):
    """Reject unknown or protected field names in an update."""
    known = {f.name for f in fields(model)}
    for name in changes:
        if name not in known:
            raise ValidationError(f"Unknown {model.__name__} field '{name}'", name)
        if name in _PROTECTED_FIELDS or name in extra_protected:
            raise ValidationError(f"{model.__name__} field '{name}' cannot be updated", name)


def _is_finite(value) -> bool:
    return value is not None and math.isfinite(value)


def validate_borrower(borrower: Borrower):
    if not borrower.name or not str(borrower.name).strip():
        raise ValidationError("Borrower name is required", 'name')


def validate_loan(loan: Loan):
    """Validate loan terms.

    Raises:
        ValidationError: If any term is out of range.
    """
    if not _is_finite(loan.principal) or loan.principal <= 0:
        raise ValidationError("Principal must be greater than zero", 'principal')
    if not _is_finite(loan.interest_rate) or loan.interest_rate < 0:
        raise ValidationError("Interest rate cannot be negative", 'interest_rate')
    if loan.frequency not in PaymentFrequency.ALL:
        raise ValidationError(f"Unknown payment frequency '{loan.frequency}'", 'frequency')
    if loan.installments is not None and loan.installments <= 0:
        raise ValidationError("Installments must be greater than zero", 'installments')
    if loan.installment_amount is not None and not _is_finite(loan.installment_amount):
        raise ValidationError("Installment amount must be a finite number", 'installment_amount')
    if loan.issue_date is None or loan.due_date is None:
        raise ValidationError("Issue date and due date are required", 'due_date')
    if as_date(loan.due_date) < as_date(loan.issue_date):
        raise ValidationError("Due date cannot be before issue date", 'due_date')


def validate_payment(payment: Payment, loan: Loan = None):
    """Validate a payment, and its date against the loan when one is given.

    Raises:
        ValidationError: If the amount or a portion is not a valid number,
            or the payment predates the loan.
    """
    if not _is_finite(payment.amount) or payment.amount <= 0:
        raise ValidationError("Payment amount must be greater than zero", 'amount')
    for name in ('principal', 'interest'):
        value = getattr(payment, name)
        if value is not None and not _is_finite(value):
            raise ValidationError(f"Payment {name} must be a finite number", name)
    if payment.date is None:
        raise ValidationError("Payment date is required", 'date')
    if loan is not None and as_date(payment.date) < as_date(loan.issue_date):
        raise ValidationError("Payment date cannot be before the loan issue date", 'date')


class PortfolioStore:
    """In-memory store of borrowers, loans and payments.

    Every mutator runs inside ``transaction()``: it either applies fully or
    leaves the three collections unchanged. Records are never modified in
    place; updates replace the record in its collection.

    Attributes:
        settings: Defaults offered for new loans.
    """

    def __init__(self, borrowers=None, loans=None, payments=None, settings=None,
                 clock: Callable[[], datetime] = None, status_recalculator=None):
        """Initialize PortfolioStore.

        Args:
            borrowers: Optional initial borrowers.
            loans: Optional initial loans.
            payments: Optional initial payments.
            settings: Optional Settings (defaults from config).
            clock: Callable returning the current datetime (default: datetime.now).
            status_recalculator: Optional StatusRecalculator instance.
        """
        self._borrowers: List[Borrower] = list(borrowers or [])
        self._loans: List[Loan] = list(loans or [])
        self._payments: List[Payment] = list(payments or [])
        self.settings = settings or Settings()
        self._clock = clock or datetime.now
        self._status_recalculator = status_recalculator
        self._lock = threading.RLock()

    @property
    def status_recalculator(self):
        """Lazy-load status recalculator to avoid circular imports."""
        if self._status_recalculator is None:
            from .status_recalculator import StatusRecalculator
            self._status_recalculator = StatusRecalculator()
        return self._status_recalculator

    def now(self) -> datetime:
        return self._clock()

    def today(self):
        return as_date(self._clock())

    @contextmanager
    def transaction(self):
        """Context manager for atomic mutations with automatic rollback.

        Usage:
            with store.transaction():
                store.add_borrower(...)
                store.add_loan(...)

        If any exception occurs, all three collections are restored.
        """
        with self._lock:
            snapshot = (list(self._borrowers), list(self._loans), list(self._payments))
            try:
                yield
            except Exception:
                self._borrowers, self._loans, self._payments = snapshot
                raise

    # ===== COLLECTIONS =====

    @property
    def borrowers(self) -> List[Borrower]:
        with self._lock:
            return list(self._borrowers)

    @property
    def loans(self) -> List[Loan]:
        with self._lock:
            return list(self._loans)

    @property
    def payments(self) -> List[Payment]:
        with self._lock:
            return list(self._payments)

    def snapshot(self):
        """Get a consistent copy of (borrowers, loans, payments)."""
        with self._lock:
            return list(self._borrowers), list(self._loans), list(self._payments)

    # ===== BORROWERS =====

    def add_borrower(self, name: str, email: str = None, phone: str = None) -> Borrower:
        """Create a borrower.

        Raises:
            ValidationError: If the name is empty.
        """
        with self.transaction():
            borrower = Borrower(
                id=_next_id(self._borrowers),
                name=name,
                email=email,
                phone=phone,
                created_at=self.now()
            )
            validate_borrower(borrower)
            self._borrowers.append(borrower)

        logger.info("Borrower added", extra={"borrower_id": borrower.id})
        return borrower

    def update_borrower(self, borrower_id: str, **changes) -> Borrower:
        """Merge changes into a borrower.

        A name change is propagated to the borrower_name of every loan the
        borrower owns.

        Raises:
            BorrowerNotFoundError: If the borrower doesn't exist.
            ValidationError: If a field is unknown, protected or invalid.
        """
        with self.transaction():
            index, borrower = _find(self._borrowers, borrower_id)
            if borrower is None:
                logger.warning("Borrower not found", extra={"borrower_id": borrower_id})
                raise BorrowerNotFoundError(borrower_id)

            _check_fields(Borrower, changes)
            updated = replace(borrower, **changes)
            validate_borrower(updated)
            self._borrowers[index] = updated

            if updated.name != borrower.name:
                self._sync_borrower_name(updated)

        logger.info("Borrower updated", extra={"borrower_id": borrower_id, "fields": sorted(changes)})
        return updated

    def _sync_borrower_name(self, borrower: Borrower):
        self._loans = [
            replace(loan, borrower_name=borrower.name) if loan.borrower_id == borrower.id else loan
            for loan in self._loans
        ]

    def delete_borrower(self, borrower_id: str):
        """Delete a borrower with all its loans and their payments.

        Raises:
            BorrowerNotFoundError: If the borrower doesn't exist.
            BorrowerHasOpenLoansError: If any of its loans is not paid.
        """
        with self.transaction():
            _, borrower = _find(self._borrowers, borrower_id)
            if borrower is None:
                raise BorrowerNotFoundError(borrower_id)

            borrower_loans = [loan for loan in self._loans if loan.borrower_id == borrower_id]
            open_loans = [loan.id for loan in borrower_loans if loan.status != LoanStatus.PAID]
            if open_loans:
                logger.warning(
                    "Refusing to delete borrower with open loans",
                    extra={"borrower_id": borrower_id, "loan_ids": open_loans},
                )
                raise BorrowerHasOpenLoansError(borrower_id, open_loans)

            loan_ids = {loan.id for loan in borrower_loans}
            self._borrowers = [b for b in self._borrowers if b.id != borrower_id]
            self._loans = [loan for loan in self._loans if loan.id not in loan_ids]
            self._payments = [p for p in self._payments if p.loan_id not in loan_ids]

        logger.info("Borrower deleted", extra={"borrower_id": borrower_id, "loans_removed": len(loan_ids)})

    def get_borrower_by_id(self, borrower_id: str) -> Optional[Borrower]:
        with self._lock:
            return _find(self._borrowers, borrower_id)[1]

    # ===== LOANS =====

    def add_loan(self, borrower_id: str, principal: float, interest_rate: float, issue_date, due_date,
                 frequency: str = None, next_payment_date=None, installments: int = None,
                 installment_amount: float = None, notes: str = None) -> Loan:
        """Issue a new loan to an existing borrower.

        The loan starts active. When omitted, the next payment date is one
        period after the issue date and the installment amount is the total
        due split over the installments.

        Args:
            borrower_id: ID of the borrower receiving the loan.
            principal: Loan principal amount.
            interest_rate: Annual interest rate in percent.
            issue_date: Date the loan was issued.
            due_date: Date the loan must be repaid by.
            frequency: Payment frequency (default from settings).
            next_payment_date: Optional next payment date.
            installments: Optional number of installments.
            installment_amount: Optional installment amount.
            notes: Optional free text.

        Returns:
            The created Loan.

        Raises:
            BorrowerNotFoundError: If the borrower doesn't exist.
            ValidationError: If the loan terms are invalid.
        """
        with self.transaction():
            _, borrower = _find(self._borrowers, borrower_id)
            if borrower is None:
                logger.warning("Loan refused for unknown borrower", extra={"borrower_id": borrower_id})
                raise BorrowerNotFoundError(borrower_id)

            if frequency is None:
                frequency = self.settings.default_payment_frequency

            loan = Loan(
                id=_next_id(self._loans),
                borrower_id=borrower_id,
                borrower_name=borrower.name,
                principal=principal,
                interest_rate=interest_rate,
                issue_date=issue_date,
                due_date=due_date,
                status=LoanStatus.ACTIVE,
                frequency=frequency,
                next_payment_date=next_payment_date,
                installments=installments,
                installment_amount=installment_amount,
                notes=notes,
                created_at=self.now()
            )
            validate_loan(loan)

            if loan.next_payment_date is None:
                loan = replace(loan, next_payment_date=calculate_next_payment_date(loan.issue_date, loan.frequency))
            if loan.installment_amount is None and loan.installments:
                loan = replace(loan, installment_amount=calculate_installment_amount(loan))

            self._loans.append(loan)

        logger.info("Loan added", extra={"loan_id": loan.id, "borrower_id": borrower_id, "principal": principal})
        return loan

    def update_loan(self, loan_id: str, **changes) -> Loan:
        """Merge changes into a loan's terms.

        Moving the loan to another borrower re-resolves borrower_name. The
        loan's status is re-derived from its payments under the new terms.

        Raises:
            LoanNotFoundError: If the loan doesn't exist.
            BorrowerNotFoundError: If the new borrower doesn't exist.
            ValidationError: If a field is unknown, derived or invalid.
        """
        with self.transaction():
            index, loan = _find(self._loans, loan_id)
            if loan is None:
                raise LoanNotFoundError(loan_id)

            _check_fields(Loan, changes, extra_protected=('status', 'borrower_name'))
            updated = replace(loan, **changes)

            if updated.borrower_id != loan.borrower_id:
                _, borrower = _find(self._borrowers, updated.borrower_id)
                if borrower is None:
                    raise BorrowerNotFoundError(updated.borrower_id)
                updated = replace(updated, borrower_name=borrower.name)

            validate_loan(updated)

            loan_payments = [p for p in self._payments if p.loan_id == loan_id]
            status = self.status_recalculator.status_for(updated, loan_payments, self.now())
            updated = replace(updated, status=status)
            self._loans[index] = updated

        logger.info("Loan updated", extra={"loan_id": loan_id, "fields": sorted(changes)})
        return updated

    def delete_loan(self, loan_id: str):
        """Delete a loan and all its payments.

        Raises:
            LoanNotFoundError: If the loan doesn't exist.
        """
        with self.transaction():
            _, loan = _find(self._loans, loan_id)
            if loan is None:
                raise LoanNotFoundError(loan_id)

            self._loans = [l for l in self._loans if l.id != loan_id]
            self._payments = [p for p in self._payments if p.loan_id != loan_id]

        logger.info("Loan deleted", extra={"loan_id": loan_id})

    def get_loan_by_id(self, loan_id: str) -> Optional[Loan]:
        with self._lock:
            return _find(self._loans, loan_id)[1]

    def get_loan_with_details(self, loan_id: str) -> Optional[LoanWithDetails]:
        """Get a loan together with its borrower and its payments."""
        with self._lock:
            loan = self.get_loan_by_id(loan_id)
            if loan is None:
                return None
            return LoanWithDetails(
                loan=loan,
                borrower=self.get_borrower_by_id(loan.borrower_id),
                payments=self.get_payments_by_loan_id(loan_id)
            )

    def get_loans_by_borrower_id(self, borrower_id: str) -> List[Loan]:
        with self._lock:
            return [loan for loan in self._loans if loan.borrower_id == borrower_id]

    def get_overdue_loans(self) -> List[Loan]:
        """Get loans whose status is overdue or defaulted."""
        with self._lock:
            return [
                loan for loan in self._loans
                if loan.status in (LoanStatus.OVERDUE, LoanStatus.DEFAULTED)
            ]

    def get_upcoming_due_loans(self, days: int = DEFAULT_UPCOMING_DAYS) -> List[Loan]:
        """Get active loans with a next payment strictly within the coming days.

        Args:
            days: Size of the look-ahead window.

        Returns:
            Loans sorted by next payment date, earliest first.
        """
        today = self.today()
        cutoff = today + timedelta(days=days)

        with self._lock:
            upcoming = [
                loan for loan in self._loans
                if loan.status == LoanStatus.ACTIVE
                and loan.next_payment_date
                and today < as_date(loan.next_payment_date) < cutoff
            ]

        return sorted(upcoming, key=lambda loan: as_date(loan.next_payment_date or loan.due_date))

    # ===== PAYMENTS =====

    def add_payment(self, loan_id: str, amount: float, date=None, principal: float = None,
                    interest: float = None, notes: str = None) -> Payment:
        """Record a payment against a loan.

        When principal or interest is not supplied, the amount is split by
        calculate_payment_distribution, valued at the payment date against
        the loan's payments dated on or before it. Every loan's status is
        then re-derived.

        Args:
            loan_id: ID of the loan being paid.
            amount: Amount paid.
            date: Payment date (defaults to today).
            principal: Optional principal portion.
            interest: Optional interest portion.
            notes: Optional free text.

        Returns:
            The created Payment.

        Raises:
            LoanNotFoundError: If the loan doesn't exist.
            ValidationError: If the amount is not positive or the date
                predates the loan.
        """
        with self.transaction():
            _, loan = _find(self._loans, loan_id)
            if loan is None:
                logger.warning("Payment refused for unknown loan", extra={"loan_id": loan_id})
                raise LoanNotFoundError(loan_id)

            if date is None:
                date = self.today()
            if not _is_finite(amount) or amount <= 0:
                raise ValidationError("Payment amount must be greater than zero", 'amount')
            if principal is None or interest is None:
                # Back-dated payments are split against the history up to their own date
                earlier_payments = [
                    p for p in self._payments
                    if p.loan_id == loan_id and as_date(p.date) <= as_date(date)
                ]
                distribution = calculate_payment_distribution(loan, amount, earlier_payments, date)
                principal = distribution.principal
                interest = distribution.interest

            payment = Payment(
                id=_next_id(self._payments),
                loan_id=loan_id,
                date=date,
                amount=amount,
                principal=principal,
                interest=interest,
                notes=notes,
                created_at=self.now()
            )
            validate_payment(payment, loan)
            self._payments.append(payment)

            self.resync_all_loan_statuses()

        logger.info("Payment added", extra={"payment_id": payment.id, "loan_id": loan_id, "amount": amount})
        return payment

    def update_payment(self, payment_id: str, **changes) -> Payment:
        """Merge changes into a payment and re-derive every loan's status.

        Raises:
            PaymentNotFoundError: If the payment doesn't exist.
            LoanNotFoundError: If the payment is moved to an unknown loan.
            ValidationError: If a field is unknown, protected or invalid.
        """
        with self.transaction():
            index, payment = _find(self._payments, payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)

            _check_fields(Payment, changes)
            updated = replace(payment, **changes)

            _, loan = _find(self._loans, updated.loan_id)
            if loan is None:
                raise LoanNotFoundError(updated.loan_id)

            validate_payment(updated, loan)
            self._payments[index] = updated

            self.resync_all_loan_statuses()

        logger.info("Payment updated", extra={"payment_id": payment_id, "fields": sorted(changes)})
        return updated

    def delete_payment(self, payment_id: str):
        """Delete a payment and re-derive every loan's status.

        Raises:
            PaymentNotFoundError: If the payment doesn't exist.
        """
        with self.transaction():
            _, payment = _find(self._payments, payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)

            self._payments = [p for p in self._payments if p.id != payment_id]

            self.resync_all_loan_statuses()

        logger.info("Payment deleted", extra={"payment_id": payment_id})

    def get_payment_by_id(self, payment_id: str) -> Optional[Payment]:
        with self._lock:
            return _find(self._payments, payment_id)[1]

    def get_payments_by_loan_id(self, loan_id: str) -> List[Payment]:
        """Get a loan's payments sorted by date, oldest first."""
        with self._lock:
            loan_payments = [p for p in self._payments if p.loan_id == loan_id]
        return sorted(loan_payments, key=lambda p: as_date(p.date))

    # ===== STATUS SWEEP =====

    def resync_all_loan_statuses(self, now=None):
        """Re-derive the status of every loan in the portfolio.

        Runs after every payment write. Holds the store lock for the whole
        sweep so no other mutation interleaves with it.

        Args:
            now: Optional evaluation date (defaults to the store clock).

        Returns:
            List of StatusChange records applied.
        """
        with self.transaction():
            if now is None:
                now = self.now()

            changes = self.status_recalculator.recalculate(self._loans, self._payments, now)
            if changes:
                new_status = {change.loan_id: change.new_status for change in changes}
                self._loans = [
                    replace(loan, status=new_status[loan.id]) if loan.id in new_status else loan
                    for loan in self._loans
                ]

        logger.info("Loan statuses resynced", extra={"loans": len(self._loans), "changed": len(changes)})
        return changes

    # ===== BULK / SETTINGS =====

    def replace_all(self, borrowers: Iterable[Borrower], loans: Iterable[Loan], payments: Iterable[Payment]):
        """Replace all three collections at once, then resync statuses."""
        with self.transaction():
            self._borrowers = list(borrowers)
            self._loans = list(loans)
            self._payments = list(payments)
            self.resync_all_loan_statuses()

        logger.info(
            "Portfolio replaced",
            extra={"borrowers": len(self._borrowers), "loans": len(self._loans), "payments": len(self._payments)},
        )

    def update_settings(self, **changes) -> Settings:
        """Merge changes into the settings.

        Raises:
            ValidationError: If a field is unknown.
        """
        known = {f.name for f in fields(Settings)}
        for name in changes:
            if name not in known:
                raise ValidationError(f"Unknown setting '{name}'", name)
        with self._lock:
            self.settings = replace(self.settings, **changes)
        return self.settings
