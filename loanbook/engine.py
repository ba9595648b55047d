"""Business logic facade for LoanBook.

This module provides the LoanEngine class which exposes the library entry
points over the focused services:

Service Classes:
    - PortfolioStore: Borrower, loan and payment records
    - StatusRecalculator: Status sweep over the whole portfolio
    - PortfolioInterchange: Bulk export/import
    - ReportGenerator: Dashboard aggregates
"""
from loanbook.interchange import PortfolioInterchange
from loanbook.reports import ReportGenerator
from loanbook.services import PortfolioStore
from loanbook.services import loan_calculator


class LoanEngine:
    """Entry point used by presentation code.

    Accounting calculations take ``now`` explicitly; when it is omitted the
    store clock supplies it, so tests can pin time by injecting a clock
    into the store.

    Attributes:
        store: PortfolioStore instance holding the portfolio.
        interchange: PortfolioInterchange instance (lazy-loaded).
        reports: ReportGenerator instance (lazy-loaded).
    """

    def __init__(self, store=None):
        self.store = store if store is not None else PortfolioStore()
        self._interchange = None
        self._reports = None

    @property
    def interchange(self):
        """Lazy-load PortfolioInterchange instance."""
        if self._interchange is None:
            self._interchange = PortfolioInterchange(self.store)
        return self._interchange

    @property
    def reports(self):
        """Lazy-load ReportGenerator instance."""
        if self._reports is None:
            self._reports = ReportGenerator(self.store)
        return self._reports

    def _now(self, now):
        return self.store.now() if now is None else now

    # ===== ACCOUNTING =====

    def total_due(self, loan):
        return loan_calculator.calculate_total_due(loan)

    def remaining_balance(self, loan, payments=None):
        return loan_calculator.calculate_remaining_balance(loan, payments)

    def principal_balance(self, loan, payments=None):
        return loan_calculator.calculate_principal_balance(loan, payments)

    def days_overdue(self, loan, now=None):
        return loan_calculator.get_days_overdue(loan, self._now(now))

    def is_overdue(self, loan, now=None):
        return loan_calculator.is_loan_overdue(loan, self._now(now))

    def payment_distribution(self, loan, amount, payments=None, now=None):
        return loan_calculator.calculate_payment_distribution(loan, amount, payments, self._now(now))

    def next_status(self, loan, payments=None, now=None):
        return loan_calculator.determine_new_loan_status(
            loan, payments, self._now(now), self.store.status_recalculator.threshold_days
        )

    def next_payment_date(self, from_date, frequency):
        return loan_calculator.calculate_next_payment_date(from_date, frequency)

    def installment_amount(self, loan):
        return loan_calculator.calculate_installment_amount(loan)

    # ===== BORROWERS =====

    def create_borrower(self, name, email=None, phone=None):
        """Delegates to PortfolioStore."""
        return self.store.add_borrower(name, email=email, phone=phone)

    def update_borrower(self, borrower_id, **changes):
        """Delegates to PortfolioStore."""
        return self.store.update_borrower(borrower_id, **changes)

    def delete_borrower(self, borrower_id):
        """Delegates to PortfolioStore."""
        self.store.delete_borrower(borrower_id)

    def get_borrower(self, borrower_id):
        return self.store.get_borrower_by_id(borrower_id)

    # ===== LOANS =====

    def create_loan(self, borrower_id, principal, interest_rate, issue_date, due_date, **terms):
        """Issue a new loan.

        Delegates to PortfolioStore.
        """
        return self.store.add_loan(borrower_id, principal, interest_rate, issue_date, due_date, **terms)

    def update_loan(self, loan_id, **changes):
        """Delegates to PortfolioStore."""
        return self.store.update_loan(loan_id, **changes)

    def delete_loan(self, loan_id):
        """Delete a loan and all its payments."""
        self.store.delete_loan(loan_id)

    def get_loan(self, loan_id):
        return self.store.get_loan_by_id(loan_id)

    def get_loan_with_details(self, loan_id):
        return self.store.get_loan_with_details(loan_id)

    def get_loans_by_borrower(self, borrower_id):
        return self.store.get_loans_by_borrower_id(borrower_id)

    def get_overdue_loans(self):
        return self.store.get_overdue_loans()

    def get_upcoming_loans(self, days=None):
        if days is None:
            return self.store.get_upcoming_due_loans()
        return self.store.get_upcoming_due_loans(days)

    # ===== PAYMENTS =====

    def create_payment(self, loan_id, amount, **details):
        """Record a payment.

        Delegates to PortfolioStore; triggers the status sweep.
        """
        return self.store.add_payment(loan_id, amount, **details)

    def update_payment(self, payment_id, **changes):
        """Delegates to PortfolioStore; triggers the status sweep."""
        return self.store.update_payment(payment_id, **changes)

    def delete_payment(self, payment_id):
        """Delegates to PortfolioStore; triggers the status sweep."""
        self.store.delete_payment(payment_id)

    def get_payments_by_loan(self, loan_id):
        return self.store.get_payments_by_loan_id(loan_id)

    def resync_all_loan_statuses(self, now=None):
        """Re-derive every loan's status (also run after any payment write)."""
        return self.store.resync_all_loan_statuses(now)

    # ===== INTERCHANGE / REPORTS / SETTINGS =====

    def export_data(self):
        """Delegates to PortfolioInterchange."""
        return self.interchange.export_data()

    def import_data(self, payload):
        """Replace the whole portfolio.

        Delegates to PortfolioInterchange.
        """
        return self.interchange.import_data(payload)

    def calculate_loan_metrics(self, now=None):
        return self.reports.calculate_loan_metrics(now)

    def calculate_status_distribution(self):
        return self.reports.calculate_status_distribution()

    @property
    def settings(self):
        return self.store.settings

    def update_settings(self, **changes):
        return self.store.update_settings(**changes)
