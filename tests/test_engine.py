"""Tests for the LoanEngine facade, the Result pattern and JSON logging."""
import io
import json
import logging
import unittest
from datetime import date, datetime

from loanbook.engine import LoanEngine
from loanbook.exceptions import (
    BorrowerHasOpenLoansError,
    LoanBookError,
    LoanNotFoundError,
    ValidationError,
)
from loanbook.logging_config import setup_logging
from loanbook.models import LoanStatus, PaymentFrequency
from loanbook.result import ErrorType, Result
from loanbook.services import PortfolioStore, StatusRecalculator

NOW = datetime(2026, 3, 1, 9, 30)


class TestLoanEngine(unittest.TestCase):

    def setUp(self):
        self.engine = LoanEngine(PortfolioStore(clock=lambda: NOW))
        self.borrower = self.engine.create_borrower("Joao Silva", email="joao@example.com")
        self.loan = self.engine.create_loan(
            self.borrower.id, 10000.0, 12.0, date(2026, 1, 1), date(2026, 7, 1),
            frequency=PaymentFrequency.MONTHLY, installments=6
        )

    def test_default_store(self):
        engine = LoanEngine()
        self.assertIsInstance(engine.store, PortfolioStore)
        self.assertEqual(engine.store.borrowers, [])

    def test_lazy_services_are_shared(self):
        self.assertIs(self.engine.interchange, self.engine.interchange)
        self.assertIs(self.engine.reports, self.engine.reports)
        self.assertIs(self.engine.interchange.store, self.engine.store)

    def test_accounting_uses_store_clock(self):
        self.assertEqual(self.engine.days_overdue(self.loan), 28)
        self.assertTrue(self.engine.is_overdue(self.loan))
        self.assertEqual(self.engine.next_status(self.loan), LoanStatus.OVERDUE)
        self.assertEqual(self.engine.days_overdue(self.loan, now=date(2026, 2, 1)), 0)

    def test_next_status_uses_store_threshold(self):
        engine = LoanEngine(PortfolioStore(clock=lambda: NOW, status_recalculator=StatusRecalculator(20)))
        self.assertEqual(engine.next_status(self.loan), LoanStatus.DEFAULTED)

    def test_accounting_delegates(self):
        self.assertAlmostEqual(self.engine.total_due(self.loan), 10600.0, places=6)
        self.assertAlmostEqual(self.engine.installment_amount(self.loan), 10600.0 / 6, places=6)
        self.assertEqual(self.engine.next_payment_date(date(2026, 1, 31), PaymentFrequency.MONTHLY),
                         date(2026, 2, 28))
        split = self.engine.payment_distribution(self.loan, 1750.0)
        self.assertAlmostEqual(split.interest, 100.0, places=6)

    def test_payment_lifecycle(self):
        payment = self.engine.create_payment(self.loan.id, 1750.0, date=date(2026, 2, 1))
        payments = self.engine.get_payments_by_loan(self.loan.id)

        self.assertEqual(payments, [payment])
        self.assertAlmostEqual(self.engine.remaining_balance(self.loan, payments), 8850.0, places=6)
        self.assertAlmostEqual(self.engine.principal_balance(self.loan, payments), 8350.0, places=6)
        self.assertEqual(self.engine.get_loan(self.loan.id).status, LoanStatus.OVERDUE)

        self.engine.update_payment(payment.id, amount=11000.0, principal=10000.0, interest=1000.0)
        self.assertEqual(self.engine.get_loan(self.loan.id).status, LoanStatus.PAID)

        self.engine.delete_payment(payment.id)
        self.assertEqual(self.engine.get_payments_by_loan(self.loan.id), [])
        self.assertEqual(self.engine.get_overdue_loans(), [self.engine.get_loan(self.loan.id)])

    def test_borrower_and_loan_queries(self):
        self.engine.update_borrower(self.borrower.id, name="Joao P. Silva")
        self.assertEqual(self.engine.get_borrower(self.borrower.id).name, "Joao P. Silva")
        self.assertEqual(self.engine.get_loans_by_borrower(self.borrower.id)[0].borrower_name, "Joao P. Silva")

        self.engine.update_loan(self.loan.id, next_payment_date=date(2026, 3, 5))
        self.assertEqual(self.engine.get_upcoming_loans(), [self.engine.get_loan(self.loan.id)])
        self.assertEqual(self.engine.get_upcoming_loans(days=3), [])

        details = self.engine.get_loan_with_details(self.loan.id)
        self.assertEqual(details.borrower.id, self.borrower.id)

    def test_delete_flow(self):
        with self.assertRaises(BorrowerHasOpenLoansError):
            self.engine.delete_borrower(self.borrower.id)
        self.engine.delete_loan(self.loan.id)
        self.engine.delete_borrower(self.borrower.id)
        self.assertIsNone(self.engine.get_borrower(self.borrower.id))

    def test_resync(self):
        changes = self.engine.resync_all_loan_statuses()
        self.assertEqual([c.new_status for c in changes], [LoanStatus.OVERDUE])

    def test_export_import(self):
        self.engine.create_payment(self.loan.id, 1750.0, date=date(2026, 2, 1))
        payload = self.engine.export_data()

        other = LoanEngine(PortfolioStore(clock=lambda: NOW))
        counts = other.import_data(payload)

        self.assertEqual(counts, {"borrowers": 1, "loans": 1, "payments": 1})
        self.assertEqual(other.store.snapshot(), self.engine.store.snapshot())

    def test_reports(self):
        self.engine.resync_all_loan_statuses()
        self.assertAlmostEqual(self.engine.calculate_loan_metrics().total_lent, 10000.0)
        self.assertEqual(self.engine.calculate_status_distribution().overdue, 1)

    def test_settings(self):
        self.assertEqual(self.engine.settings.currency, "BRL")
        self.engine.update_settings(default_payment_frequency=PaymentFrequency.QUARTERLY)
        loan = self.engine.create_loan(self.borrower.id, 500.0, 5.0, date(2026, 1, 1), date(2027, 1, 1))
        self.assertEqual(loan.frequency, PaymentFrequency.QUARTERLY)


class TestResult(unittest.TestCase):

    def test_ok(self):
        result = Result.ok(5)
        self.assertTrue(result)
        self.assertEqual(result.unwrap(), 5)
        self.assertEqual(result.unwrap_or(0), 5)

    def test_fail(self):
        result = Result.fail("boom", ErrorType.UNKNOWN)
        self.assertFalse(result)
        self.assertEqual(result.unwrap_or(0), 0)
        with self.assertRaises(ValueError):
            result.unwrap()

    def test_from_exception(self):
        cases = [
            (LoanNotFoundError("7"), ErrorType.NOT_FOUND),
            (BorrowerHasOpenLoansError("1", ["2"]), ErrorType.CONFLICT),
            (ValidationError("bad", "principal"), ErrorType.VALIDATION),
            (LoanBookError("other"), ErrorType.UNKNOWN),
        ]
        for exc, error_type in cases:
            with self.subTest(exc=type(exc).__name__):
                result = Result.from_exception(exc)
                self.assertFalse(result)
                self.assertEqual(result.error_type, error_type)
                self.assertEqual(result.error, exc.message)

    def test_not_found_message(self):
        self.assertEqual(LoanNotFoundError("7").message, "Loan with ID 7 not found")


class TestLogging(unittest.TestCase):

    def tearDown(self):
        logging.getLogger("loanbook").handlers.clear()

    def test_json_lines_carry_service(self):
        stream = io.StringIO()
        setup_logging("INFO", stream=stream)

        store = PortfolioStore(clock=lambda: NOW)
        store.add_borrower("Joao Silva")

        record = json.loads(stream.getvalue().splitlines()[0])
        self.assertEqual(record["message"], "Borrower added")
        self.assertEqual(record["level"], "INFO")
        self.assertEqual(record["service"], "loanbook")
        self.assertEqual(record["borrower_id"], "1")
        self.assertIn("timestamp", record)

    def test_setup_replaces_handlers(self):
        setup_logging("DEBUG", stream=io.StringIO())
        setup_logging("DEBUG", stream=io.StringIO())
        self.assertEqual(len(logging.getLogger("loanbook").handlers), 1)


if __name__ == '__main__':
    unittest.main()
