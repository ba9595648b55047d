"""Tests for bulk export and import."""
import json
import os
import tempfile
import unittest
from datetime import date, datetime

from loanbook.exceptions import ValidationError
from loanbook.interchange import COLUMNS, LOAN_COLUMNS, PortfolioInterchange
from loanbook.models import LoanStatus, PaymentFrequency
from loanbook.result import ErrorType
from loanbook.services.portfolio_store import PortfolioStore

NOW = datetime(2026, 3, 1, 9, 30)


def sample_payload():
    return {
        "borrowers": [
            {"id": "1", "name": "Ana Souza", "email": "ana@example.com", "phone": ""},
            {"id": "2", "name": "Bruno Lima", "email": "", "phone": "21 5555-0000"},
        ],
        "loans": [
            {
                "id": "1", "borrowerId": "1", "borrowerName": "Old Name",
                "principal": 5000, "interestRate": 12, "issueDate": "2026-01-01",
                "dueDate": "2026-06-01", "status": "active", "frequency": "monthly",
                "nextPaymentDate": "2026-01-15", "installments": 5, "installmentAmount": 1050,
                "notes": "",
            },
            {
                "id": "2", "borrowerId": "2", "borrowerName": "Bruno Lima",
                "principal": 1000, "interestRate": 10, "issueDate": "2026-02-01",
                "dueDate": "2026-05-01", "status": "overdue", "frequency": "custom",
                "nextPaymentDate": "", "installments": 0, "installmentAmount": 0,
                "notes": "Family loan", "createdAt": "2026-02-01T10:00:00",
            },
        ],
        "payments": [
            {"id": "1", "loanId": "2", "date": "2026-02-20", "amount": 2000,
             "principal": 1000, "interest": 1000, "notes": ""},
        ],
    }


class InterchangeTestCase(unittest.TestCase):

    def setUp(self):
        self.store = PortfolioStore(clock=lambda: NOW)
        self.interchange = PortfolioInterchange(self.store)

    def populate(self):
        borrower = self.store.add_borrower("Joao Silva", "joao@example.com")
        loan = self.store.add_loan(
            borrower.id, 10000.0, 12.0, date(2026, 1, 1), date(2026, 7, 1),
            frequency=PaymentFrequency.MONTHLY, installments=6, notes="Car"
        )
        self.store.add_payment(loan.id, 1750.0, date=date(2026, 2, 1))
        return borrower, loan


class TestExport(InterchangeTestCase):

    def test_export_flattens_records(self):
        self.populate()
        data = self.interchange.export_data()

        self.assertEqual(set(data), {"borrowers", "loans", "payments"})
        loan = data["loans"][0]
        self.assertEqual(list(loan), LOAN_COLUMNS + ["createdAt"])
        self.assertEqual(loan["borrowerName"], "Joao Silva")
        self.assertEqual(loan["issueDate"], "2026-01-01")
        self.assertEqual(loan["nextPaymentDate"], "2026-02-01")
        self.assertEqual(loan["status"], LoanStatus.OVERDUE)
        self.assertEqual(data["borrowers"][0]["phone"], "")
        self.assertEqual(data["payments"][0]["loanId"], "1")

    def test_export_empty_store(self):
        self.assertEqual(self.interchange.export_data(), {"borrowers": [], "loans": [], "payments": []})

    def test_frame_has_csv_columns(self):
        self.populate()
        df = self.interchange.frame("payments")
        self.assertEqual(list(df.columns), COLUMNS["payments"] + ["createdAt"])
        self.assertEqual(len(df), 1)
        with self.assertRaises(ValidationError):
            self.interchange.frame("settings")


class TestImport(InterchangeTestCase):

    def test_import_replaces_collections(self):
        self.populate()
        counts = self.interchange.import_data(sample_payload())

        self.assertEqual(counts, {"borrowers": 2, "loans": 2, "payments": 1})
        self.assertEqual([b.name for b in self.store.borrowers], ["Ana Souza", "Bruno Lima"])
        self.assertEqual(len(self.store.payments), 1)

    def test_import_normalizes_records(self):
        self.interchange.import_data(sample_payload())
        first = self.store.get_loan_by_id("1")
        second = self.store.get_loan_by_id("2")

        self.assertEqual(first.borrower_name, "Ana Souza")
        self.assertEqual(first.issue_date, date(2026, 1, 1))
        self.assertEqual(first.created_at, NOW)
        self.assertEqual(second.created_at, datetime(2026, 2, 1, 10, 0))
        self.assertIsNone(second.next_payment_date)
        self.assertIsNone(second.installments)
        self.assertIsNone(self.store.get_borrower_by_id("2").email)

    def test_import_resyncs_statuses(self):
        self.interchange.import_data(sample_payload())
        # 45 days past its next payment date
        self.assertEqual(self.store.get_loan_by_id("1").status, LoanStatus.OVERDUE)
        # 2000 paid covers the custom-schedule total
        self.assertEqual(self.store.get_loan_by_id("2").status, LoanStatus.PAID)

    def test_missing_record_set_leaves_store_unchanged(self):
        self.populate()
        before = self.store.snapshot()
        payload = sample_payload()
        del payload["borrowers"]

        with self.assertRaises(ValidationError):
            self.interchange.import_data(payload)
        self.assertEqual(self.store.snapshot(), before)

    def test_non_mapping_payload(self):
        with self.assertRaises(ValidationError):
            self.interchange.import_data([])

    def test_unknown_borrower_reference(self):
        payload = sample_payload()
        payload["loans"][0]["borrowerId"] = "9"
        with self.assertRaises(ValidationError) as context:
            self.interchange.import_data(payload)
        self.assertEqual(context.exception.field, "borrowerId")
        self.assertEqual(self.store.loans, [])

    def test_unknown_loan_reference(self):
        payload = sample_payload()
        payload["payments"][0]["loanId"] = "9"
        with self.assertRaises(ValidationError):
            self.interchange.import_data(payload)

    def test_invalid_records(self):
        cases = [
            ("loans", "principal", "lots"),
            ("loans", "issueDate", "first of may"),
            ("loans", "status", "closed"),
            ("loans", "frequency", "daily"),
            ("payments", "amount", 0),
            ("borrowers", "name", ""),
            ("loans", "principal", "nan"),
            ("loans", "interestRate", "inf"),
            ("loans", "installments", "nan"),
            ("loans", "installments", 2.7),
            ("payments", "amount", "nan"),
            ("payments", "date", "2026-01-15"),
        ]
        for entity, field, value in cases:
            with self.subTest(field=field, value=value):
                payload = sample_payload()
                payload[entity][0][field] = value
                with self.assertRaises(ValidationError):
                    self.interchange.import_data(payload)

    def test_whole_number_installments_accepted(self):
        payload = sample_payload()
        payload["loans"][0]["installments"] = "5.0"
        self.interchange.import_data(payload)
        self.assertEqual(self.store.get_loan_by_id("1").installments, 5)

    def test_non_finite_number_fails_preview(self):
        payload = sample_payload()
        payload["loans"][0]["installments"] = "nan"
        result = self.interchange.preview_import(payload)
        self.assertFalse(result)
        self.assertEqual(result.error_type, ErrorType.VALIDATION)

    def test_duplicate_ids(self):
        payload = sample_payload()
        payload["borrowers"][1]["id"] = "1"
        with self.assertRaises(ValidationError):
            self.interchange.import_data(payload)

    def test_preview_import(self):
        result = self.interchange.preview_import(sample_payload())
        self.assertTrue(result)
        self.assertEqual(result.value, {"borrowers": 2, "loans": 2, "payments": 1})
        self.assertEqual(self.store.borrowers, [])

        result = self.interchange.preview_import({"borrowers": []})
        self.assertFalse(result)
        self.assertEqual(result.error_type, ErrorType.VALIDATION)


class TestFiles(InterchangeTestCase):

    def test_json_round_trip(self):
        self.populate()
        text = self.interchange.to_json()

        other = PortfolioStore(clock=lambda: NOW)
        PortfolioInterchange(other).load_json(text)

        self.assertEqual(other.snapshot(), self.store.snapshot())

    def test_invalid_json(self):
        with self.assertRaises(ValidationError):
            self.interchange.load_json("{not json")

    def test_json_files(self):
        self.populate()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "portfolio.json")
            self.interchange.export_json(path)
            with open(path, encoding="utf-8") as f:
                self.assertEqual(len(json.load(f)["loans"]), 1)

            other = PortfolioStore(clock=lambda: NOW)
            counts = PortfolioInterchange(other).import_json(path)
        self.assertEqual(counts, {"borrowers": 1, "loans": 1, "payments": 1})

    def test_csv_round_trip(self):
        _, loan = self.populate()
        with tempfile.TemporaryDirectory() as tmp:
            paths = self.interchange.export_csv(tmp)
            self.assertEqual([os.path.basename(p) for p in paths],
                             ["borrowers.csv", "loans.csv", "payments.csv"])

            other = PortfolioStore(clock=lambda: NOW)
            PortfolioInterchange(other).import_csv(tmp)

        imported = other.get_loan_by_id(loan.id)
        self.assertEqual(imported.borrower_name, "Joao Silva")
        self.assertEqual(imported.due_date, date(2026, 7, 1))
        self.assertEqual(imported.installments, 6)
        self.assertEqual(imported.notes, "Car")
        self.assertEqual(imported.status, LoanStatus.OVERDUE)
        payment = other.get_payments_by_loan_id(loan.id)[0]
        self.assertAlmostEqual(payment.interest, 100.0, places=6)
        self.assertIsNone(other.get_borrower_by_id("1").phone)

    def test_csv_missing_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ValidationError):
                self.interchange.import_csv(tmp)


if __name__ == '__main__':
    unittest.main()
