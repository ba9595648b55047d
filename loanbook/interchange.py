"""Bulk export and import for LoanBook.

Exports flatten the portfolio into one record set per entity using the
camelCase field names of the interchange format. Imports validate the
whole document first and then replace all three collections in one step,
in dependency order: borrowers, loans, payments.
"""
import json
import logging
import math
import os
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, List

import pandas as pd
from dateutil.parser import isoparse

from loanbook.config import DATE_FORMAT_STORAGE, EXPORT_FILENAMES
from loanbook.exceptions import LoanBookError, ValidationError
from loanbook.models import Borrower, Loan, LoanStatus, Payment
from loanbook.result import ErrorType, Result
from loanbook.services.portfolio_store import validate_borrower, validate_loan, validate_payment

logger = logging.getLogger(__name__)

BORROWER_COLUMNS = ["id", "name", "email", "phone"]
LOAN_COLUMNS = [
    "id", "borrowerId", "borrowerName", "principal", "interestRate", "issueDate", "dueDate",
    "status", "frequency", "nextPaymentDate", "installments", "installmentAmount", "notes",
]
PAYMENT_COLUMNS = ["id", "loanId", "date", "amount", "principal", "interest", "notes"]

COLUMNS = {
    "borrowers": BORROWER_COLUMNS,
    "loans": LOAN_COLUMNS,
    "payments": PAYMENT_COLUMNS,
}

# Import order matters: loans reference borrowers, payments reference loans
ENTITY_ORDER = ("borrowers", "loans", "payments")

_REQUIRED_FIELDS = {
    "borrowers": ("id", "name"),
    "loans": ("id", "borrowerId", "principal", "interestRate", "issueDate", "dueDate", "frequency"),
    "payments": ("id", "loanId", "date", "amount", "principal", "interest"),
}


# ===== FORMATTING =====

def _format_date(value) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime(DATE_FORMAT_STORAGE)


def _format_timestamp(value) -> str:
    return value.isoformat() if value else ""


def borrower_to_record(borrower: Borrower) -> Dict[str, Any]:
    return {
        "id": borrower.id,
        "name": borrower.name,
        "email": borrower.email or "",
        "phone": borrower.phone or "",
        "createdAt": _format_timestamp(borrower.created_at),
    }


def loan_to_record(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "borrowerId": loan.borrower_id,
        "borrowerName": loan.borrower_name,
        "principal": loan.principal,
        "interestRate": loan.interest_rate,
        "issueDate": _format_date(loan.issue_date),
        "dueDate": _format_date(loan.due_date),
        "status": loan.status,
        "frequency": loan.frequency,
        "nextPaymentDate": _format_date(loan.next_payment_date),
        "installments": loan.installments or 0,
        "installmentAmount": loan.installment_amount or 0,
        "notes": loan.notes or "",
        "createdAt": _format_timestamp(loan.created_at),
    }


def payment_to_record(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "loanId": payment.loan_id,
        "date": _format_date(payment.date),
        "amount": payment.amount,
        "principal": payment.principal,
        "interest": payment.interest,
        "notes": payment.notes or "",
        "createdAt": _format_timestamp(payment.created_at),
    }


# ===== PARSING =====

def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return isinstance(value, str) and not value.strip()


def _optional_str(value):
    return None if _is_blank(value) else str(value)


def _parse_date(value, field):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return isoparse(str(value)).date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date '{value}'", field)


def _parse_timestamp(value, default: datetime) -> datetime:
    if _is_blank(value):
        return default
    if isinstance(value, datetime):
        return value
    try:
        return isoparse(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid timestamp '{value}'", "createdAt")


def _parse_float(value, field) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid number '{value}'", field)
    if not math.isfinite(number):
        raise ValidationError(f"Invalid number '{value}'", field)
    return number


def _parse_int(value, field) -> int:
    number = _parse_float(value, field)
    if not number.is_integer():
        raise ValidationError(f"Expected a whole number, got '{value}'", field)
    return int(number)


def _require(entity: str, record: Dict[str, Any], index: int):
    if not isinstance(record, dict):
        raise ValidationError(f"{entity}[{index}] is not a record", entity)
    for name in _REQUIRED_FIELDS[entity]:
        if _is_blank(record.get(name)):
            raise ValidationError(f"{entity}[{index}] is missing '{name}'", name)


def record_to_borrower(record: Dict[str, Any], default_created_at: datetime) -> Borrower:
    borrower = Borrower(
        id=str(record["id"]),
        name=str(record["name"]),
        email=_optional_str(record.get("email")),
        phone=_optional_str(record.get("phone")),
        created_at=_parse_timestamp(record.get("createdAt"), default_created_at)
    )
    validate_borrower(borrower)
    return borrower


def record_to_loan(record: Dict[str, Any], default_created_at: datetime) -> Loan:
    # The export writes 0 for an absent schedule
    installments = record.get("installments")
    installments = None if _is_blank(installments) else _parse_int(installments, "installments")
    installments = installments or None

    installment_amount = record.get("installmentAmount")
    installment_amount = None if _is_blank(installment_amount) else _parse_float(installment_amount, "installmentAmount")
    installment_amount = installment_amount or None

    next_payment_date = record.get("nextPaymentDate")
    status = _optional_str(record.get("status")) or LoanStatus.ACTIVE
    if status not in LoanStatus.ALL:
        raise ValidationError(f"Unknown loan status '{status}'", "status")

    loan = Loan(
        id=str(record["id"]),
        borrower_id=str(record["borrowerId"]),
        borrower_name=str(record.get("borrowerName") or ""),
        principal=_parse_float(record["principal"], "principal"),
        interest_rate=_parse_float(record["interestRate"], "interestRate"),
        issue_date=_parse_date(record["issueDate"], "issueDate"),
        due_date=_parse_date(record["dueDate"], "dueDate"),
        status=status,
        frequency=str(record["frequency"]),
        next_payment_date=None if _is_blank(next_payment_date) else _parse_date(next_payment_date, "nextPaymentDate"),
        installments=installments,
        installment_amount=installment_amount,
        notes=_optional_str(record.get("notes")),
        created_at=_parse_timestamp(record.get("createdAt"), default_created_at)
    )
    validate_loan(loan)
    return loan


def record_to_payment(record: Dict[str, Any], default_created_at: datetime) -> Payment:
    payment = Payment(
        id=str(record["id"]),
        loan_id=str(record["loanId"]),
        date=_parse_date(record["date"], "date"),
        amount=_parse_float(record["amount"], "amount"),
        principal=_parse_float(record["principal"], "principal"),
        interest=_parse_float(record["interest"], "interest"),
        notes=_optional_str(record.get("notes")),
        created_at=_parse_timestamp(record.get("createdAt"), default_created_at)
    )
    validate_payment(payment)
    return payment


def _check_unique(entity: str, records):
    seen = set()
    for record in records:
        if record.id in seen:
            raise ValidationError(f"Duplicate {entity} id '{record.id}'", "id")
        seen.add(record.id)


def parse_payload(payload: Any, default_created_at: datetime):
    """Validate an interchange document and convert it to model records.

    Args:
        payload: Mapping with 'borrowers', 'loans' and 'payments' record lists.
        default_created_at: Creation stamp for records that carry none.

    Returns:
        Tuple of (borrowers, loans, payments).

    Raises:
        ValidationError: If a record set is missing or any record is invalid.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Import payload must be a mapping of record sets")

    for entity in ENTITY_ORDER:
        if not isinstance(payload.get(entity), list):
            raise ValidationError(f"Import payload is missing the '{entity}' record set", entity)

    for entity in ENTITY_ORDER:
        for index, record in enumerate(payload[entity]):
            _require(entity, record, index)

    borrowers = [record_to_borrower(r, default_created_at) for r in payload["borrowers"]]
    _check_unique("borrower", borrowers)
    names = {b.id: b.name for b in borrowers}

    loans = []
    for record in payload["loans"]:
        loan = record_to_loan(record, default_created_at)
        if loan.borrower_id not in names:
            raise ValidationError(f"Loan {loan.id} references unknown borrower {loan.borrower_id}", "borrowerId")
        # borrower_name is a projection of the owning borrower
        loans.append(replace(loan, borrower_name=names[loan.borrower_id]))
    _check_unique("loan", loans)
    loans_by_id = {loan.id: loan for loan in loans}

    payments = []
    for record in payload["payments"]:
        payment = record_to_payment(record, default_created_at)
        if payment.loan_id not in loans_by_id:
            raise ValidationError(f"Payment {payment.id} references unknown loan {payment.loan_id}", "loanId")
        validate_payment(payment, loans_by_id[payment.loan_id])
        payments.append(payment)
    _check_unique("payment", payments)

    return borrowers, loans, payments


class PortfolioInterchange:
    """Handles bulk export and import of a PortfolioStore.

    Attributes:
        store: The PortfolioStore being exported or replaced.
    """

    def __init__(self, store):
        self.store = store

    def export_data(self) -> Dict[str, List[Dict[str, Any]]]:
        """Export every collection as a flat list of records."""
        borrowers, loans, payments = self.store.snapshot()
        return {
            "borrowers": [borrower_to_record(b) for b in borrowers],
            "loans": [loan_to_record(l) for l in loans],
            "payments": [payment_to_record(p) for p in payments],
        }

    def import_data(self, payload) -> Dict[str, int]:
        """Replace the whole portfolio with the records in payload.

        Nothing is changed unless the entire payload is valid.

        Returns:
            Number of imported records per entity.

        Raises:
            ValidationError: If the payload is malformed or inconsistent.
        """
        try:
            borrowers, loans, payments = parse_payload(payload, self.store.now())
        except ValidationError as e:
            logger.warning("Import rejected", extra={"reason": e.message})
            raise

        self.store.replace_all(borrowers, loans, payments)
        counts = {"borrowers": len(borrowers), "loans": len(loans), "payments": len(payments)}
        logger.info("Import completed", extra=counts)
        return counts

    def preview_import(self, payload) -> Result:
        """Validate a payload without touching the store.

        Returns:
            Result with the per-entity record counts, or a VALIDATION failure.
        """
        try:
            borrowers, loans, payments = parse_payload(payload, self.store.now())
        except LoanBookError as e:
            return Result.from_exception(e)
        except (TypeError, ValueError) as e:
            return Result.fail(f"Invalid import payload: {e}", ErrorType.VALIDATION)

        return Result.ok({"borrowers": len(borrowers), "loans": len(loans), "payments": len(payments)})

    # ===== JSON =====

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.export_data(), indent=indent, ensure_ascii=False)

    def load_json(self, text: str) -> Dict[str, int]:
        """Import a JSON document produced by to_json.

        Raises:
            ValidationError: If the text is not valid JSON or not a valid payload.
        """
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid JSON: {e.msg}")
        return self.import_data(payload)

    def export_json(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_json())
        logger.info("Exported JSON", extra={"path": path})

    def import_json(self, path: str) -> Dict[str, int]:
        with open(path, "r", encoding="utf-8") as f:
            return self.load_json(f.read())

    # ===== TABULAR / CSV =====

    def frame(self, entity: str) -> pd.DataFrame:
        """Get one entity's export records as a DataFrame with the CSV columns."""
        if entity not in COLUMNS:
            raise ValidationError(f"Unknown entity '{entity}'", "entity")
        records = self.export_data()[entity]
        return pd.DataFrame(records, columns=COLUMNS[entity] + ["createdAt"])

    def export_csv(self, directory: str) -> List[str]:
        """Write one CSV per entity into directory.

        Returns:
            Paths of the written files, in import order.
        """
        os.makedirs(directory, exist_ok=True)
        paths = []
        for entity in ENTITY_ORDER:
            path = os.path.join(directory, EXPORT_FILENAMES[entity])
            self.frame(entity)[COLUMNS[entity]].to_csv(path, index=False)
            paths.append(path)
        logger.info("Exported CSV", extra={"directory": directory})
        return paths

    def import_csv(self, directory: str) -> Dict[str, int]:
        """Import the three CSVs written by export_csv.

        Raises:
            ValidationError: If any of the files is missing or invalid.
        """
        payload = {}
        for entity in ENTITY_ORDER:
            path = os.path.join(directory, EXPORT_FILENAMES[entity])
            if not os.path.exists(path):
                raise ValidationError(f"Missing export file {EXPORT_FILENAMES[entity]}", entity)
            df = pd.read_csv(path, dtype=str, keep_default_na=False)
            payload[entity] = df.to_dict(orient="records")
        return self.import_data(payload)
