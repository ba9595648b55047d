"""
Report generation module for LoanBook.
Aggregates portfolio figures for dashboards: totals, status distribution,
recent receipts and a per-loan balance sheet.
"""
import logging
from datetime import timedelta

import pandas as pd

from loanbook.config import RECENT_PAYMENTS_WINDOW_DAYS
from loanbook.models import LoanMetrics, LoanStatus, StatusDistribution
from loanbook.services.loan_calculator import (
    as_date,
    calculate_principal_balance,
    calculate_remaining_balance,
    calculate_total_due,
    get_days_overdue,
)

logger = logging.getLogger(__name__)


class ReportGenerator:
    def __init__(self, store):
        self.store = store

    def _payments_df(self):
        payments = self.store.payments
        return pd.DataFrame({
            'loan_id': [p.loan_id for p in payments],
            'date': pd.to_datetime([as_date(p.date) for p in payments]),
            'amount': [float(p.amount) for p in payments],
            'principal': [float(p.principal) for p in payments],
            'interest': [float(p.interest) for p in payments],
        })

    def _loans_df(self):
        loans = self.store.loans
        return pd.DataFrame({
            'loan_id': [l.id for l in loans],
            'status': [l.status for l in loans],
            'principal': [float(l.principal) for l in loans],
        })

    def _window_start(self, now, days):
        return pd.Timestamp(as_date(now) - timedelta(days=days))

    def total_lent(self):
        """Sum of principal over every loan."""
        return float(self._loans_df()['principal'].sum())

    def total_interest_collected(self):
        """Sum of the interest portion of every payment."""
        return float(self._payments_df()['interest'].sum())

    def overdue_amount(self):
        """Remaining balance outstanding on overdue and defaulted loans."""
        _, loans, payments = self.store.snapshot()
        total = 0.0
        for loan in loans:
            if loan.status not in (LoanStatus.OVERDUE, LoanStatus.DEFAULTED):
                continue
            loan_payments = [p for p in payments if p.loan_id == loan.id]
            total += calculate_remaining_balance(loan, loan_payments)
        return total

    def received_in_window(self, now=None, days=RECENT_PAYMENTS_WINDOW_DAYS):
        """Sum of payments dated after the start of the trailing window."""
        if now is None:
            now = self.store.now()
        df = self._payments_df()
        recent = df[df['date'] > self._window_start(now, days)]
        return float(recent['amount'].sum())

    def payments_in_window_count(self, now=None, days=RECENT_PAYMENTS_WINDOW_DAYS):
        """Number of payments dated after the start of the trailing window."""
        if now is None:
            now = self.store.now()
        df = self._payments_df()
        return int((df['date'] > self._window_start(now, days)).sum())

    def calculate_loan_metrics(self, now=None) -> LoanMetrics:
        """Dashboard totals. Trend figures are left to the presentation layer."""
        return LoanMetrics(
            total_lent=self.total_lent(),
            accrued_interest=self.total_interest_collected(),
            overdue_amount=self.overdue_amount(),
            received_recently=self.received_in_window(now)
        )

    def calculate_status_distribution(self) -> StatusDistribution:
        counts = self._loans_df()['status'].value_counts()
        return StatusDistribution(
            active=int(counts.get(LoanStatus.ACTIVE, 0)),
            paid=int(counts.get(LoanStatus.PAID, 0)),
            overdue=int(counts.get(LoanStatus.OVERDUE, 0)),
            defaulted=int(counts.get(LoanStatus.DEFAULTED, 0))
        )

    def principal_by_status(self):
        """Sum of principal per status, with every status present."""
        df = self._loans_df()
        grouped = df.groupby('status')['principal'].sum()
        return {status: float(grouped.get(status, 0.0)) for status in LoanStatus.ALL}

    def loan_balances(self, now=None) -> pd.DataFrame:
        """
        One row per loan with its totals and balances as of now.
        Columns: loan_id, borrower_name, status, principal, total_due, paid,
        remaining_balance, principal_balance, days_overdue.
        """
        if now is None:
            now = self.store.now()

        _, loans, payments = self.store.snapshot()
        rows = []
        for loan in loans:
            loan_payments = [p for p in payments if p.loan_id == loan.id]
            rows.append({
                'loan_id': loan.id,
                'borrower_name': loan.borrower_name,
                'status': loan.status,
                'principal': float(loan.principal),
                'total_due': calculate_total_due(loan),
                'paid': float(sum(p.amount for p in loan_payments)),
                'remaining_balance': calculate_remaining_balance(loan, loan_payments),
                'principal_balance': calculate_principal_balance(loan, loan_payments),
                'days_overdue': get_days_overdue(loan, now),
            })

        columns = ['loan_id', 'borrower_name', 'status', 'principal', 'total_due', 'paid',
                   'remaining_balance', 'principal_balance', 'days_overdue']
        return pd.DataFrame(rows, columns=columns)

    def export_loan_balances(self, output_path, now=None):
        """Write the loan balance sheet; .csv writes CSV, anything else Excel."""
        df = self.loan_balances(now)
        if str(output_path).endswith('.csv'):
            df.to_csv(output_path, index=False)
        else:
            self._export_to_excel(df, output_path)
        logger.info("Loan balances exported", extra={"path": str(output_path), "rows": len(df)})
        return output_path

    def _export_to_excel(self, df, output_path):
        """Export DataFrame to Excel with header and money formatting."""
        with pd.ExcelWriter(output_path, engine='xlsxwriter') as writer:
            df.to_excel(writer, index=False, sheet_name='Loan Balances')
            workbook = writer.book
            worksheet = writer.sheets['Loan Balances']

            header_fmt = workbook.add_format({'bold': True, 'border': 1, 'bg_color': '#D7E4BC'})
            money_fmt = workbook.add_format({'num_format': '#,##0.00'})

            for col_num, value in enumerate(df.columns.values):
                worksheet.write(0, col_num, value, header_fmt)

            worksheet.set_column('A:A', 10)
            worksheet.set_column('B:B', 25) # Name
            worksheet.set_column('C:C', 12)
            worksheet.set_column('D:H', 15, money_fmt)
            worksheet.set_column('I:I', 12)
