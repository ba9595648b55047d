"""Status sweep for LoanBook.

Recomputes the status of every loan in the portfolio from its own
payments. The store runs the sweep after any write to the payment
collection; it costs O(loans + payments) and must run while no other
mutation is in progress.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List

from loanbook.config import DEFAULT_THRESHOLD_DAYS
from loanbook.models import Loan, LoanStatus, Payment
from loanbook.services.loan_calculator import determine_new_loan_status

logger = logging.getLogger(__name__)


@dataclass
class StatusChange:
    """A loan whose derived status differs from the stored one."""
    loan_id: str
    old_status: str
    new_status: str


class StatusRecalculator:
    """Derives loan statuses for a whole portfolio.
    
    The stored status of a loan is never trusted as input: each loan is
    evaluated as if it were active, so a loan that was paid and then lost
    a payment is classified again from its terms and dates.
    """
    
    def __init__(self, threshold_days: int = DEFAULT_THRESHOLD_DAYS):
        """Initialize StatusRecalculator.
        
        Args:
            threshold_days: Days overdue at which a loan becomes defaulted.
        """
        self.threshold_days = threshold_days
    
    def status_for(self, loan: Loan, payments: Iterable[Payment], now) -> str:
        """Derive the status of a single loan from its own payments."""
        baseline = replace(loan, status=LoanStatus.ACTIVE)
        return determine_new_loan_status(baseline, payments, now, self.threshold_days)
    
    def recalculate(self, loans: Iterable[Loan], payments: Iterable[Payment], now) -> List[StatusChange]:
        """Compute the status changes for every loan in the portfolio.
        
        Args:
            loans: All loans in the portfolio.
            payments: All payments in the portfolio.
            now: Date the statuses are evaluated at.
            
        Returns:
            One StatusChange per loan whose status must change, in loan order.
        """
        payments_by_loan: Dict[str, List[Payment]] = defaultdict(list)
        for payment in payments:
            payments_by_loan[payment.loan_id].append(payment)
        
        changes = []
        for loan in loans:
            new_status = self.status_for(loan, payments_by_loan.get(loan.id, []), now)
            if new_status != loan.status:
                logger.debug(
                    "Loan status changed",
                    extra={"loan_id": loan.id, "old_status": loan.status, "new_status": new_status},
                )
                changes.append(StatusChange(loan.id, loan.status, new_status))
        
        return changes
