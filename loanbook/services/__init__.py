"""Services package for LoanBook business logic.

This package contains the accounting engine, the status sweep and the
in-memory portfolio store.
"""

from .portfolio_store import PortfolioStore
from .status_recalculator import StatusRecalculator, StatusChange
from . import loan_calculator

__all__ = ['PortfolioStore', 'StatusRecalculator', 'StatusChange', 'loan_calculator']
