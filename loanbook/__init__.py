"""LoanBook: loan-portfolio bookkeeping.

Tracks borrowers, loans and payments; derives balances, payment splits
and loan status.
"""

__version__ = "1.0.0"
