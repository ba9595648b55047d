"""Centralized configuration for LoanBook.

This module contains the default values and business rule constants
used by the accounting engine, the portfolio store and the reports.
"""

# =============================================================================
# LOAN DEFAULTS
# =============================================================================

# Default annual interest rate, in percent
DEFAULT_INTEREST_RATE = 12.0

# Default payment frequency offered for new loans
DEFAULT_PAYMENT_FREQUENCY = "monthly"

# Default number of installments for new loans
DEFAULT_INSTALLMENTS = 12

# Currency code shown next to amounts
DEFAULT_CURRENCY = "BRL"

# =============================================================================
# BUSINESS RULES
# =============================================================================

# Day count used by the custom-frequency formulas
DAYS_PER_YEAR = 365

# Payment periods per year for each fixed frequency
PERIODS_PER_YEAR = {
    "weekly": 52,
    "biweekly": 26,
    "monthly": 12,
    "quarterly": 4,
    "yearly": 1,
}

# Days past the payment date at which a loan is considered defaulted
DEFAULT_THRESHOLD_DAYS = 90

# Default look-ahead window for upcoming payments
DEFAULT_UPCOMING_DAYS = 15

# Trailing window for "received recently" totals
RECENT_PAYMENTS_WINDOW_DAYS = 30

# =============================================================================
# DISPLAY / INTERCHANGE FORMATS
# =============================================================================

# Date format for storage and interchange (ISO 8601)
DATE_FORMAT_STORAGE = "%Y-%m-%d"

# Export file names, one per entity
EXPORT_FILENAMES = {
    "borrowers": "borrowers.csv",
    "loans": "loans.csv",
    "payments": "payments.csv",
}

# Service name stamped on structured log records
SERVICE_NAME = "loanbook"
