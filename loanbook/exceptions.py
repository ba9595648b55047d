"""Custom exceptions for LoanBook."""


class LoanBookError(Exception):
    """Base exception for all LoanBook errors."""
    
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
    
    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class NotFoundError(LoanBookError):
    """Raised when a referenced record does not exist."""
    pass


class BorrowerNotFoundError(NotFoundError):
    """Raised when a borrower cannot be found."""
    
    def __init__(self, borrower_id: str = None):
        details = {}
        message = "Borrower not found"
        if borrower_id is not None:
            details['borrower_id'] = borrower_id
            message = f"Borrower with ID {borrower_id} not found"
        super().__init__(message, details)


class LoanNotFoundError(NotFoundError):
    """Raised when a loan cannot be found."""
    
    def __init__(self, loan_id: str = None):
        details = {}
        message = "Loan not found"
        if loan_id is not None:
            details['loan_id'] = loan_id
            message = f"Loan with ID {loan_id} not found"
        super().__init__(message, details)


class PaymentNotFoundError(NotFoundError):
    """Raised when a payment cannot be found."""
    
    def __init__(self, payment_id: str = None):
        details = {}
        message = "Payment not found"
        if payment_id is not None:
            details['payment_id'] = payment_id
            message = f"Payment with ID {payment_id} not found"
        super().__init__(message, details)


class ConflictError(LoanBookError):
    """Raised when an operation conflicts with the current portfolio state."""
    pass


class BorrowerHasOpenLoansError(ConflictError):
    """Raised when deleting a borrower that still owns unpaid loans."""
    
    def __init__(self, borrower_id: str, loan_ids: list):
        details = {
            'borrower_id': borrower_id,
            'loan_ids': list(loan_ids)
        }
        message = f"Borrower {borrower_id} has {len(loan_ids)} open loan(s)"
        super().__init__(message, details)


class ValidationError(LoanBookError):
    """Raised when input data is invalid."""
    
    def __init__(self, message: str, field: str = None):
        details = {'field': field} if field else {}
        super().__init__(message, details)
        self.field = field
