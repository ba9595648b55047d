"""Result pattern for non-raising entry points in LoanBook.

Import previews and other calls made from display code return a Result
instead of raising, so the caller can map the error type to a message.
"""
from dataclasses import dataclass
from typing import Optional, TypeVar, Generic

from loanbook.exceptions import (
    LoanBookError,
    NotFoundError,
    ConflictError,
    ValidationError,
)

T = TypeVar('T')


# Common error types for consistency
class ErrorType:
    """Standard error type constants."""
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"
    UNKNOWN = "UNKNOWN"


@dataclass
class Result(Generic[T]):
    """Represents the outcome of an operation.
    
    Attributes:
        success: Whether the operation succeeded.
        value: The return value on success, None on failure.
        error: Error message on failure, None on success.
        error_type: Category of error (one of the ErrorType constants).
        
    Usage:
        result = interchange.preview_import(payload)
        if result:
            print(result.value["loans"])
        else:
            print(f"{result.error_type}: {result.error}")
    """
    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    
    @classmethod
    def ok(cls, value: T = None) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, value=value)
    
    @classmethod
    def fail(cls, error: str, error_type: str = None) -> 'Result[T]':
        """Create a failure result."""
        return cls(success=False, error=error, error_type=error_type)
    
    @classmethod
    def from_exception(cls, exc: LoanBookError) -> 'Result[T]':
        """Create a failure result from a LoanBook exception.
        
        Args:
            exc: The exception raised by a store or interchange call.
            
        Returns:
            A failed Result whose error_type matches the exception family.
        """
        if isinstance(exc, NotFoundError):
            error_type = ErrorType.NOT_FOUND
        elif isinstance(exc, ConflictError):
            error_type = ErrorType.CONFLICT
        elif isinstance(exc, ValidationError):
            error_type = ErrorType.VALIDATION
        else:
            error_type = ErrorType.UNKNOWN
        return cls.fail(exc.message, error_type)
    
    def __bool__(self) -> bool:
        return self.success
    
    def unwrap(self) -> T:
        """Get the value, raising an exception if the operation failed.
        
        Raises:
            ValueError: If the operation failed.
        """
        if not self.success:
            raise ValueError(f"Result unwrap failed: {self.error}")
        return self.value
    
    def unwrap_or(self, default: T) -> T:
        """Get the value or a default if the operation failed."""
        return self.value if self.success else default
