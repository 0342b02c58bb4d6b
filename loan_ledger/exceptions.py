"""
Exceptions raised by the ledger engine and its collaborators.

The API layer maps each family to an HTTP status; everything else treats
them as ordinary exceptions.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for all loan ledger errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError, ValueError):
    """Raised when input is malformed or semantically invalid. No store access happened."""
    pass


class NotFoundError(LedgerError):
    """Raised when a record is absent or belongs to another user."""
    pass


class LoanNotFound(NotFoundError):
    """Raised when a loan does not exist, is deleted, or is owned by someone else."""

    def __init__(self, loan_id: str):
        super().__init__("Loan not found or access denied")
        self.loan_id = loan_id


class TransactionNotFound(NotFoundError):
    """Raised when a transaction does not exist, is deleted, or its loan is owned by someone else."""

    def __init__(self, transaction_id: str):
        super().__init__("Transaction not found or access denied")
        self.transaction_id = transaction_id


class UserNotFound(NotFoundError):
    """Raised when a user record cannot be found."""

    def __init__(self, user_id: str):
        super().__init__("User not found")
        self.user_id = user_id


class AlreadyPaid(LedgerError):
    """Raised when a payment targets a loan whose remaining debt is zero."""

    def __init__(self, loan_id: str):
        super().__init__("This loan is already fully paid")
        self.loan_id = loan_id


class ExceedsRemaining(LedgerError):
    """Raised when a payment amount is larger than the loan's remaining debt."""

    def __init__(self, amount: Decimal, remaining: Decimal, message: str):
        super().__init__(message)
        self.amount = amount
        self.remaining = remaining


class AuthenticationError(LedgerError):
    """Raised when credentials or tokens are invalid."""
    pass


class ConflictError(LedgerError):
    """Raised when a unique value (e.g. username) is already taken."""
    pass


class StorageError(LedgerError):
    """Raised when the backing store fails to apply an atomic unit of work."""
    pass
