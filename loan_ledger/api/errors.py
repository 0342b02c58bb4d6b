"""
Mapping from ledger exceptions to HTTP errors
"""

from fastapi import HTTPException, status

from ..exceptions import (
    LedgerError, ValidationError, NotFoundError, AlreadyPaid, ExceedsRemaining,
    AuthenticationError, ConflictError, StorageError
)


STATUS_BY_ERROR = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AlreadyPaid, status.HTTP_400_BAD_REQUEST),
    (ExceedsRemaining, status.HTTP_400_BAD_REQUEST),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def to_http_exception(error: LedgerError) -> HTTPException:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
