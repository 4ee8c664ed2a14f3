"""
Error Taxonomy

Every failure the ledger surfaces to a caller is one of these.
Adapters translate library exceptions (botocore, SQLAlchemy) into this
hierarchy at their boundary, so business logic and the API layer only
ever deal with CashflowError subclasses.

| Error            | Meaning                                  | HTTP |
|------------------|------------------------------------------|------|
| ValidationError  | Bad input, never retried                 | 400  |
| NotFoundError    | No matching record or object             | 404  |
| ConflictError    | Upload already linked to a transaction   | 409  |
| StoreError       | Object store failure, retryable          | 502  |
| PersistenceError | Ledger/database write failure, retryable | 500  |
"""


class CashflowError(Exception):
    """Base exception for all ledger errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CashflowError):
    """Input rejected by policy (content type, size, amount, date...)."""
    pass


class NotFoundError(CashflowError):
    """No matching record, or the uploaded object is missing from the store."""
    pass


class ConflictError(CashflowError):
    """The upload has already been consumed by another transaction."""
    pass


class StoreError(CashflowError):
    """The object store could not be reached or refused the operation."""
    pass


class CredentialError(StoreError):
    """A presigned URL could not be issued."""
    pass


class PromotionError(StoreError):
    """Copying a staged object to permanent storage failed."""
    pass


class PersistenceError(CashflowError):
    """A read or write against the relational store failed."""
    pass


def http_status_for(error: Exception) -> int:
    """Map an error to the status code the public API responds with."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, StoreError):
        return 502
    return 500
