"""Library exceptions for the concertdb package."""


class ConcertDBError(Exception):
    """Base exception for concertdb library."""

    pass


class NotFoundError(ConcertDBError):
    """
    Raised by services when a required entity does not exist.

    Adapters never raise this: lookups return an empty QueryResult and the
    caller decides whether absence is an error.
    """

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class UnsupportedOperationError(ConcertDBError):
    """Raised when an adapter cannot perform an operation on its backend."""

    def __init__(self, operation: str, backend: str) -> None:
        self.operation = operation
        self.backend = backend
        super().__init__(f"Operation '{operation}' is not supported by the {backend} adapter")


class TransactionFailureError(ConcertDBError):
    """
    Raised when a multi-statement relational write fails and was rolled back.

    The original database error is available as ``__cause__`` and ``cause``.

    Attributes:
        operation: Adapter operation that failed (e.g. "create_concert")
        cause: The underlying exception
    """

    def __init__(self, operation: str, cause: BaseException) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Transaction for {operation} rolled back: {cause}")


class ConnectivityError(ConcertDBError):
    """Raised when a backend cannot be reached."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"Cannot reach {backend}: {message}")


class MigrationStatusWriteError(ConcertDBError):
    """
    Describes a failure to persist the migration status file.

    The status store logs this error instead of raising it; callers always
    keep working from the in-memory state.
    """

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"Failed to write migration status to {path}: {message}")


class ReferralError(ConcertDBError):
    """Raised when a referral operation violates a referral rule."""

    pass


class PurchaseError(ConcertDBError):
    """Raised when a ticket purchase cannot be completed."""

    pass


__all__ = [
    "ConcertDBError",
    "NotFoundError",
    "UnsupportedOperationError",
    "TransactionFailureError",
    "ConnectivityError",
    "MigrationStatusWriteError",
    "ReferralError",
    "PurchaseError",
]
