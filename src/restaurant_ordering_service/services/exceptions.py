"""Exception types raised by the ordering services.

Each error carries the HTTP status and machine-readable code the API layer
answers with. Infrastructure errors say whether a retry may succeed.
"""


class OrderingError(Exception):
    """Base class for all errors raised by the ordering services."""

    status_code = 500
    code = "INTERNAL_SERVER_ERROR"
    retryable = False

    def __init__(self, message: str) -> None:
        """Initialize the error.

        Args:
            message: Human-readable, caller-facing description
        """
        super().__init__(message)
        self.message = message


class ValidationError(OrderingError):
    """Malformed or missing input that the caller can fix."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(OrderingError):
    """A referenced order, payment or menu item does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(OrderingError):
    """The write collides with existing or concurrently modified data."""

    status_code = 409
    code = "CONFLICT"


class BusinessLogicError(OrderingError):
    """Well-formed input that violates a domain rule."""

    status_code = 422
    code = "BUSINESS_LOGIC_ERROR"


class PaymentProviderError(OrderingError):
    """The payment provider rejected or failed a call."""

    status_code = 502
    code = "PAYMENT_PROVIDER_ERROR"

    def __init__(self, message: str, retryable: bool = True) -> None:
        """Initialize the error.

        Args:
            message: Human-readable description
            retryable: Whether the same call may succeed if retried later
        """
        super().__init__(message)
        self.retryable = retryable


class PaymentProviderTimeout(PaymentProviderError):
    """The payment provider did not answer within the configured timeout."""

    status_code = 504
    code = "PAYMENT_PROVIDER_TIMEOUT"

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=True)


class PersistenceError(OrderingError):
    """The data store failed for reasons unrelated to the request."""

    status_code = 503
    code = "DATABASE_ERROR"
    retryable = True
