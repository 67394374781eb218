class ServiceError(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", error_code: str | None = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code


class ValidationError(ServiceError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class EmptyCartError(ValidationError):
    error_code = "EMPTY_CART"


class InsufficientStockError(ValidationError):
    error_code = "INSUFFICIENT_STOCK"


class InvalidTransitionError(ValidationError):
    status_code = 409
    error_code = "INVALID_TRANSITION"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(ServiceError):
    """A watched record changed between read and conditional write."""
    status_code = 409
    error_code = "CONFLICT"


class TransientDependencyError(ServiceError):
    """A peer service, the broker or the database is unreachable or answered 5xx."""
    status_code = 503
    error_code = "DEPENDENCY_UNAVAILABLE"


class SecurityError(ServiceError):
    status_code = 400
    error_code = "INVALID_SIGNATURE"


class UnauthorizedError(ServiceError):
    status_code = 401
    error_code = "UNAUTHORIZED"


class ForbiddenError(ServiceError):
    status_code = 403
    error_code = "FORBIDDEN"


class MalformedEventError(Exception):
    """Structurally broken message; dead-lettered, never requeued."""


class UnknownEventError(Exception):
    def __init__(self, event_type: str):
        super().__init__(f"Unknown event type: {event_type}")
        self.event_type = event_type
