class OrderServiceError(Exception):
    """Base error; carries the error code and HTTP status used in the response envelope."""

    code = "ORDER_SERVICE_ERROR"
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFound(OrderServiceError):
    code = "NOT_FOUND"
    status_code = 404


class ValidationError(OrderServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400


class Conflict(OrderServiceError):
    code = "CONFLICT"
    status_code = 409


class Forbidden(OrderServiceError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidState(OrderServiceError):
    code = "INVALID_STATE"
    status_code = 400


class UpstreamUnavailable(OrderServiceError):
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502


class NoDriverAvailable(NotFound):
    code = "NO_DRIVER_AVAILABLE"
