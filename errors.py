"""
Errors raised by the service modules.

Each carries the HTTP status the API layer answers with. None of them are
retried by the services; the caller decides.
"""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message}


class ValidationError(ServiceError):
    """Missing or malformed input."""
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    """Unique constraint, double booking, already billed, unallocated split."""
    status_code = 409


class StateError(ServiceError):
    """The entity is in the wrong status for the requested operation."""
    status_code = 400


class AuthenticationError(ServiceError):
    """Bad credentials."""
    status_code = 401


class AuthorizationError(ServiceError):
    status_code = 403


class DeliveryError(ServiceError):
    """A message the operation depends on could not be sent."""
    status_code = 502
