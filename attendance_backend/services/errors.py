# attendance_backend/services/errors.py

# --- Custom Service Layer Exception Classes ---
class ServiceError(Exception):
    """General exception class for the service layer."""
    status_code: int = 500


class BadRequestError(ServiceError):
    """Malformed input, expired session, missing location or a check-in outside the geofence."""
    status_code = 400


class AuthorizationError(ServiceError):
    """Exception class for authorization-related errors (wrong role, non-owner lecturer)."""
    status_code = 403


class NotFoundError(ServiceError):
    """Unknown session, course, user or record."""
    status_code = 404


class ConflictError(ServiceError):
    """Duplicate check-in or an exhausted session code retry budget."""
    status_code = 409


class InternalServiceError(ServiceError):
    """Persistence failures and anything else unexpected."""
    status_code = 500
