from typing import Optional


class ServiceError(Exception):
    """Base for errors the API turns into a JSON response."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidStateError(ServiceError):
    """An action was attempted that the current status does not allow."""

    status_code = 400

    def __init__(
        self,
        entity: str,
        current: str,
        attempted: str,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"cannot move {entity} from '{current}' to '{attempted}'"
        )
        self.entity = entity
        self.current = current
        self.attempted = attempted


class ConflictError(InvalidStateError):
    """Lost a race for a listing or order; safe to retry against another one."""


class DuplicateError(ServiceError):
    status_code = 400


class AuthError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class UnavailableError(ServiceError):
    """The store timed out or refused the connection. Retriable."""

    status_code = 503
