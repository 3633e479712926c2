from django.core.exceptions import ValidationError


class ServiceError(ValidationError):
    """Business-rule rejection raised by the service layer.

    Subclasses carry the HTTP status the API surfaces them with. None of these
    are transient, so callers must not retry them automatically.
    """

    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class InvalidStateError(ServiceError):
    status_code = 400
