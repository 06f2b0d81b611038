"""Custom exception types for domain and API layers."""


class AppError(Exception):
    """Base app exception."""

    code = "AppError"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class NotAuthenticatedError(AppError):
    """Not authenticated."""

    code = "NotAuthenticated"
    status_code = 401


class UnauthorizedError(AppError):
    """You are not allowed to act on this resource."""

    code = "Unauthorized"
    status_code = 403


class NotFoundError(AppError):
    """Resource not found."""

    code = "NotFound"
    status_code = 404


class InvalidTransitionError(AppError):
    """The subscription is not in a state that allows this action."""

    code = "InvalidTransition"
    status_code = 409


class NoticeViolationError(AppError):
    """Not enough advance notice for this action."""

    code = "NoticeViolation"
    status_code = 422


class LimitExceededError(AppError):
    """Limit reached for the current cycle."""

    code = "LimitExceeded"
    status_code = 422


class ValidationError(AppError):
    """Validation failure for user input."""

    code = "ValidationError"
    status_code = 400


class IntegrationError(AppError):
    """External integration call failure."""

    code = "IntegrationError"
    status_code = 502
