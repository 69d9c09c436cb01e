class AppError(Exception):
    """Base class for errors that map to a JSON error response."""

    code = "Error"
    status_code = 400

    def __init__(self, message: str = None, **extra):
        self.message = message or self.code
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.extra}


class ValidationError(AppError):
    code = "ValidationError"
    status_code = 400


class InvalidToken(ValidationError):
    code = "InvalidToken"


class PaymentNotCompleted(ValidationError):
    code = "PaymentNotCompleted"


class NotFoundError(AppError):
    code = "NotFound"
    status_code = 404


class InactiveMemberError(AppError):
    code = "Inactive"
    status_code = 403


class ConflictError(AppError):
    code = "Conflict"
    status_code = 409


class SlotConflict(ConflictError):
    code = "SlotConflict"


class AlreadyConfirmed(ConflictError):
    code = "AlreadyConfirmed"


class BookingClosed(ConflictError):
    code = "BookingClosed"


class AlreadyPaid(ConflictError):
    code = "AlreadyPaid"
    status_code = 400

    def __init__(self, message: str = None, **extra):
        extra.setdefault("alreadyPaid", True)
        super().__init__(message, **extra)


class AuthorizationError(AppError):
    code = "Unauthorized"
    status_code = 401


class RateLimited(AppError):
    code = "RateLimited"
    status_code = 429


class ExternalServiceError(AppError):
    code = "ExternalServiceError"
    status_code = 500
