# barbershop/errors.py

class BarbershopError(Exception):
    """Base error. ``message`` is safe to show to the chat user."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BarbershopError):
    status_code = 422


class AuthenticationError(BarbershopError):
    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class AuthorizationError(BarbershopError):
    status_code = 403


class NotFoundError(BarbershopError):
    status_code = 404


class ConflictError(BarbershopError):
    status_code = 409


class SlotUnavailableError(ConflictError):
    def __init__(self, message: str = "That time slot is already taken"):
        super().__init__(message)


class DuplicateAppointmentError(ConflictError):
    def __init__(self, message: str = "There is already an active appointment for this number"):
        super().__init__(message)


class InfrastructureError(BarbershopError):
    status_code = 503

    def __init__(self, message: str = "Something went wrong on our side. Please try again."):
        super().__init__(message)
