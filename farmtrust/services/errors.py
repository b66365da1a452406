class ServiceError(Exception):
    """Business rule violation; the message is returned to the client as-is."""
    code = 400

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(ServiceError):
    code = 400


class Forbidden(ServiceError):
    code = 403


class NotFound(ServiceError):
    code = 404


class InvalidState(ServiceError):
    code = 409


class Unauthorized(ServiceError):
    code = 401
