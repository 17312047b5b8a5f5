"""Typed failures raised by the binding lifecycle and the registry.

Each error carries a stable ``code`` and the HTTP status it maps to, so the
API layer and the boundary client can translate in both directions without a
lookup table of their own.
"""


class ThermobandError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ConflictError(ThermobandError):
    """Device already bound elsewhere, or patient already has a device."""

    code = "conflict"
    status_code = 409


class NotBoundError(ThermobandError):
    code = "not_bound"
    status_code = 409


class InvalidIntervalError(ThermobandError):
    code = "invalid_interval"
    status_code = 422


class NotFoundError(ThermobandError):
    code = "not_found"
    status_code = 404


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (ConflictError, NotBoundError, InvalidIntervalError, NotFoundError)
}
