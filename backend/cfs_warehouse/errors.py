"""Typed errors shared by the warehouse core.

Core functions return these as values so batch callers can collect every
failure; the API turns them into HTTP responses with ``main.unwrap``.
"""


class CfsError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __eq__(self, other):
        return type(self) is type(other) and self.message == other.message

    def __hash__(self):
        return hash((type(self).__name__, self.message))

    def to_dict(self) -> dict:
        return {"type": type(self).__name__, "message": self.message}


class ContainerNumberError(CfsError):
    pass


class FormatError(ContainerNumberError):
    pass


class CheckDigitError(ContainerNumberError):
    def __init__(self, message: str, expected: int | None = None):
        super().__init__(message)
        self.expected = expected


class LocationFieldError(CfsError):
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {**super().to_dict(), "field": self.field}


class MissingFieldError(LocationFieldError):
    pass


class BadRbsFormatError(LocationFieldError):
    pass


class BadLabelFormatError(LocationFieldError):
    pass


class UnknownZoneTypeError(LocationFieldError):
    pass


class LayoutValidationError(CfsError):
    pass


class TransitionError(CfsError):
    pass


class GuardError(CfsError):
    pass


class ConflictError(CfsError):
    status_code = 409

    def __init__(self, message: str, codes: list[str] | None = None):
        super().__init__(message)
        self.codes = codes or []

    def to_dict(self) -> dict:
        return {**super().to_dict(), "codes": self.codes}


class NotFoundError(CfsError):
    status_code = 404


def is_error(value) -> bool:
    return isinstance(value, CfsError)
