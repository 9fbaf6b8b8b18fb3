"""Test doubles shared across test modules."""


class CodedError(Exception):
    """Driver-style error carrying a symbolic ``code``."""

    def __init__(self, message: str = "", code: str | None = None):
        super().__init__(message)
        self.code = code


class WrappedDriverError(Exception):
    """Mimics SQLAlchemy's DBAPIError, which keeps the driver error on ``orig``."""

    def __init__(self, message: str, orig: BaseException):
        super().__init__(message)
        self.orig = orig
