"""Application error types."""

from enum import StrEnum


class ErrorType(StrEnum):
    """Category of an application error."""

    VALIDATION = "VALIDATION"
    SYSTEM = "SYSTEM"
    CONFIGURATION = "CONFIGURATION"
    NETWORK = "NETWORK"


class AppError(Exception):
    """An error carrying a category, a message and an optional cause."""

    def __init__(self, error_type, message, cause=None):
        super().__init__(message)
        self.error_type = ErrorType(error_type)
        self.message = message
        self.cause = cause
        if isinstance(cause, BaseException):
            self.__cause__ = cause

    def __str__(self):
        if self.cause is not None:
            return f"{self.error_type}: {self.message}: {self.cause}"
        return f"{self.error_type}: {self.message}"


def validation_error(message, cause=None):
    """Create a validation error."""
    return AppError(ErrorType.VALIDATION, message, cause)


def system_error(message, cause=None):
    """Create a system or command execution error."""
    return AppError(ErrorType.SYSTEM, message, cause)


def config_error(message, cause=None):
    """Create a configuration error."""
    return AppError(ErrorType.CONFIGURATION, message, cause)


def network_error(message, cause=None):
    """Create a network error."""
    return AppError(ErrorType.NETWORK, message, cause)