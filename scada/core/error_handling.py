"""
Centralized Error Handling
Custom exceptions and error handling utilities for the SCADA core
"""
import functools
import logging
from typing import Optional, Dict, Any
from enum import Enum

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Standard error codes for the SCADA core"""
    # Control engine errors (2xxx)
    ADDRESS_ERROR = 2001
    RUNG_EVALUATION_ERROR = 2002
    ALARM_EVALUATION_ERROR = 2003

    # Historian / storage errors (3xxx)
    STORAGE_WRITE_ERROR = 3001
    STORAGE_READ_ERROR = 3002

    # System errors (9xxx)
    CONFIGURATION_ERROR = 9001
    UNKNOWN_ERROR = 9999


class ScadaError(Exception):
    """
    Base exception for SCADA core errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize exception.

        Args:
            message: Error message
            error_code: Error code enum
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or ErrorCode.UNKNOWN_ERROR
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary"""
        return {
            'error': self.__class__.__name__,
            'message': self.message,
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'details': self.details
        }


# Control engine exceptions
class ControlError(ScadaError):
    """Control engine error"""
    pass


class AddressError(ControlError):
    """Register address resolves outside of its bank"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.ADDRESS_ERROR, details)


class RungEvaluationError(ControlError):
    """Rung could not be evaluated"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.RUNG_EVALUATION_ERROR, details)


class AlarmEvaluationError(ControlError):
    """Alarm definition could not be evaluated"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.ALARM_EVALUATION_ERROR, details)


# Storage exceptions
class StorageError(ScadaError):
    """Durable sample store error"""
    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.STORAGE_WRITE_ERROR,
        details: Optional[Dict] = None
    ):
        super().__init__(message, error_code, details)


class HistorianStorageError(StorageError):
    """Historian query could not be satisfied from memory or storage"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.STORAGE_READ_ERROR, details)


# Configuration exception
class ConfigurationError(ScadaError):
    """Configuration error"""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


# Error handler decorator
def handle_errors(
    default_return=None,
    log_error: bool = True,
    raise_on_error: bool = False
):
    """
    Decorator for error handling.

    Args:
        default_return: Default return value on error
        log_error: Whether to log errors
        raise_on_error: Whether to re-raise exceptions

    Example:
        @handle_errors(default_return=[], log_error=True)
        def read_something():
            ...
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ScadaError as e:
                if log_error:
                    logger.error(
                        f"Error in {func.__name__}: {e.message}",
                        extra={'error_code': e.error_code.name, 'details': e.details}
                    )
                if raise_on_error:
                    raise
                return default_return
            except Exception as e:
                if log_error:
                    logger.exception(f"Unexpected error in {func.__name__}: {e}")
                if raise_on_error:
                    raise
                return default_return
        return wrapper
    return decorator
