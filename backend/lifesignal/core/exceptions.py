"""
Custom exceptions for the Life Signal service.
Provides meaningful error types for different failure scenarios.
"""
from typing import Any, Optional


class LifeSignalException(Exception):
    """Base exception for all Life Signal errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(LifeSignalException):
    """
    Raised when required configuration is missing or invalid.

    A missing telephony API key is fatal to a whole scan pass:
    no user is processed.
    """

    def __init__(
        self,
        message: str,
        config_key: str,
        expected_type: Optional[str] = None
    ):
        details = {
            "config_key": config_key
        }
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(message, details, status_code=500)


class DatabaseError(LifeSignalException):
    """Raised when store operations fail."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=500)


class ResourceNotFoundError(LifeSignalException):
    """Raised when a referenced record doesn't exist."""

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str
    ):
        details = {
            "resource_type": resource_type,
            "resource_id": resource_id,
        }
        super().__init__(message, details, status_code=404)


class CallPlacementError(LifeSignalException):
    """
    Raised when the telephony provider does not accept an outbound call.

    Unlike push delivery, a call is only considered placed after the
    provider confirmed it, so this error propagates to the caller.
    """

    def __init__(
        self,
        message: str,
        to_phone: Optional[str] = None,
        provider_status: Optional[int] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if to_phone:
            details["to_phone"] = mask_phone(to_phone)
        if provider_status is not None:
            details["provider_status"] = provider_status
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=502)


class ClientStateError(LifeSignalException):
    """Raised when a call client_state payload cannot be decoded."""

    def __init__(self, message: str, raw_value: Optional[str] = None):
        details = {}
        if raw_value:
            details["raw_prefix"] = raw_value[:16]
        super().__init__(message, details, status_code=400)


def mask_phone(phone: str) -> str:
    """Mask all but the last four digits of a phone number for logs."""
    if not phone or len(phone) <= 4:
        return "***"
    return "*" * (len(phone) - 4) + phone[-4:]
