"""Error taxonomy for webhook ingestion and outbound dispatch."""

from typing import Optional, Dict, Any
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for handling and logging."""
    AUTHENTICATION = "authentication"  # Bad or missing webhook signature
    CONFIGURATION = "configuration"  # Inbox/contact missing channel credentials
    PROVIDER = "provider"  # External channel API returned an error
    NOT_FOUND = "not_found"  # Lookup came back empty
    UNAUTHORIZED = "unauthorized"  # Caller does not own the resource
    VALIDATION = "validation"  # Malformed request


class HelpdeskError(Exception):
    """Base exception for all engine errors."""
    category: ErrorCategory = ErrorCategory.VALIDATION
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "category": self.category.value}


class AuthenticationError(HelpdeskError):
    """Webhook signature missing or invalid."""
    category = ErrorCategory.AUTHENTICATION
    status_code = 401


class ConfigurationError(HelpdeskError):
    """Required channel credentials or identifiers are missing."""
    category = ErrorCategory.CONFIGURATION
    status_code = 400

    def __init__(self, message: str, missing: Optional[list] = None):
        self.missing = missing or []
        super().__init__(message, details={"missing": self.missing})


class ProviderError(HelpdeskError):
    """External channel API returned an error payload or could not be reached."""
    category = ErrorCategory.PROVIDER
    status_code = 502

    def __init__(
        self,
        message: str,
        provider: str,
        provider_status: Optional[int] = None,
        provider_code: Optional[Any] = None,
    ):
        self.provider = provider
        self.provider_status = provider_status
        self.provider_code = provider_code
        super().__init__(
            message,
            details={
                "provider": provider,
                "provider_status": provider_status,
                "provider_code": provider_code,
            },
        )


class NotFoundError(HelpdeskError):
    """Conversation, contact or inbox lookup returned nothing."""
    category = ErrorCategory.NOT_FOUND
    status_code = 404


class UnauthorizedError(HelpdeskError):
    """Widget visitor does not own the requested conversation."""
    category = ErrorCategory.UNAUTHORIZED
    status_code = 403


class ValidationError(HelpdeskError):
    """Request is missing fields or carries malformed values."""
    category = ErrorCategory.VALIDATION
    status_code = 400
