"""
Core exception classes for AWS Tier Watch.
"""
from typing import Optional


class TierWatchError(Exception):
    """Base exception for all AWS Tier Watch errors."""
    
    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidInputError(TierWatchError):
    """Raised when the calculator receives malformed snapshot or date input."""
    pass


class ProviderError(TierWatchError):
    """Raised when fetching instances from AWS fails."""
    pass


class AuthenticationError(TierWatchError):
    """Raised when AWS authentication fails."""
    pass


class ConfigurationError(TierWatchError):
    """Raised when configuration is invalid or missing."""
    pass


class StateError(TierWatchError):
    """Raised when usage ledger operations fail."""
    pass


class UserCancelled(TierWatchError):
    """Raised when user cancels operation (Ctrl+C)."""

    def __init__(self, message: str = "Operation cancelled by user"):
        super().__init__(message)
