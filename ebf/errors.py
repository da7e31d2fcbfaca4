"""
Error taxonomy shared by the store, the feed and the auth layer.
"""

from typing import Optional


class EbfError(Exception):
    """Base class for every error surfaced to the user."""


class NetworkFailure(EbfError):
    """The remote store or identity provider could not be reached (retryable)."""


class ValidationFailure(EbfError):
    """Malformed or missing form input, caught before anything is sent."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class PermissionDenied(EbfError):
    """A write was attempted outside the role's writable sections."""


class RemoteRejection(EbfError):
    """The remote store refused the operation (constraint violation, missing row...)."""


class AuthError(EbfError):
    """Identity provider failure, already translated to a user-facing message."""
