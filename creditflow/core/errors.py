"""
Error taxonomy for review scheduling.

Every failure leaves the progress store untouched: errors are either corrected
locally (credit clamping) or raised whole so the surrounding transaction rolls
back.
"""
from __future__ import annotations


class SRSError(Exception):
    """Base class for scheduling errors."""

    retryable: bool = False


class InvalidInputError(SRSError, ValueError):
    """Raised when a request carries an unknown kind, status or an out-of-range value."""


class PreconditionError(SRSError):
    """Raised when an explicit review targets an item that is not grasped."""


class NotFoundError(SRSError, LookupError):
    """Raised when an item, domain, session or prerequisite does not exist."""


class StorageError(SRSError):
    """Raised when the progress store fails mid-transaction. Safe to retry."""

    retryable = True


class ConcurrentUpdateError(StorageError):
    """Raised when another transaction updated the same progress row first."""
