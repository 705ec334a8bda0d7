"""
Typed errors for the ALM Engine.

Store errors are split into fatal (the whole pass aborts) and local
(recorded against a single account, the pass carries on).
"""

from typing import Optional


class AccountLifecycleError(Exception):
    """Base error for all ALM Engine failures."""

    def __init__(self, message: str, username: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.username = username

    def __str__(self) -> str:
        return self.message


class StoreError(AccountLifecycleError):
    """Base error raised by account store adapters."""


class StoreUnavailable(StoreError):
    """The backing identity database cannot be opened or read. Fatal for a pass."""


class RecordNotFound(StoreError):
    """The account addressed by a write does not exist."""


class WriteRejected(StoreError):
    """The store refused to apply a mutation to one account."""


class ReportSinkFailure(AccountLifecycleError):
    """The pass report could not be persisted. Never affects account state."""


class ConfigurationError(AccountLifecycleError):
    """Invalid or unreadable configuration."""


class PassAlreadyRunning(AccountLifecycleError):
    """Another reconciliation pass holds the pass lock."""
