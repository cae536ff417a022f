# Exception taxonomy shared by server and device client

"""
Errors raised across twokaj.

Sync failures are split in two families: transient ones stay queued and are
retried with backoff, permanent ones are dead-lettered and surfaced to the
user.
"""
from typing import Optional


class TwokajError(Exception):
    """Base class for all twokaj errors."""


class StorageError(TwokajError):
    """The local durable store could not complete a write or read."""


class OperationValidationError(TwokajError, ValueError):
    """An operation payload does not match the schema for its kind."""


class ConnectivityRequiredError(TwokajError):
    """The requested action needs the network and the device is offline."""

    def __init__(self, action: str):
        super().__init__(f"{action} requires connectivity")
        self.action = action


class TransientSyncError(TwokajError):
    """Delivery failed but may succeed later (network, timeout, 5xx)."""


class PermanentSyncError(TwokajError):
    """The server rejected the operation; retrying will not help."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ReconciliationError(TwokajError):
    """An item in a sync batch could not be applied."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class AuthenticationError(TwokajError):
    """Credentials rejected, or the action needs a logged-in user."""
