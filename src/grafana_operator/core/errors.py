"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
StoreError means the desired state could not be read, retry later.
RemoteCallFailure means the platform rejected or never saw the request.
ResponseDecodeFailure means the platform answered but we could not read the id,
so the remote object may exist without a local record.
StatusWriteFailure after a successful create is the dangerous case, the remote
object exists but is unrecorded.
InvalidSpec is terminal and should not be retried until the resource changes.
"""

from __future__ import annotations


class OperatorError(Exception):
    """Base class for all operator exceptions."""


class StoreError(OperatorError):
    """Raised when the desired state store fails for a reason other than not found."""


class StatusWriteFailure(StoreError):
    """Raised when writing status back to the store fails."""


class StatusConflict(StatusWriteFailure):
    """Raised when a status write carries a stale resource version."""


class CredentialsUnavailable(OperatorError):
    """Raised when the admin credential secret is missing or incomplete."""


class RemoteCallFailure(OperatorError):
    """
    Raised when the remote platform call fails.

    status_code is set when the platform answered with a non success status,
    and is None for transport failures such as refused connections or timeouts.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteConflict(RemoteCallFailure):
    """Raised when the platform reports that the object already exists."""


class ResponseDecodeFailure(OperatorError):
    """Raised when a success response is not JSON or lacks the expected id field."""


class ReconcileCancelled(OperatorError):
    """Raised when the reconcile context was cancelled or its deadline passed."""


class InvalidSpec(OperatorError):
    """Raised when a resource spec cannot be reconciled as written."""
