"""
Shared reconciler plumbing.

Reconcilers catch only OperatorError subclasses. failure_result maps each one
to a ReconcileResult so every path reports errors the same way. Anything else
is a bug and propagates to the runner.
"""

from __future__ import annotations

from typing import Any

from grafana_operator.core.errors import (
    CredentialsUnavailable,
    InvalidSpec,
    OperatorError,
    ReconcileCancelled,
    RemoteCallFailure,
    ResponseDecodeFailure,
    StatusWriteFailure,
    StoreError,
)
from grafana_operator.core.types import ReconcileReason, ReconcileResult

_RETRY_REASONS: list[tuple[type[OperatorError], ReconcileReason]] = [
    (ReconcileCancelled, ReconcileReason.cancelled),
    (CredentialsUnavailable, ReconcileReason.credentials_unavailable),
    (RemoteCallFailure, ReconcileReason.remote_call_failure),
    (ResponseDecodeFailure, ReconcileReason.response_decode_failure),
    # StatusWriteFailure is a StoreError, so it must be matched first
    (StatusWriteFailure, ReconcileReason.status_write_failure),
    (StoreError, ReconcileReason.store_read_failure),
]


def failure_result(exc: OperatorError) -> ReconcileResult:
    """Map an operator error to the result the scheduler should act on."""
    if isinstance(exc, InvalidSpec):
        return ReconcileResult.terminal(ReconcileReason.invalid_spec, error=exc)

    for err_type, reason in _RETRY_REASONS:
        if isinstance(exc, err_type):
            return ReconcileResult.retry(reason, error=exc)

    return ReconcileResult.retry(ReconcileReason.remote_call_failure, error=exc)


def validate_name(name: str, what: str) -> None:
    """Raise InvalidSpec when the remote name is blank."""
    if not name.strip():
        raise InvalidSpec(f"{what} spec.name must not be empty")


def log_failure(log: Any, event: str, result: ReconcileResult) -> None:
    """Log a failed invocation. Cancellation is routine and stays at info."""
    if result.reason == ReconcileReason.cancelled:
        log.info(event, reason=result.reason.value, error=str(result.error))
        return
    log.error(event, reason=result.reason.value, error=str(result.error))
