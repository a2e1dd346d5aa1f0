"""
Core types.

This file defines the shared data structures used across the operator.

Important design choice
Resources are plain dataclasses, not Kubernetes objects.

The store is an external collaborator, so we keep the shapes store neutral:
a resource is identity, spec, status and an opaque resource_version that the
store uses for optimistic concurrency.

Status identifiers are Optional.
None means the remote object has not been created yet.
Zero is a legitimate remote id and is never treated as a sentinel here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from grafana_operator.core.errors import OperatorError


class ResourceKind(StrEnum):
    """Desired state resource kinds handled by the operator."""

    organization = "GrafanaOrganization"
    team = "GrafanaTeam"


@dataclass(frozen=True, order=True)
class ObjectKey:
    """
    Store identity of a resource.

    namespace and name together are unique per kind.
    """

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class OrganizationSpec:
    """
    Desired organization.

    name is the remote organization name. It is treated as immutable.
    """

    name: str


@dataclass
class OrganizationStatus:
    """Observed organization state, written only by the organization reconciler."""

    organization_id: int | None = None


@dataclass
class OrganizationResource:
    key: ObjectKey
    spec: OrganizationSpec
    status: OrganizationStatus = field(default_factory=OrganizationStatus)
    resource_version: int = 0

    kind = ResourceKind.organization


@dataclass
class TeamSpec:
    """
    Desired team.

    name
    Remote team name.

    organization_ref
    Explicit key of the parent organization resource.
    When None, the team's own key is used, so a team named acme belongs to the
    organization named acme in the same namespace.
    """

    name: str
    organization_ref: ObjectKey | None = None


@dataclass
class TeamStatus:
    """
    Observed team state, written only by the team reconciler.

    organization_id is the parent's remote id copied in at creation time.
    """

    organization_id: int | None = None
    team_id: int | None = None


@dataclass
class TeamResource:
    key: ObjectKey
    spec: TeamSpec
    status: TeamStatus = field(default_factory=TeamStatus)
    resource_version: int = 0

    kind = ResourceKind.team


Resource = OrganizationResource | TeamResource


class ReconcileOutcome(StrEnum):
    """
    Outcome of a single reconcile invocation.

    done
    Nothing more to do for this key until it changes.

    requeue
    Try again later. requeue_after may suggest when.

    failed
    Terminal. Retrying without a change to the resource will not help.
    """

    done = "done"
    requeue = "requeue"
    failed = "failed"


class ReconcileReason(StrEnum):
    created = "created"
    adopted = "adopted"
    not_found = "not_found"
    already_reconciled = "already_reconciled"
    dependency_unsatisfied = "dependency_unsatisfied"
    dependency_missing = "dependency_missing"
    store_read_failure = "store_read_failure"
    credentials_unavailable = "credentials_unavailable"
    remote_call_failure = "remote_call_failure"
    response_decode_failure = "response_decode_failure"
    status_write_failure = "status_write_failure"
    cancelled = "cancelled"
    invalid_spec = "invalid_spec"
    internal_error = "internal_error"


@dataclass(frozen=True)
class ReconcileResult:
    """
    Result of a reconcile invocation.

    outcome
    done, requeue or failed.

    reason
    Why the invocation ended the way it did.

    requeue_after
    Suggested delay in seconds. None lets the scheduler pick its own backoff.

    error
    The surfaced error for failure reasons, None otherwise.

    remote_id
    The remote id recorded by this invocation, if any.
    """

    outcome: ReconcileOutcome
    reason: ReconcileReason
    requeue_after: float | None = None
    error: OperatorError | None = None
    remote_id: int | None = None

    @property
    def ok(self) -> bool:
        return self.outcome == ReconcileOutcome.done

    @classmethod
    def done(cls, reason: ReconcileReason, remote_id: int | None = None) -> ReconcileResult:
        return cls(outcome=ReconcileOutcome.done, reason=reason, remote_id=remote_id)

    @classmethod
    def retry(
        cls,
        reason: ReconcileReason,
        error: OperatorError | None = None,
        after: float | None = None,
    ) -> ReconcileResult:
        return cls(
            outcome=ReconcileOutcome.requeue,
            reason=reason,
            requeue_after=after,
            error=error,
        )

    @classmethod
    def terminal(cls, reason: ReconcileReason, error: OperatorError | None = None) -> ReconcileResult:
        return cls(outcome=ReconcileOutcome.failed, reason=reason, error=error)
