"""
Store interfaces.

Goal
Keep the reconcilers independent of where desired state and secrets live.
A Kubernetes API client, a database or the in memory store can all satisfy
these protocols.

Contract
get returns None when the object does not exist. Any other failure raises
StoreError.
update_status writes only the status portion and must reject a stale
resource_version with StatusConflict.
Returned objects are copies. Mutating them does not change the store.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from grafana_operator.core.types import ObjectKey, Resource, ResourceKind


class ChangeType(StrEnum):
    added = "added"
    modified = "modified"
    status = "status"
    deleted = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    """
    Change notification.

    change_type status means only the status portion changed, which is what
    a reconciler's own write produces.
    """

    kind: ResourceKind
    key: ObjectKey
    change_type: ChangeType


ChangeListener = Callable[[ChangeEvent], None]


class StateStore(Protocol):
    """Desired state store keyed by kind and namespace plus name."""

    def get(self, kind: ResourceKind, key: ObjectKey) -> Resource | None:
        """Return a copy of the resource, or None when it does not exist."""

    def update_status(self, resource: Resource) -> Resource:
        """Persist resource.status and return the stored copy with its new version."""

    def list(self, kind: ResourceKind) -> list[Resource]:
        """Return copies of all resources of a kind, ordered by key."""

    def subscribe(self, listener: ChangeListener) -> None:
        """Register a listener called after every change."""


class CredentialStore(Protocol):
    """Secret lookup by namespace and name."""

    def get_secret(self, namespace: str, name: str) -> Mapping[str, bytes] | None:
        """Return the secret's byte fields, or None when it does not exist."""
