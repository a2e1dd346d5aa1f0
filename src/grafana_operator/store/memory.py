"""
In memory stores.

These stores are used for tests, local runs and the static state source.
They behave like a watch based key value store:

- every write bumps resource_version
- status writes with a stale version fail with StatusConflict
- listeners are notified after the lock is released

Failure injection
fail_reads and fail_status_writes hold keys whose operations raise, which lets
tests cover the store error paths without a custom fake.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field

import structlog

from grafana_operator.core.errors import StatusConflict, StatusWriteFailure, StoreError
from grafana_operator.core.types import ObjectKey, Resource, ResourceKind
from grafana_operator.store.base import (
    ChangeEvent,
    ChangeListener,
    ChangeType,
    CredentialStore,
    StateStore,
)

logger = structlog.get_logger(__name__)


@dataclass
class InMemoryStateStore(StateStore):
    fail_reads: set[ObjectKey] = field(default_factory=set)
    fail_status_writes: set[ObjectKey] = field(default_factory=set)
    status_writes: int = 0

    _objects: dict[tuple[ResourceKind, ObjectKey], Resource] = field(default_factory=dict)
    _listeners: list[ChangeListener] = field(default_factory=list)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def apply(self, resource: Resource) -> Resource:
        """
        Create or replace a resource as an external actor would.

        The spec is replaced. An existing status is kept unless the incoming
        resource carries its own.
        """
        kind = resource.kind
        with self._lock:
            existing = self._objects.get((kind, resource.key))
            stored = copy.deepcopy(resource)
            if existing is None:
                stored.resource_version = 1
                change = ChangeType.added
            else:
                if stored.status == type(stored.status)():
                    stored.status = copy.deepcopy(existing.status)
                stored.resource_version = existing.resource_version + 1
                change = ChangeType.modified
            self._objects[(kind, resource.key)] = stored
            result = copy.deepcopy(stored)

        logger.debug(
            "resource_applied",
            kind=kind.value,
            key=str(resource.key),
            resource_version=result.resource_version,
        )
        self._notify(ChangeEvent(kind=kind, key=resource.key, change_type=change))
        return result

    def delete(self, kind: ResourceKind, key: ObjectKey) -> bool:
        with self._lock:
            removed = self._objects.pop((kind, key), None)
        if removed is None:
            return False
        self._notify(ChangeEvent(kind=kind, key=key, change_type=ChangeType.deleted))
        return True

    def get(self, kind: ResourceKind, key: ObjectKey) -> Resource | None:
        if key in self.fail_reads:
            raise StoreError(f"injected read failure for {kind.value} {key}")
        with self._lock:
            obj = self._objects.get((kind, key))
            return copy.deepcopy(obj) if obj is not None else None

    def update_status(self, resource: Resource) -> Resource:
        kind = resource.kind
        key = resource.key
        if key in self.fail_status_writes:
            raise StatusWriteFailure(f"injected status write failure for {kind.value} {key}")

        with self._lock:
            current = self._objects.get((kind, key))
            if current is None:
                raise StatusWriteFailure(f"{kind.value} {key} no longer exists")
            if current.resource_version != resource.resource_version:
                raise StatusConflict(
                    f"{kind.value} {key} version {resource.resource_version} is stale, "
                    f"store has {current.resource_version}"
                )
            current.status = copy.deepcopy(resource.status)
            current.resource_version += 1
            self.status_writes += 1
            result = copy.deepcopy(current)

        self._notify(ChangeEvent(kind=kind, key=key, change_type=ChangeType.status))
        return result

    def list(self, kind: ResourceKind) -> list[Resource]:
        with self._lock:
            items = [obj for (k, _), obj in self._objects.items() if k == kind]
            return [copy.deepcopy(obj) for obj in sorted(items, key=lambda o: o.key)]

    def subscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _notify(self, event: ChangeEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event)


@dataclass
class InMemorySecretStore(CredentialStore):
    """Secret registry keyed by namespace and name."""

    _secrets: dict[tuple[str, str], dict[str, bytes]] = field(default_factory=dict)

    def put(self, namespace: str, name: str, data: Mapping[str, bytes | str]) -> None:
        """Add or replace a secret. String values are stored utf-8 encoded."""
        encoded = {
            k: v.encode("utf-8") if isinstance(v, str) else bytes(v) for k, v in data.items()
        }
        self._secrets[(namespace, name)] = encoded

    def get_secret(self, namespace: str, name: str) -> Mapping[str, bytes] | None:
        secret = self._secrets.get((namespace, name))
        return dict(secret) if secret is not None else None

    def names(self) -> list[tuple[str, str]]:
        return sorted(self._secrets.keys())
