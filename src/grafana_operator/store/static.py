"""
Static state source.

Reads a local json file containing desired state and, optionally, secrets,
and loads it into the in memory stores. dump writes the current state back,
status included, so a local run can be resumed without re-creating anything.

Schema example
{
  "resources": [
    {"kind": "GrafanaOrganization", "metadata": {"namespace": "grafana", "name": "acme"},
     "spec": {"name": "Acme"}},
    {"kind": "GrafanaTeam", "metadata": {"namespace": "grafana", "name": "acme"},
     "spec": {"name": "Acme Ops"}}
  ],
  "secrets": [
    {"namespace": "grafana", "name": "grafana",
     "data": {"admin-user": "admin", "admin-password": "admin"}}
  ]
}

A file may also hold a single resource document.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from grafana_operator.core.serialization import resource_from_dict, resource_to_dict
from grafana_operator.core.types import Resource, ResourceKind
from grafana_operator.store.memory import InMemorySecretStore, InMemoryStateStore


def _resources_from_payload(data: Any) -> list[Resource]:
    if isinstance(data, dict) and "resources" in data:
        raw = data.get("resources", [])
        if isinstance(raw, list):
            return [resource_from_dict(x) for x in raw if isinstance(x, dict)]
        return []

    if isinstance(data, dict) and "kind" in data:
        return [resource_from_dict(data)]

    return []


@dataclass(frozen=True)
class StaticStateSource:
    """Load desired state from a local json file."""

    path: Path

    def load_into(
        self,
        store: InMemoryStateStore,
        secrets: InMemorySecretStore | None = None,
    ) -> int:
        """
        Apply every resource in the file to store and return how many were applied.

        Organizations are applied before teams so change listeners see parents first.
        """
        data = json.loads(self.path.read_text(encoding="utf-8"))
        resources = _resources_from_payload(data)
        resources.sort(key=lambda r: (r.kind != ResourceKind.organization, r.key))

        for resource in resources:
            store.apply(resource)

        if secrets is not None and isinstance(data, dict):
            for raw in data.get("secrets", []) or []:
                if not isinstance(raw, dict):
                    continue
                secrets.put(
                    namespace=str(raw.get("namespace", "default")),
                    name=str(raw["name"]),
                    data={str(k): str(v) for k, v in (raw.get("data", {}) or {}).items()},
                )

        return len(resources)

    def dump(self, store: InMemoryStateStore) -> None:
        """Write all resources with their current status back to the file."""
        resources: list[dict[str, Any]] = []
        for kind in (ResourceKind.organization, ResourceKind.team):
            resources.extend(resource_to_dict(r) for r in store.list(kind))

        payload: dict[str, Any] = {"resources": resources}

        if self.path.exists():
            previous = json.loads(self.path.read_text(encoding="utf-8"))
            if isinstance(previous, dict) and "secrets" in previous:
                payload["secrets"] = previous["secrets"]

        self.path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
