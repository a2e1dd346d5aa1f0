"""
Resource serialization.

Documents use the Kubernetes shape so manifests can be reused as is:

{
  "kind": "GrafanaTeam",
  "metadata": {"namespace": "grafana", "name": "acme"},
  "spec": {"name": "Acme Ops", "organizationRef": {"name": "acme"}},
  "status": {"org_id": 42, "team_id": 9}
}

Organization status uses the organizationID key.
Legacy documents encode "not created" as 0 or omit the key. Both read as None.
"""

from __future__ import annotations

from typing import Any

from grafana_operator.core.types import (
    ObjectKey,
    OrganizationResource,
    OrganizationSpec,
    OrganizationStatus,
    Resource,
    ResourceKind,
    TeamResource,
    TeamSpec,
    TeamStatus,
)


def _optional_id(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    value = int(raw)
    if value == 0:
        return None
    return value


def _key_from_metadata(obj: dict[str, Any]) -> ObjectKey:
    meta = obj.get("metadata", {}) or {}
    return ObjectKey(
        namespace=str(meta.get("namespace", "default")),
        name=str(meta["name"]),
    )


def _ref_from_dict(raw: Any, namespace: str) -> ObjectKey | None:
    if not isinstance(raw, dict) or not raw.get("name"):
        return None
    return ObjectKey(namespace=str(raw.get("namespace") or namespace), name=str(raw["name"]))


def resource_from_dict(obj: dict[str, Any]) -> Resource:
    """
    Convert a document into a resource.

    Raises ValueError for an unknown kind and KeyError when metadata.name is missing.
    """
    kind = ResourceKind(str(obj.get("kind", "")))
    key = _key_from_metadata(obj)
    spec_obj = obj.get("spec", {}) or {}
    status_obj = obj.get("status", {}) or {}
    version = int((obj.get("metadata") or {}).get("resourceVersion", 0) or 0)

    if kind == ResourceKind.organization:
        return OrganizationResource(
            key=key,
            spec=OrganizationSpec(name=str(spec_obj.get("name", ""))),
            status=OrganizationStatus(
                organization_id=_optional_id(status_obj.get("organizationID")),
            ),
            resource_version=version,
        )

    return TeamResource(
        key=key,
        spec=TeamSpec(
            name=str(spec_obj.get("name", "")),
            organization_ref=_ref_from_dict(spec_obj.get("organizationRef"), key.namespace),
        ),
        status=TeamStatus(
            organization_id=_optional_id(status_obj.get("org_id")),
            team_id=_optional_id(status_obj.get("team_id")),
        ),
        resource_version=version,
    )


def resource_to_dict(resource: Resource) -> dict[str, Any]:
    """
    Convert a resource into a JSON safe document.

    Unset status ids are omitted, matching omitempty on the wire.
    """
    metadata: dict[str, Any] = {
        "namespace": resource.key.namespace,
        "name": resource.key.name,
        "resourceVersion": resource.resource_version,
    }
    status: dict[str, Any] = {}

    if isinstance(resource, OrganizationResource):
        spec: dict[str, Any] = {"name": resource.spec.name}
        if resource.status.organization_id is not None:
            status["organizationID"] = resource.status.organization_id
    else:
        spec = {"name": resource.spec.name}
        ref = resource.spec.organization_ref
        if ref is not None:
            spec["organizationRef"] = {"namespace": ref.namespace, "name": ref.name}
        if resource.status.organization_id is not None:
            status["org_id"] = resource.status.organization_id
        if resource.status.team_id is not None:
            status["team_id"] = resource.status.team_id

    return {
        "kind": resource.kind.value,
        "metadata": metadata,
        "spec": spec,
        "status": status,
    }
