from __future__ import annotations

import pytest

from grafana_operator.core.errors import StatusConflict, StatusWriteFailure, StoreError
from grafana_operator.core.types import (
    ObjectKey,
    OrganizationResource,
    OrganizationSpec,
    OrganizationStatus,
    ResourceKind,
    TeamResource,
    TeamSpec,
)
from grafana_operator.store.base import ChangeEvent, ChangeType
from grafana_operator.store.memory import InMemorySecretStore, InMemoryStateStore


def key(name: str) -> ObjectKey:
    return ObjectKey(namespace="grafana", name=name)


def test_get_returns_independent_copies():
    store = InMemoryStateStore()
    store.apply(OrganizationResource(key=key("a"), spec=OrganizationSpec(name="A")))

    first = store.get(ResourceKind.organization, key("a"))
    assert isinstance(first, OrganizationResource)
    first.status.organization_id = 99

    again = store.get(ResourceKind.organization, key("a"))
    assert isinstance(again, OrganizationResource)
    assert again.status.organization_id is None


def test_kinds_are_separate_namespaces():
    store = InMemoryStateStore()
    store.apply(OrganizationResource(key=key("a"), spec=OrganizationSpec(name="A")))

    assert store.get(ResourceKind.team, key("a")) is None
    assert store.get(ResourceKind.organization, key("b")) is None


def test_apply_keeps_existing_status_and_bumps_version():
    store = InMemoryStateStore()
    created = store.apply(OrganizationResource(key=key("a"), spec=OrganizationSpec(name="A")))
    assert created.resource_version == 1

    created.status.organization_id = 4
    store.update_status(created)

    updated = store.apply(OrganizationResource(key=key("a"), spec=OrganizationSpec(name="A2")))

    assert updated.resource_version == 3
    assert updated.spec.name == "A2"
    assert updated.status.organization_id == 4


def test_stale_status_write_raises_conflict():
    store = InMemoryStateStore()
    store.apply(OrganizationResource(key=key("a"), spec=OrganizationSpec(name="A")))
    stale = store.get(ResourceKind.organization, key("a"))
    assert stale is not None
    store.apply(OrganizationResource(key=key("a"), spec=OrganizationSpec(name="A")))

    with pytest.raises(StatusConflict):
        store.update_status(stale)

    assert store.status_writes == 0


def test_status_write_for_deleted_resource_fails():
    store = InMemoryStateStore()
    org = store.apply(OrganizationResource(key=key("a"), spec=OrganizationSpec(name="A")))
    assert store.delete(ResourceKind.organization, key("a"))
    assert not store.delete(ResourceKind.organization, key("a"))

    org.status = OrganizationStatus(organization_id=1)
    with pytest.raises(StatusWriteFailure):
        store.update_status(org)


def test_injected_failures():
    store = InMemoryStateStore(fail_reads={key("r")}, fail_status_writes={key("w")})
    org = store.apply(OrganizationResource(key=key("w"), spec=OrganizationSpec(name="W")))

    with pytest.raises(StoreError):
        store.get(ResourceKind.organization, key("r"))
    with pytest.raises(StatusWriteFailure):
        store.update_status(org)


def test_listeners_see_every_change():
    store = InMemoryStateStore()
    events: list[ChangeEvent] = []
    store.subscribe(events.append)

    team = store.apply(TeamResource(key=key("t"), spec=TeamSpec(name="T")))
    store.apply(TeamResource(key=key("t"), spec=TeamSpec(name="T2")))
    team = store.get(ResourceKind.team, key("t"))
    assert isinstance(team, TeamResource)
    team.status.team_id = 1
    store.update_status(team)
    store.delete(ResourceKind.team, key("t"))

    assert [e.change_type for e in events] == [
        ChangeType.added,
        ChangeType.modified,
        ChangeType.status,
        ChangeType.deleted,
    ]
    assert all(e.kind == ResourceKind.team and e.key == key("t") for e in events)


def test_list_is_sorted_by_key():
    store = InMemoryStateStore()
    for name in ("c", "a", "b"):
        store.apply(OrganizationResource(key=key(name), spec=OrganizationSpec(name=name)))

    assert [r.key.name for r in store.list(ResourceKind.organization)] == ["a", "b", "c"]
    assert store.list(ResourceKind.team) == []


def test_secret_store_encodes_strings():
    secrets = InMemorySecretStore()
    secrets.put("grafana", "grafana", {"admin-user": "admin", "admin-password": b"raw"})

    data = secrets.get_secret("grafana", "grafana")

    assert data == {"admin-user": b"admin", "admin-password": b"raw"}
    assert secrets.get_secret("grafana", "other") is None
    assert secrets.names() == [("grafana", "grafana")]
