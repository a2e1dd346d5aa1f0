from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path

from grafana_operator.agent.queue import ReconcileRequest
from grafana_operator.agent.runner import ControllerRunner, run_static
from grafana_operator.core.config import GatewayConfig, OperatorConfig, RunnerConfig
from grafana_operator.core.errors import RemoteCallFailure
from grafana_operator.core.types import (
    ObjectKey,
    OrganizationResource,
    OrganizationSpec,
    ReconcileReason,
    ResourceKind,
    TeamResource,
    TeamSpec,
)
from grafana_operator.gateway.base import HttpResponse
from grafana_operator.gateway.mock import InMemoryGateway
from grafana_operator.store.memory import InMemoryStateStore

KEY = ObjectKey(namespace="grafana", name="acme")
ORG = ReconcileRequest(kind=ResourceKind.organization, key=KEY)
TEAM = ReconcileRequest(kind=ResourceKind.team, key=KEY)


class FakeClock:
    def __init__(self, now: float = 500.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_org(name: str = "Acme") -> OrganizationResource:
    return OrganizationResource(key=KEY, spec=OrganizationSpec(name=name))


def make_team() -> TeamResource:
    return TeamResource(key=KEY, spec=TeamSpec(name="Acme Ops"))


def test_cycle_creates_organization_before_team():
    store = InMemoryStateStore()
    store.apply(make_team())
    store.apply(make_org())
    gateway = InMemoryGateway(next_org_id=42, next_team_id=9)
    runner = ControllerRunner(store, gateway, clock=FakeClock())

    records = runner.run_cycle()

    assert [r.request for r in records] == [ORG, TEAM]
    assert all(r.result.ok for r in records)
    team = store.get(ResourceKind.team, KEY)
    assert isinstance(team, TeamResource)
    assert team.status.organization_id == 42
    assert team.status.team_id == 9
    assert [c.operation for c in gateway.calls] == ["create_organization", "create_team"]
    assert len(runner.queue) == 0


def test_second_cycle_makes_no_remote_calls():
    store = InMemoryStateStore()
    store.apply(make_org())
    store.apply(make_team())
    gateway = InMemoryGateway()
    runner = ControllerRunner(store, gateway, clock=FakeClock())

    runner.run_cycle()
    records = runner.run_cycle()

    assert {r.result.reason for r in records} == {ReconcileReason.already_reconciled}
    assert len(gateway.calls) == 2


def test_organization_status_wakes_waiting_team():
    clock = FakeClock()
    store = InMemoryStateStore()
    gateway = InMemoryGateway()
    runner = ControllerRunner(store, gateway, RunnerConfig(dependency_requeue_seconds=60), clock=clock)

    store.apply(make_team())
    first = runner.process_due()
    assert first[0].result.reason == ReconcileReason.dependency_missing
    assert runner.queue.next_due() == clock.now + 60

    store.apply(make_org())
    records = runner.process_due()

    assert [r.request for r in records] == [ORG, TEAM]
    assert records[1].result.reason == ReconcileReason.created
    assert len(runner.queue) == 0


def test_remote_failure_backs_off_then_recovers():
    clock = FakeClock()
    store = InMemoryStateStore()
    gateway = InMemoryGateway(failures={"create_organization": RemoteCallFailure("down", status_code=503)})
    runner = ControllerRunner(
        store,
        gateway,
        RunnerConfig(backoff_base_seconds=2, backoff_max_seconds=60),
        clock=clock,
    )
    store.apply(make_org())

    records = runner.process_due()
    assert records[0].result.reason == ReconcileReason.remote_call_failure
    assert runner.queue.next_due() == clock.now + 2

    clock.advance(2)
    runner.process_due()
    assert runner.queue.next_due() == clock.now + 4
    assert runner.queue.failures(ORG) == 2

    gateway.failures.clear()
    clock.advance(4)
    records = runner.process_due()

    assert records[0].result.reason == ReconcileReason.created
    assert runner.queue.failures(ORG) == 0
    assert len(runner.queue) == 0


def test_invalid_resource_is_not_requeued():
    store = InMemoryStateStore()
    runner = ControllerRunner(store, InMemoryGateway(), clock=FakeClock())
    store.apply(make_org(name=""))

    records = runner.process_due()

    assert records[0].result.reason == ReconcileReason.invalid_spec
    assert len(runner.queue) == 0


@dataclass
class ExplodingGateway(InMemoryGateway):
    def create_organization(self, name, ctx=None):  # type: ignore[no-untyped-def]
        raise RuntimeError("bug")


def test_unexpected_exception_is_contained_and_retried():
    store = InMemoryStateStore()
    runner = ControllerRunner(store, ExplodingGateway(), clock=FakeClock())
    store.apply(make_org())

    records = runner.process_due()

    assert records[0].result.reason == ReconcileReason.internal_error
    assert records[0].result.error is not None
    assert ORG in runner.queue


def test_run_forever_stops_promptly():
    store = InMemoryStateStore()
    store.apply(make_org())
    gateway = InMemoryGateway(next_org_id=5)
    runner = ControllerRunner(store, gateway, RunnerConfig(resync_interval_seconds=60))

    thread = threading.Thread(target=runner.run_forever, daemon=True)
    thread.start()

    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        org = store.get(ResourceKind.organization, KEY)
        if isinstance(org, OrganizationResource) and org.status.organization_id is not None:
            break
        time.sleep(0.01)

    runner.stop()
    thread.join(timeout=5)

    assert not thread.is_alive()
    org = store.get(ResourceKind.organization, KEY)
    assert isinstance(org, OrganizationResource)
    assert org.status.organization_id == 5


@dataclass
class ScriptedHttpClient:
    responses: list[HttpResponse]
    urls: list[str] = field(default_factory=list)

    def request(self, method, url, *, headers, body, timeout):  # type: ignore[no-untyped-def]
        self.urls.append(url)
        return self.responses.pop(0)


def test_run_static_reconciles_file_and_writes_status(tmp_path: Path):
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "resources": [
                    {
                        "kind": "GrafanaTeam",
                        "metadata": {"namespace": "grafana", "name": "acme"},
                        "spec": {"name": "Acme Ops"},
                    },
                    {
                        "kind": "GrafanaOrganization",
                        "metadata": {"namespace": "grafana", "name": "acme"},
                        "spec": {"name": "Acme"},
                    },
                ],
                "secrets": [
                    {
                        "namespace": "grafana",
                        "name": "grafana",
                        "data": {"admin-user": "admin", "admin-password": "admin"},
                    }
                ],
            }
        ),
        encoding="utf-8",
    )
    http = ScriptedHttpClient(
        responses=[
            HttpResponse(status=200, body=b'{"id": 42}'),
            HttpResponse(status=200, body=b'{"teamId": 9}'),
        ]
    )
    config = OperatorConfig(
        gateway=GatewayConfig(base_url="http://grafana:3000"),
        audit_path=tmp_path / "audit.jsonl",
    )

    records = run_static(path, config, http=http)

    assert [r.result.reason for r in records] == [ReconcileReason.created, ReconcileReason.created]
    assert http.urls == ["http://grafana:3000/api/orgs", "http://grafana:3000/api/teams"]

    written = json.loads(path.read_text(encoding="utf-8"))
    by_kind = {doc["kind"]: doc for doc in written["resources"]}
    assert by_kind["GrafanaOrganization"]["status"] == {"organizationID": 42}
    assert by_kind["GrafanaTeam"]["status"] == {"org_id": 42, "team_id": 9}
    assert written["secrets"][0]["name"] == "grafana"

    audit_lines = (tmp_path / "audit.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(audit_lines) == 2
