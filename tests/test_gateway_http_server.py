from __future__ import annotations

import json
import socket
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any

import pytest

from grafana_operator.controller.organization import OrganizationReconciler
from grafana_operator.core.audit import AuditLogger
from grafana_operator.core.config import GatewayConfig
from grafana_operator.core.context import ReconcileContext
from grafana_operator.core.errors import ReconcileCancelled, RemoteCallFailure, RemoteConflict
from grafana_operator.core.types import (
    ObjectKey,
    OrganizationResource,
    OrganizationSpec,
    ReconcileOutcome,
    ReconcileReason,
    ResourceKind,
)
from grafana_operator.gateway.grafana import GrafanaGateway
from grafana_operator.gateway.http import UrllibHttpClient
from grafana_operator.store.memory import InMemorySecretStore, InMemoryStateStore

KEY = ObjectKey(namespace="grafana", name="acme")


class FakeGrafanaHandler(BaseHTTPRequestHandler):
    """Answers organization creates and rejects every team as a duplicate."""

    def log_message(self, format: str, *args: Any) -> None:
        return

    def _send_json(self, status: int, payload: dict[str, Any]) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_POST(self) -> None:
        length = int(self.headers.get("Content-Length", "0"))
        payload = json.loads(self.rfile.read(length).decode("utf-8"))
        headers = {k.lower(): v for k, v in self.headers.items()}
        self.server.seen.append((self.path, headers, payload))  # type: ignore[attr-defined]

        if not self.headers.get("Authorization", "").startswith("Basic "):
            self._send_json(401, {"message": "Unauthorized"})
            return
        if self.path == "/api/orgs":
            self._send_json(200, {"orgId": 5, "id": 5, "message": "Organization created"})
            return
        if self.path == "/api/teams":
            self._send_json(409, {"message": "Team name taken"})
            return
        self._send_json(404, {"message": "Not found"})


class SlowGrafanaHandler(FakeGrafanaHandler):
    """Answers like FakeGrafanaHandler, one second late unless released earlier."""

    def do_POST(self) -> None:
        self.server.release.wait(1.0)  # type: ignore[attr-defined]
        super().do_POST()


@contextmanager
def fake_grafana(
    handler: type[BaseHTTPRequestHandler] = FakeGrafanaHandler,
) -> Iterator[tuple[str, list[Any]]]:
    server = HTTPServer(("127.0.0.1", 0), handler)
    server.seen = []  # type: ignore[attr-defined]
    server.release = threading.Event()  # type: ignore[attr-defined]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        host, port = server.server_address[:2]
        yield f"http://{host}:{port}", server.seen  # type: ignore[attr-defined]
    finally:
        server.release.set()  # type: ignore[attr-defined]
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@contextmanager
def raw_server(reply: bytes) -> Iterator[str]:
    """Accept one connection, read the request and answer with reply verbatim."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    listener.settimeout(5)
    port = listener.getsockname()[1]

    def serve() -> None:
        conn, _ = listener.accept()
        with conn:
            conn.recv(65536)
            conn.sendall(reply)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        thread.join(timeout=5)
        listener.close()


def make_gateway(base_url: str, audit: AuditLogger | None = None) -> GrafanaGateway:
    secrets = InMemorySecretStore()
    secrets.put("grafana", "grafana", {"admin-user": "admin", "admin-password": "secret"})
    return GrafanaGateway(
        config=GatewayConfig(base_url=base_url, timeout_seconds=5.0),
        credentials=secrets,
        http=UrllibHttpClient(),
        audit=audit,
    )


def make_store() -> InMemoryStateStore:
    store = InMemoryStateStore()
    store.apply(OrganizationResource(key=KEY, spec=OrganizationSpec(name="Acme")))
    return store


def test_create_organization_over_http():
    with fake_grafana() as (url, seen):
        gateway = make_gateway(url)
        assert gateway.create_organization("Acme") == 5

    path, headers, payload = seen[0]
    assert path == "/api/orgs"
    assert payload == {"name": "Acme"}
    assert headers["content-type"] == "application/json"


def test_http_error_status_is_returned_not_raised_by_transport():
    with fake_grafana() as (url, seen):
        gateway = make_gateway(url)
        with pytest.raises(RemoteConflict) as excinfo:
            gateway.create_team("Acme Ops", 5)

    assert excinfo.value.status_code == 409
    assert "Team name taken" in str(excinfo.value)
    assert seen[0][1]["x-grafana-org-id"] == "5"


def test_refused_connection_is_a_remote_call_failure():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    gateway = make_gateway(f"http://127.0.0.1:{port}")
    with pytest.raises(RemoteCallFailure) as excinfo:
        gateway.create_organization("Acme")

    assert excinfo.value.status_code is None


def test_garbage_status_line_is_a_remote_call_failure():
    store = make_store()
    with raw_server(b"GARBAGE\r\n\r\n") as url:
        result = OrganizationReconciler(store, make_gateway(url)).reconcile(KEY)

    assert result.outcome == ReconcileOutcome.requeue
    assert result.reason == ReconcileReason.remote_call_failure
    assert isinstance(result.error, RemoteCallFailure)
    assert result.error.status_code is None


def test_cancel_during_request_returns_promptly_and_audits_late_create(tmp_path: Path):
    store = make_store()
    audit = AuditLogger(path=tmp_path / "audit.jsonl")

    with fake_grafana(SlowGrafanaHandler) as (url, _):
        ctx = ReconcileContext()
        timer = threading.Timer(0.2, ctx.cancel)
        timer.start()

        started = time.monotonic()
        result = OrganizationReconciler(store, make_gateway(url, audit=audit), audit=audit).reconcile(
            KEY, ctx
        )
        elapsed = time.monotonic() - started
        timer.join()

        deadline = time.monotonic() + 5
        while not audit.unrecorded() and time.monotonic() < deadline:
            time.sleep(0.01)

    assert elapsed < 1.0
    assert result.outcome == ReconcileOutcome.requeue
    assert result.reason == ReconcileReason.cancelled
    assert isinstance(result.error, ReconcileCancelled)

    org = store.get(ResourceKind.organization, KEY)
    assert isinstance(org, OrganizationResource)
    assert org.status.organization_id is None

    orphans = audit.unrecorded()
    assert len(orphans) == 1
    assert orphans[0]["event"] == "remote_created_after_cancel"
    assert orphans[0]["remote_id"] == 5
