"""
Grafana gateway.

Implements RemoteAPIGateway against the Grafana HTTP API with basic auth.

Behavior
For each call:
1) stop early if the reconcile context is cancelled or expired
2) load the admin credential pair from the credential store
3) send exactly one request with a bounded timeout on a worker thread
4) wait for the response, the context cancellation or the deadline, whichever
   comes first
5) accept only 200 or 201, then read the numeric id from the JSON body

Abandoned calls
A cancelled or expired wait raises ReconcileCancelled right away and leaves the
worker to finish on its own. When an abandoned create still succeeds, the id
is logged and written to the audit log with recorded false, and the next
attempt adopts the object through the conflict lookup.

Credentials are read on every call so a rotated secret takes effect without a
restart. Everything else is fixed at construction.

There are no retries here. A create that succeeded remotely but whose response
was lost will conflict on the next attempt, which the reconcilers resolve by
looking the object up by name.
"""

from __future__ import annotations

import base64
import json
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote, urlencode

import structlog

from grafana_operator.core.audit import AuditLogger
from grafana_operator.core.config import GatewayConfig
from grafana_operator.core.context import ReconcileContext
from grafana_operator.core.errors import (
    CredentialsUnavailable,
    OperatorError,
    ReconcileCancelled,
    RemoteCallFailure,
    RemoteConflict,
    ResponseDecodeFailure,
    StoreError,
)
from grafana_operator.gateway.base import HttpClient, HttpResponse, RemoteAPIGateway
from grafana_operator.gateway.http import UrllibHttpClient
from grafana_operator.store.base import CredentialStore

logger = structlog.get_logger(__name__)

_CREATED_STATUSES = (200, 201)


def _numeric_field(payload: Any, name: str, what: str) -> int:
    """
    Read an id field that must be a JSON number.

    Integral floats are accepted because JSON does not distinguish them.
    Booleans are rejected even though Python treats them as ints.
    """
    if not isinstance(payload, dict):
        raise ResponseDecodeFailure(f"invalid response from grafana api: expected an object for {what}")

    raw = payload.get(name)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ResponseDecodeFailure(f"invalid response from grafana api: missing or invalid {what} {name}")
    if isinstance(raw, float) and not raw.is_integer():
        raise ResponseDecodeFailure(f"invalid response from grafana api: {what} {name} is not integral")
    return int(raw)


def _error_detail(resp: HttpResponse) -> str:
    """Best effort message from an error body. Grafana sends {"message": ...}."""
    try:
        data = json.loads(resp.body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return ""
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return ""


LateResponse = Callable[[HttpResponse], None]


class _InflightRequest:
    """
    One transport call running on a daemon thread.

    wakeup is set when the call finishes and, through ReconcileContext.watch,
    when the context is cancelled. abandon hands the eventual response to a
    callback instead of the caller.
    """

    def __init__(self, send: Callable[[], HttpResponse]) -> None:
        self.wakeup = threading.Event()
        self._send = send
        self._lock = threading.Lock()
        self._done = False
        self._response: HttpResponse | None = None
        self._error: Exception | None = None
        self._on_late: LateResponse | None = None

    def start(self) -> None:
        threading.Thread(target=self._run, name="grafana-request", daemon=True).start()

    def _run(self) -> None:
        response: HttpResponse | None = None
        error: Exception | None = None
        try:
            response = self._send()
        except Exception as exc:
            error = exc

        with self._lock:
            self._done = True
            self._response = response
            self._error = error
            on_late = self._on_late
        self.wakeup.set()

        if on_late is not None and response is not None:
            on_late(response)

    def abandon(self, on_late: LateResponse | None) -> bool:
        """Detach the caller. Returns False when the response already arrived."""
        with self._lock:
            if self._done:
                return False
            self._on_late = on_late
            return True

    def result(self) -> HttpResponse:
        if self._error is not None:
            raise self._error
        assert self._response is not None
        return self._response


@dataclass
class GrafanaGateway(RemoteAPIGateway):
    """
    Grafana API gateway.

    config
    Base URL, endpoint paths, timeout and secret location.

    credentials
    Credential store holding the admin user and password.

    http
    Transport. Defaults to urllib.

    audit
    Optional audit log for creates that complete after the caller gave up.
    """

    config: GatewayConfig
    credentials: CredentialStore
    http: HttpClient = field(default_factory=UrllibHttpClient)
    audit: AuditLogger | None = None

    def create_organization(self, name: str, ctx: ReconcileContext | None = None) -> int:
        resp = self._send(
            "POST",
            self.config.orgs_path,
            ctx,
            payload={"name": name},
            on_late=self._late_create("organization", name, "id"),
        )
        self._require_status(resp, _CREATED_STATUSES, f"create organization {name!r}")
        return _numeric_field(resp.json(), "id", "organization")

    def create_team(self, name: str, org_id: int, ctx: ReconcileContext | None = None) -> int:
        resp = self._send(
            "POST",
            self.config.teams_path,
            ctx,
            payload={"name": name, "orgId": org_id},
            org_id=org_id,
            on_late=self._late_create("team", name, "teamId", org_id=org_id),
        )
        self._require_status(resp, _CREATED_STATUSES, f"create team {name!r} in org {org_id}")
        return _numeric_field(resp.json(), "teamId", "team")

    def find_organization(self, name: str, ctx: ReconcileContext | None = None) -> int | None:
        path = self.config.org_lookup_path.format(name=quote(name, safe=""))
        resp = self._send("GET", path, ctx)
        if resp.status == 404:
            return None
        self._require_status(resp, (200,), f"look up organization {name!r}")
        return _numeric_field(resp.json(), "id", "organization")

    def find_team(self, name: str, org_id: int, ctx: ReconcileContext | None = None) -> int | None:
        path = f"{self.config.team_search_path}?{urlencode({'name': name})}"
        resp = self._send("GET", path, ctx, org_id=org_id)
        self._require_status(resp, (200,), f"search team {name!r} in org {org_id}")

        data = resp.json()
        teams = data.get("teams") if isinstance(data, dict) else None
        if not isinstance(teams, list):
            raise ResponseDecodeFailure("invalid response from grafana api: missing teams list")

        for team in teams:
            if isinstance(team, dict) and team.get("name") == name:
                return _numeric_field(team, "id", "team")
        return None

    def _authorization(self) -> str:
        ns = self.config.secret_namespace
        secret_name = self.config.secret_name
        try:
            secret = self.credentials.get_secret(ns, secret_name)
        except StoreError as exc:
            raise CredentialsUnavailable(f"failed to fetch secret {ns}/{secret_name}: {exc}") from exc

        if secret is None:
            raise CredentialsUnavailable(f"secret {ns}/{secret_name} not found")

        user = secret.get(self.config.user_key)
        password = secret.get(self.config.password_key)
        if not user or password is None:
            raise CredentialsUnavailable(
                f"secret {ns}/{secret_name} lacks {self.config.user_key} or {self.config.password_key}"
            )

        token = base64.b64encode(bytes(user) + b":" + bytes(password)).decode("ascii")
        return f"Basic {token}"

    def _send(
        self,
        method: str,
        path: str,
        ctx: ReconcileContext | None,
        payload: dict[str, Any] | None = None,
        org_id: int | None = None,
        on_late: LateResponse | None = None,
    ) -> HttpResponse:
        ctx = ctx or ReconcileContext()
        ctx.raise_if_cancelled()

        headers = {
            "Accept": "application/json",
            "Authorization": self._authorization(),
        }
        body: bytes | None = None
        if payload is not None:
            body = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if org_id is not None:
            headers["X-Grafana-Org-Id"] = str(org_id)

        url = f"{self.config.base_url.rstrip('/')}{path}"
        timeout = ctx.timeout(self.config.timeout_seconds)

        logger.debug("grafana_request", method=method, url=url, timeout=timeout)
        call = _InflightRequest(
            lambda: self.http.request(method, url, headers=headers, body=body, timeout=timeout)
        )
        ctx.watch(call.wakeup)
        try:
            call.start()
            call.wakeup.wait(ctx.remaining())
        finally:
            ctx.unwatch(call.wakeup)

        if call.abandon(on_late):
            logger.info("grafana_request_abandoned", method=method, url=url, cancelled=ctx.cancelled)
            ctx.raise_if_cancelled()
            raise ReconcileCancelled("reconcile deadline exceeded")

        resp = call.result()
        logger.debug("grafana_response", method=method, url=url, status=resp.status)
        return resp

    def _late_create(
        self,
        what: str,
        name: str,
        id_field: str,
        org_id: int | None = None,
    ) -> LateResponse:
        """Callback recording a create whose response arrived after the caller gave up."""

        def record(resp: HttpResponse) -> None:
            try:
                self._require_status(resp, _CREATED_STATUSES, f"create {what} {name!r}")
                remote_id = _numeric_field(resp.json(), id_field, what)
            except OperatorError as exc:
                logger.info("grafana_late_response_discarded", kind=what, name=name, error=str(exc))
                return

            logger.warning(
                "grafana_created_after_cancel",
                kind=what,
                name=name,
                org_id=org_id,
                remote_id=remote_id,
                orphaned=True,
            )
            if self.audit is not None:
                self.audit.log(
                    {
                        "event": "remote_created_after_cancel",
                        "kind": what,
                        "name": name,
                        "org_id": org_id,
                        "remote_id": remote_id,
                        "recorded": False,
                    }
                )

        return record

    def _require_status(self, resp: HttpResponse, allowed: tuple[int, ...], action: str) -> None:
        if resp.status in allowed:
            return

        detail = _error_detail(resp)
        message = f"failed to {action}: {resp.status} {resp.reason}".rstrip()
        if detail:
            message = f"{message} ({detail})"

        if resp.status == 409:
            raise RemoteConflict(message, status_code=resp.status)
        raise RemoteCallFailure(message, status_code=resp.status)
