"""
Remote platform interfaces.

Goal
Define stable interfaces for remote object creation without binding the
reconcilers to a specific transport.

Two layers
HttpClient is the transport. It returns every HTTP status as a response and
raises RemoteCallFailure only when no response arrived.
RemoteAPIGateway is the platform contract the reconcilers use. It returns
remote ids and raises the operator error taxonomy.

Both are long lived and shared across invocations.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from grafana_operator.core.context import ReconcileContext
from grafana_operator.core.errors import ResponseDecodeFailure


@dataclass(frozen=True)
class HttpResponse:
    status: int
    reason: str = ""
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ResponseDecodeFailure(f"response body is not valid json: {exc}") from exc


class HttpClient(Protocol):
    """Minimal synchronous http interface for testability."""

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        body: bytes | None,
        timeout: float,
    ) -> HttpResponse:
        """Send one request and return the response, whatever its status."""


class RemoteAPIGateway(Protocol):
    """
    Remote platform contract.

    create_organization and create_team
    Create the object and return its remote id. One request, no retries.

    find_organization and find_team
    Look up an existing object by name. Return None when it does not exist.
    Used to adopt objects after a create conflict.
    """

    def create_organization(self, name: str, ctx: ReconcileContext | None = None) -> int:
        """Create a remote organization and return its id."""

    def create_team(self, name: str, org_id: int, ctx: ReconcileContext | None = None) -> int:
        """Create a remote team inside org_id and return its id."""

    def find_organization(self, name: str, ctx: ReconcileContext | None = None) -> int | None:
        """Return the id of the remote organization called name, if any."""

    def find_team(self, name: str, org_id: int, ctx: ReconcileContext | None = None) -> int | None:
        """Return the id of the remote team called name inside org_id, if any."""
