"""
In memory gateway.

This gateway is used for tests and local simulations.
It behaves like a tiny Grafana: organizations keyed by name, teams keyed by
organization id and name, ids handed out sequentially.

Features
- Records every call so tests can count remote side effects
- Rejects duplicate names with RemoteConflict, like the real platform
- Can inject a failure per operation for error path testing
- Can drop the response after a successful create, to simulate a lost reply
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from grafana_operator.core.context import ReconcileContext
from grafana_operator.core.errors import OperatorError, RemoteConflict, ResponseDecodeFailure
from grafana_operator.gateway.base import RemoteAPIGateway


@dataclass(frozen=True)
class GatewayCall:
    operation: str
    name: str
    org_id: int | None = None


@dataclass
class InMemoryGateway(RemoteAPIGateway):
    """
    In memory gateway.

    failures
    Optional mapping of operation name to the error it should raise.
    Operation names are create_organization, create_team, find_organization
    and find_team.

    lose_responses
    Operation names whose create succeeds but whose reply is lost, so the
    caller sees ResponseDecodeFailure while the object exists.
    """

    failures: dict[str, OperatorError] = field(default_factory=dict)
    lose_responses: set[str] = field(default_factory=set)
    next_org_id: int = 1
    next_team_id: int = 1

    organizations: dict[str, int] = field(default_factory=dict)
    teams: dict[tuple[int, str], int] = field(default_factory=dict)
    calls: list[GatewayCall] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def create_organization(self, name: str, ctx: ReconcileContext | None = None) -> int:
        self._enter("create_organization", name, None, ctx)
        with self._lock:
            if name in self.organizations:
                raise RemoteConflict("Organization name taken", status_code=409)
            org_id = self.next_org_id
            self.next_org_id += 1
            self.organizations[name] = org_id
        self._maybe_lose("create_organization")
        return org_id

    def create_team(self, name: str, org_id: int, ctx: ReconcileContext | None = None) -> int:
        self._enter("create_team", name, org_id, ctx)
        with self._lock:
            if (org_id, name) in self.teams:
                raise RemoteConflict("Team name taken", status_code=409)
            team_id = self.next_team_id
            self.next_team_id += 1
            self.teams[(org_id, name)] = team_id
        self._maybe_lose("create_team")
        return team_id

    def find_organization(self, name: str, ctx: ReconcileContext | None = None) -> int | None:
        self._enter("find_organization", name, None, ctx)
        with self._lock:
            return self.organizations.get(name)

    def find_team(self, name: str, org_id: int, ctx: ReconcileContext | None = None) -> int | None:
        self._enter("find_team", name, org_id, ctx)
        with self._lock:
            return self.teams.get((org_id, name))

    def count(self, operation: str) -> int:
        """Number of recorded calls for an operation."""
        return sum(1 for c in self.calls if c.operation == operation)

    def _enter(
        self,
        operation: str,
        name: str,
        org_id: int | None,
        ctx: ReconcileContext | None,
    ) -> None:
        if ctx is not None:
            ctx.raise_if_cancelled()
        with self._lock:
            self.calls.append(GatewayCall(operation=operation, name=name, org_id=org_id))
        err = self.failures.get(operation)
        if err is not None:
            raise err

    def _maybe_lose(self, operation: str) -> None:
        if operation in self.lose_responses:
            raise ResponseDecodeFailure(f"{operation} response lost")
