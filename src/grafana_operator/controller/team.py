"""
Team reconciler.

Ensures a remote team exists for each team resource, inside the remote
organization of its parent organization resource.

Dependency resolution
The parent is spec.organization_ref when set, otherwise the organization with
the team's own namespace and name.

A team is never created before its parent has a remote id. A missing parent
and a parent without an id both requeue with the dependency delay. The runner
also re-enqueues dependent teams when an organization status is written, so
the delay is only a fallback.
"""

from __future__ import annotations

from typing import Any

import structlog

from grafana_operator.controller.base import failure_result, log_failure, validate_name
from grafana_operator.core.audit import AuditLogger
from grafana_operator.core.context import ReconcileContext
from grafana_operator.core.errors import OperatorError, RemoteConflict, StatusWriteFailure
from grafana_operator.core.types import (
    ObjectKey,
    OrganizationResource,
    ReconcileReason,
    ReconcileResult,
    ResourceKind,
    TeamResource,
)
from grafana_operator.gateway.base import RemoteAPIGateway
from grafana_operator.store.base import StateStore

logger = structlog.get_logger(__name__)


def parent_key(team: TeamResource) -> ObjectKey:
    """Key of the organization resource a team belongs to."""
    if team.spec.organization_ref is not None:
        return team.spec.organization_ref
    return team.key


class TeamReconciler:
    """
    Team reconciler.

    store
    Desired state store holding team and organization resources.

    gateway
    Remote platform client, shared across invocations.

    dependency_requeue_seconds
    Suggested delay when the parent organization is missing or not created yet.

    adopt_on_conflict
    When create reports that the name is taken, look the team up and record
    its id instead of failing.

    audit
    Optional audit log of remote side effects.
    """

    def __init__(
        self,
        store: StateStore,
        gateway: RemoteAPIGateway,
        *,
        dependency_requeue_seconds: float = 10.0,
        adopt_on_conflict: bool = True,
        audit: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._dependency_requeue_seconds = dependency_requeue_seconds
        self._adopt_on_conflict = adopt_on_conflict
        self._audit = audit

    def reconcile(self, key: ObjectKey, ctx: ReconcileContext | None = None) -> ReconcileResult:
        """
        Reconcile one team.

        Steps
        1) fetch, not found means deleted and is done
        2) team_id already set is done
        3) resolve the parent organization and its remote id
        4) create remotely inside that organization
        5) write organization_id and team_id to status
        """
        ctx = ctx or ReconcileContext()
        log = logger.bind(kind=ResourceKind.team.value, key=str(key))

        try:
            return self._reconcile(key, ctx, log)
        except OperatorError as exc:
            result = failure_result(exc)
            log_failure(log, "team_reconcile_failed", result)
            return result

    def _reconcile(self, key: ObjectKey, ctx: ReconcileContext, log: Any) -> ReconcileResult:
        ctx.raise_if_cancelled()

        team = self._store.get(ResourceKind.team, key)
        if team is None:
            log.info("team_not_found")
            return ReconcileResult.done(ReconcileReason.not_found)
        if not isinstance(team, TeamResource):
            raise TypeError(f"store returned {type(team).__name__} for a team key")

        if team.status.team_id is not None:
            log.debug("team_already_reconciled", team_id=team.status.team_id)
            return ReconcileResult.done(ReconcileReason.already_reconciled)

        org_key = parent_key(team)
        log = log.bind(organization=str(org_key))

        org = self._store.get(ResourceKind.organization, org_key)
        if org is None:
            log.warning("team_parent_organization_missing")
            return ReconcileResult.retry(
                ReconcileReason.dependency_missing,
                after=self._dependency_requeue_seconds,
            )
        if not isinstance(org, OrganizationResource):
            raise TypeError(f"store returned {type(org).__name__} for an organization key")

        org_id = org.status.organization_id
        if org_id is None:
            log.info("team_waiting_for_organization")
            return ReconcileResult.retry(
                ReconcileReason.dependency_unsatisfied,
                after=self._dependency_requeue_seconds,
            )

        validate_name(team.spec.name, "team")

        team_id, adopted = self._create(team.spec.name, org_id, ctx, log)

        team.status.organization_id = org_id
        team.status.team_id = team_id
        try:
            self._store.update_status(team)
        except StatusWriteFailure:
            log.error("team_status_write_failed", organization_id=org_id, team_id=team_id, orphaned=True)
            self._record(key, team_id, adopted=adopted, recorded=False)
            raise

        self._record(key, team_id, adopted=adopted, recorded=True)
        log.info("team_reconciled", organization_id=org_id, team_id=team_id, adopted=adopted)
        reason = ReconcileReason.adopted if adopted else ReconcileReason.created
        return ReconcileResult.done(reason, remote_id=team_id)

    def _create(self, name: str, org_id: int, ctx: ReconcileContext, log: Any) -> tuple[int, bool]:
        try:
            return self._gateway.create_team(name, org_id, ctx), False
        except RemoteConflict:
            if not self._adopt_on_conflict:
                raise
            existing = self._gateway.find_team(name, org_id, ctx)
            if existing is None:
                raise
            log.info("team_exists_remotely", team_id=existing)
            return existing, True

    def _record(self, key: ObjectKey, team_id: int, *, adopted: bool, recorded: bool) -> None:
        if self._audit is None:
            return
        self._audit.remote_object(
            ResourceKind.team,
            key,
            team_id,
            adopted=adopted,
            recorded=recorded,
        )
