"""
Organization reconciler.

Ensures a remote organization exists for each organization resource and
records the remote id in status.

Create once semantics
Once status.organization_id is set the resource is never touched again.
There is no update or drift correction path.

Failure semantics
One attempt per invocation. Every failure is surfaced in the result so the
scheduler owns retry and backoff.
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
)
from grafana_operator.gateway.base import RemoteAPIGateway
from grafana_operator.store.base import StateStore

logger = structlog.get_logger(__name__)


class OrganizationReconciler:
    """
    Organization reconciler.

    store
    Desired state store holding organization resources.

    gateway
    Remote platform client, shared across invocations.

    adopt_on_conflict
    When create reports that the name is taken, look the organization up and
    record its id instead of failing.

    audit
    Optional audit log of remote side effects.
    """

    def __init__(
        self,
        store: StateStore,
        gateway: RemoteAPIGateway,
        *,
        adopt_on_conflict: bool = True,
        audit: AuditLogger | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._adopt_on_conflict = adopt_on_conflict
        self._audit = audit

    def reconcile(self, key: ObjectKey, ctx: ReconcileContext | None = None) -> ReconcileResult:
        """
        Reconcile one organization.

        Steps
        1) fetch, not found means deleted and is done
        2) organization_id already set is done
        3) create remotely
        4) write organization_id to status
        """
        ctx = ctx or ReconcileContext()
        log = logger.bind(kind=ResourceKind.organization.value, key=str(key))

        try:
            return self._reconcile(key, ctx, log)
        except OperatorError as exc:
            result = failure_result(exc)
            log_failure(log, "organization_reconcile_failed", result)
            return result

    def _reconcile(self, key: ObjectKey, ctx: ReconcileContext, log: Any) -> ReconcileResult:
        ctx.raise_if_cancelled()

        org = self._store.get(ResourceKind.organization, key)
        if org is None:
            log.info("organization_not_found")
            return ReconcileResult.done(ReconcileReason.not_found)
        if not isinstance(org, OrganizationResource):
            raise TypeError(f"store returned {type(org).__name__} for an organization key")

        if org.status.organization_id is not None:
            log.debug("organization_already_reconciled", organization_id=org.status.organization_id)
            return ReconcileResult.done(ReconcileReason.already_reconciled)

        validate_name(org.spec.name, "organization")

        org_id, adopted = self._create(org.spec.name, ctx, log)

        org.status.organization_id = org_id
        try:
            self._store.update_status(org)
        except StatusWriteFailure:
            log.error("organization_status_write_failed", organization_id=org_id, orphaned=True)
            self._record(key, org_id, adopted=adopted, recorded=False)
            raise

        self._record(key, org_id, adopted=adopted, recorded=True)
        log.info("organization_reconciled", organization_id=org_id, adopted=adopted)
        reason = ReconcileReason.adopted if adopted else ReconcileReason.created
        return ReconcileResult.done(reason, remote_id=org_id)

    def _create(self, name: str, ctx: ReconcileContext, log: Any) -> tuple[int, bool]:
        try:
            return self._gateway.create_organization(name, ctx), False
        except RemoteConflict:
            if not self._adopt_on_conflict:
                raise
            existing = self._gateway.find_organization(name, ctx)
            if existing is None:
                raise
            log.info("organization_exists_remotely", organization_id=existing)
            return existing, True

    def _record(self, key: ObjectKey, org_id: int, *, adopted: bool, recorded: bool) -> None:
        if self._audit is None:
            return
        self._audit.remote_object(
            ResourceKind.organization,
            key,
            org_id,
            adopted=adopted,
            recorded=recorded,
        )
