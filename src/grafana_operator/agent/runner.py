"""
Controller runner.

Purpose
Continuously:
- Enqueue every resource on a resync interval
- Enqueue resources when the store reports a change
- Dispatch due requests to the matching reconciler
- Turn each ReconcileResult into a queue decision

This is the composition layer of the system.
It wires store, gateway, reconcilers and the work queue.

Reconcilers remain single attempt.
Runner owns retry timing.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import structlog

from grafana_operator.agent.queue import ReconcileRequest, WorkQueue
from grafana_operator.controller.organization import OrganizationReconciler
from grafana_operator.controller.team import TeamReconciler, parent_key
from grafana_operator.core.audit import AuditLogger
from grafana_operator.core.context import ReconcileContext
from grafana_operator.core.config import OperatorConfig, RunnerConfig
from grafana_operator.core.errors import OperatorError
from grafana_operator.core.types import (
    ReconcileOutcome,
    ReconcileReason,
    ReconcileResult,
    ResourceKind,
    TeamResource,
)
from grafana_operator.gateway.base import HttpClient, RemoteAPIGateway
from grafana_operator.gateway.grafana import GrafanaGateway
from grafana_operator.gateway.http import UrllibHttpClient
from grafana_operator.store.base import ChangeEvent, ChangeType, CredentialStore, StateStore
from grafana_operator.store.memory import InMemorySecretStore, InMemoryStateStore
from grafana_operator.store.static import StaticStateSource

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReconcileRecord:
    request: ReconcileRequest
    result: ReconcileResult


class ControllerRunner:
    """
    Top level reconcile loop.

    This is not a reconciler.
    This is the scheduler that calls them.
    """

    def __init__(
        self,
        store: StateStore,
        gateway: RemoteAPIGateway,
        config: RunnerConfig | None = None,
        audit: AuditLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or RunnerConfig()
        self._store = store
        self._clock = clock
        self._queue = WorkQueue(
            backoff_base_seconds=self._config.backoff_base_seconds,
            backoff_max_seconds=self._config.backoff_max_seconds,
            clock=clock,
        )

        self._organizations = OrganizationReconciler(
            store,
            gateway,
            adopt_on_conflict=self._config.adopt_on_conflict,
            audit=audit,
        )
        self._teams = TeamReconciler(
            store,
            gateway,
            dependency_requeue_seconds=self._config.dependency_requeue_seconds,
            adopt_on_conflict=self._config.adopt_on_conflict,
            audit=audit,
        )

        self._stop = threading.Event()
        self._inflight: ReconcileContext | None = None
        self._inflight_lock = threading.Lock()

        store.subscribe(self._on_change)

    @property
    def queue(self) -> WorkQueue:
        return self._queue

    def reconcile(self, request: ReconcileRequest, ctx: ReconcileContext | None = None) -> ReconcileResult:
        """Run the reconciler for one request without touching the queue."""
        if request.kind == ResourceKind.organization:
            return self._organizations.reconcile(request.key, ctx)
        return self._teams.reconcile(request.key, ctx)

    def enqueue_all(self) -> int:
        """
        Resync. Queue every resource, organizations first.

        Returns the number of requests added.
        """
        count = 0
        for kind in (ResourceKind.organization, ResourceKind.team):
            for resource in self._store.list(kind):
                self._queue.add(ReconcileRequest(kind=kind, key=resource.key))
                count += 1
        return count

    def process_due(self) -> list[ReconcileRecord]:
        """Process every request that is due now. Returns what happened, in order."""
        records: list[ReconcileRecord] = []
        while not self._stop.is_set():
            request = self._queue.pop_due()
            if request is None:
                break
            result = self._process(request)
            records.append(ReconcileRecord(request=request, result=result))
        return records

    def run_cycle(self) -> list[ReconcileRecord]:
        """Execute one resync followed by one drain of due requests."""
        self.enqueue_all()
        return self.process_due()

    def run_forever(self) -> None:
        """
        Continuous loop execution until stop is called.
        """
        interval = self._config.resync_interval_seconds
        next_resync = self._clock()

        while not self._stop.is_set():
            now = self._clock()
            if now >= next_resync:
                try:
                    added = self.enqueue_all()
                    logger.debug("resync_enqueued", requests=added)
                except OperatorError as exc:
                    logger.error("resync_failed", error=str(exc))
                next_resync = now + interval

            self.process_due()

            next_due = self._queue.next_due()
            wake_at = next_resync if next_due is None else min(next_resync, next_due)
            self._queue.wait(max(0.0, wake_at - self._clock()))

    def stop(self) -> None:
        """Stop the loop and cancel the invocation in flight, if any."""
        self._stop.set()
        with self._inflight_lock:
            if self._inflight is not None:
                self._inflight.cancel()
        self._queue.wake()

    def _process(self, request: ReconcileRequest) -> ReconcileResult:
        ctx = ReconcileContext.with_timeout(self._config.reconcile_timeout_seconds, self._clock)
        with self._inflight_lock:
            self._inflight = ctx
        try:
            result = self.reconcile(request, ctx)
        except Exception as exc:
            logger.exception("reconcile_crashed", request=str(request))
            result = ReconcileResult.retry(
                ReconcileReason.internal_error,
                error=OperatorError(f"unexpected {type(exc).__name__}: {exc}"),
            )
        finally:
            with self._inflight_lock:
                self._inflight = None

        self._schedule(request, result)
        return result

    def _schedule(self, request: ReconcileRequest, result: ReconcileResult) -> None:
        if result.outcome == ReconcileOutcome.done:
            self._queue.forget(request)
            return

        if result.outcome == ReconcileOutcome.failed:
            self._queue.forget(request)
            logger.error(
                "reconcile_failed_permanently",
                request=str(request),
                reason=result.reason.value,
                error=str(result.error),
            )
            return

        if result.requeue_after is not None:
            self._queue.add(request, result.requeue_after)
            return

        delay = self._queue.add_rate_limited(request)
        logger.info(
            "reconcile_requeued",
            request=str(request),
            reason=result.reason.value,
            delay_seconds=delay,
        )

    def _on_change(self, event: ChangeEvent) -> None:
        if event.change_type in (ChangeType.added, ChangeType.modified):
            self._queue.add(ReconcileRequest(kind=event.kind, key=event.key))

        if event.kind == ResourceKind.organization and event.change_type == ChangeType.status:
            self._enqueue_dependent_teams(event)

    def _enqueue_dependent_teams(self, event: ChangeEvent) -> None:
        try:
            teams = self._store.list(ResourceKind.team)
        except OperatorError as exc:
            logger.warning("dependent_team_lookup_failed", organization=str(event.key), error=str(exc))
            return

        for team in teams:
            if not isinstance(team, TeamResource) or team.status.team_id is not None:
                continue
            if parent_key(team) == event.key:
                self._queue.add(ReconcileRequest(kind=ResourceKind.team, key=team.key))


def build_runner(
    config: OperatorConfig,
    store: StateStore,
    credentials: CredentialStore,
    http: HttpClient | None = None,
) -> ControllerRunner:
    """Compose a runner with the Grafana gateway from configuration."""
    audit = AuditLogger(path=config.audit_path) if config.audit_path else None
    gateway = GrafanaGateway(
        config=config.gateway,
        credentials=credentials,
        http=http or UrllibHttpClient(),
        audit=audit,
    )
    return ControllerRunner(store=store, gateway=gateway, config=config.runner, audit=audit)


def run_static(
    path: Path,
    config: OperatorConfig,
    http: HttpClient | None = None,
) -> list[ReconcileRecord]:
    """
    Reconcile a static state file once and write the resulting status back.

    Useful for local runs against a real Grafana without a cluster.
    """
    store = InMemoryStateStore()
    secrets = InMemorySecretStore()
    source = StaticStateSource(path=path)
    source.load_into(store, secrets)

    runner = build_runner(config, store, secrets, http=http)
    records = runner.run_cycle()
    source.dump(store)

    for record in records:
        if not record.result.ok:
            logger.warning(
                "static_reconcile_incomplete",
                request=str(record.request),
                reason=record.result.reason.value,
            )
    return records
