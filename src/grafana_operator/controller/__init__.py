"""
Reconcilers.

One reconciler per resource kind. Both are single attempt and report every
outcome as a ReconcileResult for the runner to schedule.
"""

from grafana_operator.controller.organization import OrganizationReconciler
from grafana_operator.controller.team import TeamReconciler

__all__ = ["OrganizationReconciler", "TeamReconciler"]
