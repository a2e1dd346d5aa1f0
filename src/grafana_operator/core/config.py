"""
Operator configuration.

Components take frozen dataclass configs with safe defaults.
load_config builds them from the environment via python-decouple, so a .env
file or real environment variables both work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from decouple import AutoConfig, Config, RepositoryEnv


@dataclass(frozen=True)
class GatewayConfig:
    """
    Remote platform client configuration.

    base_url
    Grafana root URL, without a trailing /api.

    timeout_seconds
    Upper bound for every HTTP call.

    secret_namespace, secret_name
    Where the admin credential pair lives in the credential store.

    user_key, password_key
    Field names inside that secret.

    teams_path
    Team creation endpoint. Grafana uses /api/teams.
    """

    base_url: str = "http://localhost:3000"
    timeout_seconds: float = 10.0
    secret_namespace: str = "grafana"
    secret_name: str = "grafana"
    user_key: str = "admin-user"
    password_key: str = "admin-password"
    orgs_path: str = "/api/orgs"
    org_lookup_path: str = "/api/orgs/name/{name}"
    teams_path: str = "/api/teams"
    team_search_path: str = "/api/teams/search"


@dataclass(frozen=True)
class RunnerConfig:
    """
    Runner configuration.

    resync_interval_seconds
    How often every resource is enqueued again.

    dependency_requeue_seconds
    Delay before retrying a team whose organization is missing or not yet created.

    backoff_base_seconds, backoff_max_seconds
    Exponential backoff for failed invocations.

    reconcile_timeout_seconds
    Deadline given to each invocation's context.

    adopt_on_conflict
    Look up an existing remote object by name when create reports a conflict.
    """

    resync_interval_seconds: float = 30.0
    dependency_requeue_seconds: float = 10.0
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0
    reconcile_timeout_seconds: float = 30.0
    adopt_on_conflict: bool = True


@dataclass(frozen=True)
class OperatorConfig:
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    audit_path: Path | None = None
    log_level: str = "INFO"
    log_json: bool = True


def load_config(env_file: Path | None = None) -> OperatorConfig:
    """
    Build an OperatorConfig from the environment.

    env_file points at an explicit .env file. When omitted, decouple searches
    for one and falls back to os.environ.
    """
    config = Config(RepositoryEnv(str(env_file))) if env_file else AutoConfig()

    gateway = GatewayConfig(
        base_url=config("GRAFANA_URL", default=GatewayConfig.base_url).rstrip("/"),
        timeout_seconds=config(
            "GRAFANA_TIMEOUT_SECONDS", default=GatewayConfig.timeout_seconds, cast=float
        ),
        secret_namespace=config("GRAFANA_SECRET_NAMESPACE", default=GatewayConfig.secret_namespace),
        secret_name=config("GRAFANA_SECRET_NAME", default=GatewayConfig.secret_name),
        teams_path=config("GRAFANA_TEAMS_PATH", default=GatewayConfig.teams_path),
    )

    runner = RunnerConfig(
        resync_interval_seconds=config(
            "OPERATOR_RESYNC_SECONDS", default=RunnerConfig.resync_interval_seconds, cast=float
        ),
        dependency_requeue_seconds=config(
            "OPERATOR_DEPENDENCY_REQUEUE_SECONDS",
            default=RunnerConfig.dependency_requeue_seconds,
            cast=float,
        ),
        backoff_base_seconds=config(
            "OPERATOR_BACKOFF_BASE_SECONDS", default=RunnerConfig.backoff_base_seconds, cast=float
        ),
        backoff_max_seconds=config(
            "OPERATOR_BACKOFF_MAX_SECONDS", default=RunnerConfig.backoff_max_seconds, cast=float
        ),
        reconcile_timeout_seconds=config(
            "OPERATOR_RECONCILE_TIMEOUT_SECONDS",
            default=RunnerConfig.reconcile_timeout_seconds,
            cast=float,
        ),
        adopt_on_conflict=config(
            "GRAFANA_ADOPT_ON_CONFLICT", default=RunnerConfig.adopt_on_conflict, cast=bool
        ),
    )

    audit_raw = config("OPERATOR_AUDIT_PATH", default="")

    return OperatorConfig(
        gateway=gateway,
        runner=runner,
        audit_path=Path(audit_raw) if audit_raw else None,
        log_level=config("LOG_LEVEL", default="INFO").upper(),
        log_json=config("LOG_JSON", default=True, cast=bool),
    )
