from __future__ import annotations

import os
from dataclasses import dataclass, field

from .db import log_event
from .docker_ops import DockerRuntime
from .errors import ConfigurationError
from .executor import Executor
from .fingerprint import FingerprintStore
from .host import SudoEscalation, Sysctl
from .models import ConvergenceOutcome, ManagedResource, OutcomeStatus, ResourceKind, RunMode
from .reconciler import (
    ConfigFileReconciler,
    ContainerServiceReconciler,
    DependencyInstallReconciler,
    NetworkReconciler,
    PackageManagerReconciler,
    Reconciler,
    ResourceLimitReconciler,
    TaskStep,
    ToolchainReconciler,
)
from .settings import Settings
from .specs import (
    ConfigFileSpec,
    DependencySpec,
    LimitSpec,
    NetworkSpec,
    ReadinessSpec,
    ServiceSpec,
    ToolchainSpec,
)
from .toolchain import CorepackPackageManager, NvmVersionManager

SERVER_PROJECT = "twenty-server"
FRONT_PROJECT = "twenty-front"

PG_DEFAULTS = (
    "PG_HOST=localhost",
    "PG_PORT=5432",
    "PG_USER=postgres",
    "PG_PASSWORD=postgres",
    "PG_DATABASE=default",
)


@dataclass(frozen=True)
class RunOptions:
    mode: RunMode = RunMode.ALL
    skip_reset: bool = False
    skip_install: bool = False
    project_root: str = "."

    @classmethod
    def from_flags(
        cls,
        server_only: bool = False,
        front_only: bool = False,
        skip_reset: bool = False,
        skip_install: bool = False,
        project_root: str = ".",
    ) -> "RunOptions":
        return cls(
            mode=RunMode.from_flags(server_only, front_only),
            skip_reset=skip_reset,
            skip_install=skip_install,
            project_root=os.path.abspath(project_root),
        )


@dataclass
class Capabilities:
    """External collaborators handed to the reconcilers."""

    executor: Executor
    node: NvmVersionManager
    yarn: CorepackPackageManager
    docker: DockerRuntime
    sysctl: Sysctl
    privilege: SudoEscalation

    @classmethod
    def default(cls, root: str, s: Settings) -> "Capabilities":
        ex = Executor(cwd=root)
        return cls(
            executor=ex,
            node=NvmVersionManager(ex, s.nvm_dir),
            yarn=CorepackPackageManager(ex),
            docker=DockerRuntime(),
            sysctl=Sysctl(ex),
            privilege=SudoEscalation(ex),
        )


@dataclass(frozen=True)
class Step:
    name: str
    reconciler: Reconciler

    @property
    def optional(self) -> bool:
        return self.reconciler.optional


@dataclass
class RunReport:
    results: list[tuple[str, ConvergenceOutcome]] = field(default_factory=list)
    aborted_at: str | None = None

    @property
    def exit_code(self) -> int:
        return 1 if self.aborted_at else 0

    def outcome(self, name: str) -> ConvergenceOutcome | None:
        for step, outcome in self.results:
            if step == name:
                return outcome
        return None


def validate_project_root(root: str, s: Settings) -> None:
    if not (os.path.isfile(os.path.join(root, s.root_marker_file)) and os.path.isdir(os.path.join(root, s.root_marker_dir))):
        raise ConfigurationError(
            f"Run this from the project root (the folder that contains {s.root_marker_file} "
            f"and {s.root_marker_dir}/). Got: {root}",
            remedy=("cd <project root>", "envrec --project-root <project root>"),
        )


def start_command(mode: RunMode) -> tuple[str, ...]:
    if mode is RunMode.SERVER_ONLY:
        return ("npx", "nx", "start", SERVER_PROJECT)
    if mode is RunMode.FRONT_ONLY:
        return ("npx", "nx", "start", FRONT_PROJECT)
    return ("npx", "nx", "start")


def build_steps(options: RunOptions, s: Settings, caps: Capabilities) -> list[Step]:
    """Reconcilers in dependency order.

    toolchain, package manager, config files, network, services, dependency
    install, reset, kernel limits, final task. Each step assumes the previous
    ones converged.
    """
    root = options.project_root
    R = ManagedResource
    steps = [
        Step(
            "node",
            ToolchainReconciler(
                R(ResourceKind.TOOLCHAIN_VERSION, "node", ToolchainSpec(tool="node", version=s.node_version)),
                caps.node,
                install_missing=s.install_toolchain,
            ),
        ),
        Step(
            "yarn",
            PackageManagerReconciler(
                R(ResourceKind.TOOLCHAIN_VERSION, "yarn", ToolchainSpec(tool="yarn", version=s.yarn_version)),
                caps.yarn,
            ),
        ),
        Step(
            "server-env",
            ConfigFileReconciler(
                R(
                    ResourceKind.CONFIG_FILE,
                    "server-env",
                    ConfigFileSpec(
                        path=f"packages/{SERVER_PROJECT}/.env",
                        template=f"packages/{SERVER_PROJECT}/.env.example",
                        required_keys=("DATABASE_URL", "PG_PASSWORD"),
                        defaults=PG_DEFAULTS,
                    ),
                ),
                root,
            ),
        ),
        Step(
            "front-env",
            ConfigFileReconciler(
                R(
                    ResourceKind.CONFIG_FILE,
                    "front-env",
                    ConfigFileSpec(
                        path=f"packages/{FRONT_PROJECT}/.env",
                        template=f"packages/{FRONT_PROJECT}/.env.example",
                    ),
                ),
                root,
            ),
        ),
        Step(
            "network",
            NetworkReconciler(
                R(ResourceKind.CONTAINER_NETWORK, s.docker_network, NetworkSpec(name=s.docker_network)),
                caps.docker,
            ),
        ),
    ]

    services = [
        ServiceSpec(
            name="twenty_pg",
            provision=("make", "postgres-on-docker"),
            readiness=ReadinessSpec(command=("pg_isready", "-U", "postgres", "-d", "postgres")),
        ),
        ServiceSpec(
            name="twenty_redis",
            provision=("make", "redis-on-docker"),
            readiness=ReadinessSpec(command=("redis-cli", "ping")),
        ),
    ]
    for spec in services:
        steps.append(
            Step(
                spec.name,
                ContainerServiceReconciler(
                    R(ResourceKind.CONTAINER_SERVICE, spec.name, spec),
                    caps.docker,
                    caps.executor,
                    readiness_attempts=s.readiness_attempts,
                    readiness_interval_s=s.readiness_interval_s,
                ),
            )
        )

    if options.skip_install:
        log_event("INFO", "Skipping dependency install (--skip-install).")
    else:
        store = FingerprintStore(os.path.join(root, s.state_dir, s.fingerprint_file))
        steps.append(
            Step(
                "dependencies",
                DependencyInstallReconciler(
                    R(
                        ResourceKind.DEPENDENCY_TREE,
                        "dependencies",
                        DependencySpec(manifest=s.manifest, command=("yarn", "install"), marker=s.install_marker),
                    ),
                    root,
                    store,
                    caps.executor,
                ),
            )
        )

    if options.skip_reset:
        log_event("INFO", "Skipping DB reset (--skip-reset).")
    else:
        reset = ("npx", "nx", "database:reset", SERVER_PROJECT)
        steps.append(Step("reset", TaskStep(R(ResourceKind.TASK, "reset"), caps.executor, reset)))

    steps.append(
        Step(
            "inotify",
            ResourceLimitReconciler(
                R(
                    ResourceKind.RESOURCE_LIMIT,
                    "inotify",
                    LimitSpec(
                        targets={
                            "fs.inotify.max_user_watches": s.inotify_watches,
                            "fs.inotify.max_user_instances": s.inotify_instances,
                        },
                        persist_path=s.sysctl_conf_path,
                    ),
                ),
                caps.sysctl,
                caps.privilege,
                optional=not s.strict_limits,
            ),
        )
    )

    steps.append(
        Step("start", TaskStep(R(ResourceKind.TASK, f"start:{options.mode.value}"), caps.executor, start_command(options.mode)))
    )
    return steps


class Orchestrator:
    """Runs steps one at a time, stopping at the first non-optional failure."""

    def __init__(self, steps: list[Step]) -> None:
        self.steps = steps

    def _report_failure(self, step: Step, outcome: ConvergenceOutcome, fatal: bool) -> None:
        level = "ERROR" if fatal else "WARN"
        label = step.reconciler.label
        log_event(level, outcome.reason, resource=label)
        remedy = outcome.cause.remedy if outcome.cause else ()
        if remedy:
            log_event(level, "Run manually:", resource=label)
            for cmd in remedy:
                log_event(level, f"  {cmd}", resource=label)

    def run(self) -> RunReport:
        report = RunReport()
        for step in self.steps:
            outcome = step.reconciler.reconcile()
            report.results.append((step.name, outcome))
            if outcome.status is not OutcomeStatus.FAILED:
                continue
            if step.optional:
                self._report_failure(step, outcome, fatal=False)
                continue
            self._report_failure(step, outcome, fatal=True)
            report.aborted_at = step.name
            log_event("ERROR", f"Aborting: step '{step.name}' failed.")
            break
        return report


def reconcile_environment(options: RunOptions, s: Settings, caps: Capabilities | None = None) -> RunReport:
    """Validate the working directory, then converge every resource in order."""
    validate_project_root(options.project_root, s)
    if caps is None:
        caps = Capabilities.default(options.project_root, s)
    return Orchestrator(build_steps(options, s, caps)).run()
