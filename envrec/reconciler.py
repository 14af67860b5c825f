from __future__ import annotations

import os
import shutil

from .db import log_event
from .errors import (
    ActionFailedAndUnverifiable,
    EnvironmentMissingCapability,
    EnvrecError,
    PrivilegeUnavailable,
    VersionMismatch,
)
from .executor import Executor
from .fingerprint import FingerprintStore, hash_manifest, install_required
from .health import check_ready
from .models import ConvergenceOutcome, ManagedResource, OutcomeStatus, ReconcileState, StateSnapshot
from .probes import (
    probe_config_file,
    probe_container,
    probe_limits,
    probe_network,
    probe_required_keys,
    probe_toolchain,
)

DEFAULTS_HEADER = "# Added by envrec (local defaults)"

DOCKER_REMEDY = (
    "sudo systemctl enable --now docker",
    "newgrp docker   # or log out and back in after joining the docker group",
)


def _cmd(argv) -> str:
    return " ".join(argv)


class Reconciler:
    """Probe, act only when needed, then decide from a fresh probe.

    States: unknown -> probed -> satisfied | needs-action -> converged | failed.
    Subclasses implement ``probe`` (no side effects) and ``converge``, which
    raises a taxonomy error when the resource cannot be brought to the desired
    state.
    """

    optional = False

    def __init__(self, resource: ManagedResource) -> None:
        self.resource = resource
        self.state = ReconcileState.UNKNOWN
        self.transitions: list[ReconcileState] = [ReconcileState.UNKNOWN]

    @property
    def label(self) -> str:
        return self.resource.label

    def _to(self, state: ReconcileState) -> None:
        self.state = state
        self.transitions.append(state)

    def probe(self) -> StateSnapshot:
        raise NotImplementedError

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        raise NotImplementedError

    def satisfied_message(self, snapshot: StateSnapshot) -> str:
        return "already in desired state"

    def reconcile(self) -> ConvergenceOutcome:
        try:
            snapshot = self.probe()
        except EnvrecError as e:
            self._to(ReconcileState.FAILED)
            return ConvergenceOutcome.failed(e)
        self._to(ReconcileState.PROBED)

        if snapshot.matches_desired:
            self._to(ReconcileState.SATISFIED)
            log_event("INFO", self.satisfied_message(snapshot), resource=self.label)
            return ConvergenceOutcome.already_satisfied()

        self._to(ReconcileState.NEEDS_ACTION)
        try:
            outcome = self.converge(snapshot)
        except EnvrecError as e:
            outcome = ConvergenceOutcome.failed(e)

        self._to(ReconcileState.CONVERGED if outcome.ok else ReconcileState.FAILED)
        if outcome.status is OutcomeStatus.CONVERGED_WITH_WARNING:
            log_event("WARN", outcome.reason, resource=self.label)
        elif outcome.ok:
            log_event("INFO", outcome.reason or "converged", resource=self.label)
        return outcome


class ToolchainReconciler(Reconciler):
    """Pins the runtime to an exact version through the version manager."""

    def __init__(self, resource: ManagedResource, manager, install_missing: bool = False) -> None:
        super().__init__(resource)
        self.manager = manager
        self.install_missing = install_missing

    @property
    def version(self) -> str:
        return self.resource.desired.version

    def probe(self) -> StateSnapshot:
        return probe_toolchain(self.manager, self.version)

    def satisfied_message(self, snapshot: StateSnapshot) -> str:
        return f"{self.resource.desired.tool} {self.version} active"

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        version = self.version
        if not self.manager.available():
            raise EnvironmentMissingCapability(
                "nvm not found. Install it, open a new terminal, then rerun.",
                remedy=(
                    "curl -fsSL https://raw.githubusercontent.com/nvm-sh/nvm/v0.39.7/install.sh | bash",
                    *self.manager.remedy(version),
                ),
            )

        if not self.manager.installed(version):
            if not self.install_missing:
                raise EnvironmentMissingCapability(
                    f"Node {version} not installed via nvm.",
                    remedy=self.manager.remedy(version),
                )
            log_event("INFO", f"Installing node {version} (nvm)...", resource=self.label)
            self.manager.install(version)
            if not self.manager.installed(version):
                raise ActionFailedAndUnverifiable(
                    f"nvm install {version} did not produce an installed node {version}.",
                    remedy=self.manager.remedy(version),
                )

        log_event("INFO", f"Using node {version} (nvm)...", resource=self.label)
        self.manager.activate(version)

        # One activation attempt; drift after it is fatal.
        after = self.probe()
        if not after.matches_desired:
            raise VersionMismatch(
                f"Node is {after.details.get('current') or 'missing'} but required is {version}",
                remedy=self.manager.remedy(version),
            )
        return ConvergenceOutcome.converged(f"node {version} activated")


class PackageManagerReconciler(Reconciler):
    """Activates the pinned yarn through corepack."""

    def __init__(self, resource: ManagedResource, manager) -> None:
        super().__init__(resource)
        self.manager = manager

    @property
    def version(self) -> str:
        return self.resource.desired.version

    def probe(self) -> StateSnapshot:
        return probe_toolchain(self.manager, self.version)

    def satisfied_message(self, snapshot: StateSnapshot) -> str:
        return f"Yarn OK: v{self.version}"

    def reconcile(self) -> ConvergenceOutcome:
        if self.manager.shadowed_by_system():
            log_event(
                "WARN",
                f"System yarn detected at {self.manager.system_yarn}; it can shadow the corepack one. "
                "Recommended: remove it (apt remove yarn / dnf remove yarn).",
                resource=self.label,
            )
        return super().reconcile()

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        version = self.version
        if not self.manager.available():
            raise EnvironmentMissingCapability(
                "corepack not found (should come with Node).",
                remedy=("npm install -g corepack", *self.manager.remedy(version)),
            )

        log_event("INFO", f"Ensuring Yarn {version} via corepack...", resource=self.label)
        result = self.manager.ensure(version)

        after = self.probe()
        if not after.present:
            raise ActionFailedAndUnverifiable(
                "yarn not found after corepack activation.",
                remedy=self.manager.remedy(version),
            )
        if not after.matches_desired:
            raise VersionMismatch(
                f"Yarn is {after.details.get('current')} but required is {version}",
                remedy=self.manager.remedy(version),
            )
        if not result.reported_ok:
            return ConvergenceOutcome.converged_with_warning(
                f"corepack exited {result.returncode} but yarn {version} is active"
            )
        return ConvergenceOutcome.converged(f"yarn {version} activated")


class ConfigFileReconciler(Reconciler):
    """Materializes a config file from its template and guards required keys.

    Missing keys get a block of local defaults appended. That is a convenience,
    flagged as a warning, not a guarantee that the values are right.
    """

    def __init__(self, resource: ManagedResource, root: str) -> None:
        super().__init__(resource)
        self.root = root

    @property
    def path(self) -> str:
        return os.path.join(self.root, self.resource.desired.path)

    def probe(self) -> StateSnapshot:
        spec = self.resource.desired
        exists = probe_config_file(self.path)
        if not exists.present or not spec.required_keys:
            return exists
        keys = probe_required_keys(self.path, spec.required_keys)
        return StateSnapshot(present=True, matches_desired=keys.matches_desired, details=keys.details)

    def satisfied_message(self, snapshot: StateSnapshot) -> str:
        return f"{self.resource.desired.path} present"

    def _inject_defaults(self) -> None:
        spec = self.resource.desired
        with open(self.path, "rb") as f:
            data = f.read()
        lead = "\n" if data and not data.endswith(b"\n") else ""
        block = lead + "\n" + DEFAULTS_HEADER + "\n" + "".join(line + "\n" for line in spec.defaults)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(block)

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        spec = self.resource.desired
        created = False

        if not snapshot.present:
            template = os.path.join(self.root, spec.template)
            if not os.path.isfile(template):
                raise EnvironmentMissingCapability(
                    f"Template {spec.template} not found; cannot create {spec.path}.",
                    remedy=(f"git checkout -- {spec.template}", f"cp {spec.template} {spec.path}"),
                )
            shutil.copyfile(template, self.path)
            created = True
            log_event("INFO", f"Created {spec.path} from {spec.template}", resource=self.label)

        warning = ""
        keys = probe_required_keys(self.path, spec.required_keys)
        if not keys.matches_desired and spec.defaults:
            self._inject_defaults()
            names = ", ".join(line.split("=", 1)[0] for line in spec.defaults)
            warning = (
                f"{' / '.join(spec.required_keys)} missing in {spec.path}; "
                f"injected local defaults ({names})"
            )

        after = self.probe()
        if not after.matches_desired:
            raise ActionFailedAndUnverifiable(
                f"{spec.path} still lacks one of: {', '.join(spec.required_keys)}",
                remedy=(f"echo '{spec.required_keys[0]}=...' >> {spec.path}",),
            )
        if warning:
            return ConvergenceOutcome.converged_with_warning(warning)
        return ConvergenceOutcome.converged(f"{spec.path} created" if created else f"{spec.path} ok")


def _require_docker(runtime) -> None:
    if not runtime.available():
        raise EnvironmentMissingCapability(
            "Docker daemon not reachable from this shell.",
            remedy=DOCKER_REMEDY,
        )


class NetworkReconciler(Reconciler):
    def __init__(self, resource: ManagedResource, runtime) -> None:
        super().__init__(resource)
        self.runtime = runtime

    def probe(self) -> StateSnapshot:
        _require_docker(self.runtime)
        return probe_network(self.runtime, self.resource.desired.name)

    def satisfied_message(self, snapshot: StateSnapshot) -> str:
        return f"docker network {self.resource.desired.name} exists"

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        spec = self.resource.desired
        reported = self.runtime.create_network(spec.name, spec.driver)
        if not self.probe().matches_desired:
            raise ActionFailedAndUnverifiable(
                f"docker network {spec.name} could not be created.",
                remedy=(f"docker network create {spec.name}",),
            )
        if reported is False:
            return ConvergenceOutcome.converged_with_warning(
                f"network create reported an error but {spec.name} exists"
            )
        return ConvergenceOutcome.converged(f"docker network {spec.name} created")


class ContainerServiceReconciler(Reconciler):
    """Keeps a named container service running.

    A provisioning failure is not trusted: the service may already be healthy
    (e.g. its data volume existed). Only when the readiness probe also fails
    does the run abort.
    """

    def __init__(
        self,
        resource: ManagedResource,
        runtime,
        executor: Executor,
        readiness_attempts: int = 3,
        readiness_interval_s: float = 1.0,
        transport=None,
    ) -> None:
        super().__init__(resource)
        self.runtime = runtime
        self.executor = executor
        self.readiness_attempts = readiness_attempts
        self.readiness_interval_s = readiness_interval_s
        self.transport = transport

    @property
    def name(self) -> str:
        return self.resource.desired.name

    def probe(self) -> StateSnapshot:
        _require_docker(self.runtime)
        return probe_container(self.runtime, self.name)

    def satisfied_message(self, snapshot: StateSnapshot) -> str:
        return f"{self.name} already running"

    def _ready(self) -> tuple[bool, str]:
        return check_ready(
            self.runtime,
            self.name,
            self.resource.desired.readiness,
            attempts=self.readiness_attempts,
            interval_s=self.readiness_interval_s,
            transport=self.transport,
        )

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        spec = self.resource.desired
        provision = _cmd(spec.provision)
        if self.executor.which(spec.provision[0]) is None:
            raise EnvironmentMissingCapability(
                f"{spec.provision[0]} not installed",
                remedy=(f"sudo apt-get install -y {spec.provision[0]}",),
            )

        if snapshot.present:
            # Exists but stopped.
            self.runtime.remove(self.name)

        log_event("INFO", f"Provisioning {self.name} ({provision})...", resource=self.label)
        result = self.executor.run(spec.provision, capture=False)
        running = self.probe().matches_desired

        if result.reported_ok:
            if running:
                return ConvergenceOutcome.converged(f"{self.name} started")
            raise ActionFailedAndUnverifiable(
                f"{provision} succeeded but {self.name} is not running.",
                remedy=(provision, f"docker logs {self.name}"),
            )

        log_event(
            "WARN",
            f"{provision} returned {result.returncode} (often happens if data already exists). "
            f"Validating {self.name}...",
            resource=self.label,
        )
        ready, msg = self._ready() if running else (False, "container not running")
        if ready:
            return ConvergenceOutcome.converged_with_warning(
                f"{provision} returned {result.returncode} but {self.name} is up"
            )
        raise ActionFailedAndUnverifiable(
            f"{self.name} is NOT reachable ({msg}) and {provision} failed.",
            remedy=(f"docker rm -f {self.name}", provision, f"docker logs {self.name}"),
        )


class ResourceLimitReconciler(Reconciler):
    """Raises kernel limits, transiently and persistently.

    Already-sufficient limits never need privileges. Without escalation the
    outcome is a failure carrying the manual commands; the orchestrator treats
    it as advisory unless the step is strict.
    """

    def __init__(self, resource: ManagedResource, sysctl, privilege, optional: bool = True) -> None:
        super().__init__(resource)
        self.sysctl = sysctl
        self.privilege = privilege
        self.optional = optional

    def _manual(self) -> tuple[str, ...]:
        return tuple(f"sysctl {k}={v}" for k, v in self.resource.desired.targets.items())

    def probe(self) -> StateSnapshot:
        if not self.sysctl.available():
            raise EnvironmentMissingCapability(
                "sysctl not found; cannot check limits.",
                remedy=self._manual(),
            )
        return probe_limits(self.sysctl, self.resource.desired.targets)

    def satisfied_message(self, snapshot: StateSnapshot) -> str:
        values = " ".join(f"{k}={v}" for k, v in snapshot.details.items())
        return f"limits OK ({values})"

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        spec = self.resource.desired
        wanted = " ".join(f"{k}={v}" for k, v in spec.targets.items())
        log_event("WARN", f"limits too low ({snapshot.details}); need {wanted}", resource=self.label)

        if not self.privilege.available():
            raise PrivilegeUnavailable("sudo not available. Run manually:", remedy=self._manual())

        log_event("INFO", "Raising limits (temporary + persistent)...", resource=self.label)
        for key, value in spec.targets.items():
            self.privilege.run(["sysctl", f"{key}={value}"])

        persisted = self.privilege.write_file(spec.persist_path, spec.render_conf())
        self.privilege.run(["sysctl", "--system"])

        if not self.probe().matches_desired:
            raise ActionFailedAndUnverifiable(
                "limits still too low after raising them.",
                remedy=self._manual(),
            )
        if not persisted.reported_ok:
            return ConvergenceOutcome.converged_with_warning(
                f"limits raised for this boot, but {spec.persist_path} could not be written; "
                "they will reset on reboot"
            )
        return ConvergenceOutcome.converged("limits updated")


class DependencyInstallReconciler(Reconciler):
    """Runs the dependency install only when the manifest fingerprint changed."""

    def __init__(self, resource: ManagedResource, root: str, store: FingerprintStore, executor: Executor) -> None:
        super().__init__(resource)
        self.root = root
        self.store = store
        self.executor = executor

    @property
    def manifest_path(self) -> str:
        return os.path.join(self.root, self.resource.desired.manifest)

    def probe(self) -> StateSnapshot:
        d = install_required(self.manifest_path, self.store)
        return StateSnapshot(
            present=d.current is not None,
            matches_desired=not d.required,
            details={"reason": d.reason, "current": d.current or "", "persisted": d.persisted or ""},
        )

    def satisfied_message(self, snapshot: StateSnapshot) -> str:
        return "Dependencies unchanged, skipping install"

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        spec = self.resource.desired
        command = _cmd(spec.command)
        log_event("INFO", f"Dependencies {snapshot.details['reason']}, running {command}...", resource=self.label)

        result = self.executor.run(spec.command, capture=False)
        if not result.reported_ok:
            # Fingerprint untouched so the next run retries.
            raise ActionFailedAndUnverifiable(f"{command} exited {result.returncode}", remedy=(command,))
        if not os.path.exists(os.path.join(self.root, spec.marker)):
            raise ActionFailedAndUnverifiable(f"{command} finished but {spec.marker} is missing", remedy=(command,))

        # Hash after the install: the package manager may rewrite the lockfile.
        current = hash_manifest(self.manifest_path)
        if current is None:
            return ConvergenceOutcome.converged_with_warning(
                f"{spec.manifest} absent after install; fingerprint not recorded"
            )
        self.store.write(current)
        return ConvergenceOutcome.converged(f"installed; fingerprint {current[:12]} recorded")


class TaskStep(Reconciler):
    """A task-runner invocation that always runs (reset, dev server)."""

    def __init__(self, resource: ManagedResource, executor: Executor, command: tuple[str, ...]) -> None:
        super().__init__(resource)
        self.executor = executor
        self.command = tuple(command)

    def probe(self) -> StateSnapshot:
        return StateSnapshot(present=False, matches_desired=False, details={"command": _cmd(self.command)})

    def converge(self, snapshot: StateSnapshot) -> ConvergenceOutcome:
        command = _cmd(self.command)
        if self.executor.which(self.command[0]) is None:
            raise EnvironmentMissingCapability(f"{self.command[0]} not found on PATH", remedy=(command,))
        log_event("INFO", f"Running {command}...", resource=self.label)
        result = self.executor.run(self.command, capture=False)
        if not result.reported_ok:
            raise ActionFailedAndUnverifiable(f"{command} exited {result.returncode}", remedy=(command,))
        return ConvergenceOutcome.converged(f"{command} finished")
