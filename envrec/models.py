from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ConfigurationError, EnvrecError


class ResourceKind(str, Enum):
    TOOLCHAIN_VERSION = "toolchain"
    CONTAINER_NETWORK = "network"
    CONTAINER_SERVICE = "service"
    RESOURCE_LIMIT = "limit"
    CONFIG_FILE = "config"
    DEPENDENCY_TREE = "dependencies"
    TASK = "task"


@dataclass(frozen=True)
class ManagedResource:
    kind: ResourceKind
    name: str
    desired: Any = None  # frozen spec model from envrec.specs, or None

    @property
    def label(self) -> str:
        return f"{self.kind.value}:{self.name}"


@dataclass(frozen=True)
class StateSnapshot:
    present: bool
    matches_desired: bool
    details: dict[str, str] = field(default_factory=dict)


class OutcomeStatus(str, Enum):
    ALREADY_SATISFIED = "already-satisfied"
    CONVERGED = "converged"
    CONVERGED_WITH_WARNING = "converged-with-warning"
    FAILED = "failed"


@dataclass(frozen=True)
class ConvergenceOutcome:
    status: OutcomeStatus
    reason: str = ""
    cause: EnvrecError | None = None

    @classmethod
    def already_satisfied(cls, reason: str = "") -> "ConvergenceOutcome":
        return cls(OutcomeStatus.ALREADY_SATISFIED, reason)

    @classmethod
    def converged(cls, reason: str = "") -> "ConvergenceOutcome":
        return cls(OutcomeStatus.CONVERGED, reason)

    @classmethod
    def converged_with_warning(cls, reason: str) -> "ConvergenceOutcome":
        return cls(OutcomeStatus.CONVERGED_WITH_WARNING, reason)

    @classmethod
    def failed(cls, cause: EnvrecError) -> "ConvergenceOutcome":
        return cls(OutcomeStatus.FAILED, cause.message, cause)

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED


class ReconcileState(str, Enum):
    UNKNOWN = "unknown"
    PROBED = "probed"
    SATISFIED = "satisfied"
    NEEDS_ACTION = "needs-action"
    CONVERGED = "converged"
    FAILED = "failed"


class RunMode(str, Enum):
    ALL = "all"
    SERVER_ONLY = "server-only"
    FRONT_ONLY = "front-only"

    @classmethod
    def from_flags(cls, server_only: bool, front_only: bool) -> "RunMode":
        if server_only and front_only:
            raise ConfigurationError(
                "Choose only one: --server-only or --front-only",
                remedy=("envrec --server-only", "envrec --front-only"),
            )
        if server_only:
            return cls.SERVER_ONLY
        if front_only:
            return cls.FRONT_ONLY
        return cls.ALL
