from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, model_validator

CONTAINER_NAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]{0,62}$"
SYSCTL_KEY_PATTERN = r"^[a-z0-9_]+(\.[a-z0-9_]+)+$"


class _Spec(BaseModel):
    model_config = ConfigDict(frozen=True)


class ToolchainSpec(_Spec):
    tool: str = Field(..., description="Binary that reports the version, e.g. node, yarn")
    version: str = Field(..., min_length=1, description="Exact version string (no leading 'v')")


class NetworkSpec(_Spec):
    name: str = Field(..., pattern=CONTAINER_NAME_PATTERN)
    driver: str = "bridge"


class ReadinessSpec(_Spec):
    """How to tell that a running service actually serves requests.

    Either a command executed inside the container (exit 0 = ready) or an
    HTTP URL polled from the host.
    """

    command: tuple[str, ...] = ()
    url: str | None = Field(None, description="HTTP health endpoint reachable from the host")

    @model_validator(mode="after")
    def _one_kind(self) -> "ReadinessSpec":
        if bool(self.command) == bool(self.url):
            raise ValueError("readiness needs exactly one of 'command' or 'url'")
        return self


class ServiceSpec(_Spec):
    name: str = Field(..., pattern=CONTAINER_NAME_PATTERN, description="Container name")
    provision: tuple[str, ...] = Field(..., min_length=1, description="Task-runner command creating the service")
    readiness: ReadinessSpec


class LimitSpec(_Spec):
    targets: dict[str, int] = Field(..., min_length=1, description="sysctl key -> minimum value")
    persist_path: str = Field(..., description="sysctl.d file rewritten on each successful raise")

    @model_validator(mode="after")
    def _keys(self) -> "LimitSpec":
        for key, value in self.targets.items():
            if not re.match(SYSCTL_KEY_PATTERN, key):
                raise ValueError(f"invalid sysctl key: {key!r}")
            if value < 0:
                raise ValueError(f"negative target for {key}")
        return self

    def render_conf(self) -> str:
        return "".join(f"{k}={v}\n" for k, v in self.targets.items())


class ConfigFileSpec(_Spec):
    path: str = Field(..., description="File path relative to the project root")
    template: str = Field(..., description="Template copied when the file is absent")
    # At least one of these keys must be assigned in the file.
    required_keys: tuple[str, ...] = ()
    defaults: tuple[str, ...] = Field((), description="KEY=VALUE lines appended when no required key is set")


class DependencySpec(_Spec):
    manifest: str = Field(..., description="Lockfile hashed to detect changes")
    command: tuple[str, ...] = Field(..., min_length=1)
    marker: str = Field("node_modules", description="Path that must exist after a successful install")
