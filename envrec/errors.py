"""Error taxonomy.

Every error carries the exact commands an operator can run by hand to fix the
condition; the CLI prints them, the core only raises.
"""

from __future__ import annotations

from typing import Iterable


class EnvrecError(Exception):
    """Base error."""

    def __init__(self, message: str, remedy: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.remedy: tuple[str, ...] = tuple(remedy)


class ConfigurationError(EnvrecError):
    """Bad flags or wrong working directory. Raised before any reconciliation."""


class EnvironmentMissingCapability(EnvrecError):
    """A required external tool is absent or unreachable."""


class VersionMismatch(EnvrecError):
    """Reported version differs from the pinned one after activation."""


class ActionFailedAndUnverifiable(EnvrecError):
    """The action failed and an independent probe could not confirm the desired state."""


class PrivilegeUnavailable(EnvrecError):
    """The change needs privilege escalation and none is available."""
