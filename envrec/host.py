from __future__ import annotations

import os
from typing import Sequence

from .executor import ActionResult, Executor


class SudoEscalation:
    """Optional privilege-escalation capability."""

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def _is_root(self) -> bool:
        return hasattr(os, "geteuid") and os.geteuid() == 0

    def _prefix(self) -> list[str]:
        return [] if self._is_root() else ["sudo"]

    def available(self) -> bool:
        return self._is_root() or self.executor.which("sudo") is not None

    def run(self, argv: Sequence[str]) -> ActionResult:
        return self.executor.run([*self._prefix(), *argv])

    def write_file(self, path: str, content: str) -> ActionResult:
        """Overwrite ``path`` with ``content`` (never appends)."""
        return self.executor.run([*self._prefix(), "tee", path], input=content)


class Sysctl:
    """Reads kernel parameters through ``sysctl -n``."""

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def available(self) -> bool:
        return self.executor.which("sysctl") is not None

    def read(self, key: str) -> int:
        res = self.executor.query(["sysctl", "-n", key])
        if res.returncode != 0:
            return 0
        try:
            return int(res.output.strip().split()[0])
        except (IndexError, ValueError):
            return 0
