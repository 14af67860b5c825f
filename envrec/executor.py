from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Mapping, Sequence


@dataclass(frozen=True)
class ActionResult:
    argv: tuple[str, ...]
    returncode: int
    output: str = ""

    @property
    def reported_ok(self) -> bool:
        # What the action claims. Reconcilers confirm it with a fresh probe.
        return self.returncode == 0


@dataclass
class Executor:
    """Runs external commands and reports raw exit status plus captured output.

    It never decides whether a convergence action succeeded. ``run`` is for
    actions that change state (recorded in ``actions``); ``query`` is for
    read-only inspection used by probes.
    """

    cwd: str | None = None
    env: dict[str, str] = field(default_factory=lambda: dict(os.environ))
    actions: list[tuple[str, ...]] = field(default_factory=list)

    def which(self, name: str) -> str | None:
        return shutil.which(name, path=self.env.get("PATH"))

    def prepend_path(self, directory: str) -> None:
        parts = [p for p in self.env.get("PATH", "").split(os.pathsep) if p and p != directory]
        self.env["PATH"] = os.pathsep.join([directory, *parts])

    def _exec(
        self,
        argv: Sequence[str],
        capture: bool,
        extra_env: Mapping[str, str] | None,
        input: str | None,
    ) -> ActionResult:
        env = dict(self.env)
        if extra_env:
            env.update(extra_env)
        try:
            proc = subprocess.run(
                list(argv),
                cwd=self.cwd,
                env=env,
                input=input,
                stdout=subprocess.PIPE if capture else None,
                stderr=subprocess.STDOUT if capture else None,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            return ActionResult(tuple(argv), 127, str(e))
        return ActionResult(tuple(argv), proc.returncode, (proc.stdout or "") if capture else "")

    def run(
        self,
        argv: Sequence[str],
        capture: bool = True,
        extra_env: Mapping[str, str] | None = None,
        input: str | None = None,
    ) -> ActionResult:
        self.actions.append(tuple(argv))
        return self._exec(argv, capture, extra_env, input)

    def note(self, argv: Sequence[str], returncode: int, output: str = "") -> ActionResult:
        """Record an in-process action (e.g. a PATH switch) as if it had been run."""
        self.actions.append(tuple(argv))
        return ActionResult(tuple(argv), returncode, output)

    def query(self, argv: Sequence[str]) -> ActionResult:
        return self._exec(argv, True, None, None)
