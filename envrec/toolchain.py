from __future__ import annotations

import os

from .executor import ActionResult, Executor


def _strip_v(raw: str) -> str:
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    if not lines:
        return ""
    last = lines[-1]
    return last[1:] if last.startswith("v") else last


class NvmVersionManager:
    """Node version manager capability (nvm).

    nvm is a shell function, so activation inside this process means putting
    the version's ``bin`` directory first on the executor's PATH. Every later
    command (corepack, yarn, npx) then sees that node.
    """

    tool = "node"

    def __init__(self, executor: Executor, nvm_dir: str) -> None:
        self.executor = executor
        self.nvm_dir = nvm_dir

    def available(self) -> bool:
        return os.path.isfile(os.path.join(self.nvm_dir, "nvm.sh"))

    def _bin_dir(self, version: str) -> str:
        return os.path.join(self.nvm_dir, "versions", "node", f"v{version}", "bin")

    def installed(self, version: str) -> bool:
        return os.path.isdir(self._bin_dir(version))

    def install(self, version: str) -> ActionResult:
        script = f'. "{self.nvm_dir}/nvm.sh" && nvm install {version}'
        return self.executor.run(["bash", "-c", script], extra_env={"NVM_DIR": self.nvm_dir})

    def activate(self, version: str) -> ActionResult:
        bin_dir = self._bin_dir(version)
        if not os.path.isdir(bin_dir):
            return self.executor.note(["nvm", "use", version], 3, f"N/A: version \"v{version}\" is not yet installed.")
        self.executor.prepend_path(bin_dir)
        self.executor.env["NVM_DIR"] = self.nvm_dir
        self.executor.env["NVM_BIN"] = bin_dir
        return self.executor.note(["nvm", "use", version], 0, f"Now using node v{version}")

    def current_version(self) -> str | None:
        res = self.executor.query(["node", "-v"])
        if res.returncode != 0:
            return None
        return _strip_v(res.output) or None

    def remedy(self, version: str) -> list[str]:
        return [f"nvm install {version}", f"nvm use {version}"]


class CorepackPackageManager:
    """Yarn through corepack."""

    tool = "yarn"
    system_yarn = "/usr/bin/yarn"

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def available(self) -> bool:
        return self.executor.which("corepack") is not None

    def ensure(self, version: str) -> ActionResult:
        self.executor.run(["corepack", "enable"])
        return self.executor.run(["corepack", "prepare", f"yarn@{version}", "--activate"])

    def current_version(self) -> str | None:
        if self.executor.which("yarn") is None:
            return None
        res = self.executor.query(["yarn", "-v"])
        if res.returncode != 0:
            return None
        return _strip_v(res.output) or None

    def shadowed_by_system(self) -> bool:
        return self.executor.which("yarn") == self.system_yarn

    def remedy(self, version: str) -> list[str]:
        return ["corepack enable", f"corepack prepare yarn@{version} --activate"]
