import os
import sys

import pytest

# Ensure project root is importable (so `import cli` works without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from envrec import db  # noqa: E402
from envrec.executor import ActionResult, Executor  # noqa: E402
from envrec.orchestrator import Capabilities  # noqa: E402
from envrec.settings import Settings  # noqa: E402


class FakeExecutor(Executor):
    """Executor that never spawns processes.

    ``results`` maps an argv tuple to a return code, an ActionResult, or a
    callable ``(argv, input) -> int`` used to simulate side effects.
    """

    def __init__(self, tools=("make", "npx", "yarn", "corepack", "sysctl", "sudo"), results=None):
        super().__init__(cwd=None, env={"PATH": "/opt/fake/bin"})
        self.tools = set(tools)
        self.results = dict(results or {})
        self.calls = []

    def which(self, name):
        return f"/opt/fake/bin/{name}" if name in self.tools else None

    def _exec(self, argv, capture, extra_env, input):
        argv = tuple(argv)
        self.calls.append(argv)
        r = self.results.get(argv, 0)
        if callable(r):
            r = r(argv, input)
        if isinstance(r, ActionResult):
            return r
        return ActionResult(argv, int(r), "")


class FakeVersionManager:
    tool = "node"

    def __init__(self, current=None, installed=(), available=True, drift=None, install_works=True):
        self.current = current
        self.installed_versions = set(installed)
        self._available = available
        self.drift = drift
        self.install_works = install_works
        self.actions = []

    def available(self):
        return self._available

    def installed(self, version):
        return version in self.installed_versions

    def install(self, version):
        self.actions.append(("install", version))
        if self.install_works:
            self.installed_versions.add(version)
        return ActionResult(("nvm", "install", version), 0 if self.install_works else 1)

    def activate(self, version):
        self.actions.append(("activate", version))
        self.current = self.drift or version
        return ActionResult(("nvm", "use", version), 0)

    def current_version(self):
        return self.current

    def remedy(self, version):
        return [f"nvm install {version}", f"nvm use {version}"]


class FakePackageManager:
    tool = "yarn"
    system_yarn = "/usr/bin/yarn"

    def __init__(self, current=None, available=True, lands_on=None, ensure_rc=0, shadowed=False):
        self.current = current
        self._available = available
        self.lands_on = lands_on
        self.ensure_rc = ensure_rc
        self.shadowed = shadowed
        self.actions = []

    def available(self):
        return self._available

    def ensure(self, version):
        self.actions.append(("ensure", version))
        # lands_on="" simulates yarn disappearing after activation
        self.current = version if self.lands_on is None else (self.lands_on or None)
        return ActionResult(("corepack", "prepare", f"yarn@{version}", "--activate"), self.ensure_rc)

    def current_version(self):
        return self.current

    def shadowed_by_system(self):
        return self.shadowed

    def remedy(self, version):
        return ["corepack enable", f"corepack prepare yarn@{version} --activate"]


class FakeRuntime:
    def __init__(self, available=True, networks=(), running=(), stopped=()):
        self._available = available
        self.networks = set(networks)
        self.running = set(running)
        self.stopped = set(stopped)
        self.ready = {}  # container -> exit code of readiness command
        self.actions = []
        self.network_create_reports = True

    def available(self):
        return self._available

    def network_exists(self, name):
        return name in self.networks

    def create_network(self, name, driver="bridge"):
        self.actions.append(("network-create", name))
        self.networks.add(name)
        return self.network_create_reports

    def list_running(self):
        return sorted(self.running)

    def list_all(self):
        return sorted(self.running | self.stopped)

    def remove(self, name):
        self.actions.append(("remove", name))
        self.running.discard(name)
        self.stopped.discard(name)

    def exec(self, container, cmd):
        if container not in self.running:
            return 126
        return self.ready.get(container, 0)

    def start(self, name):
        self.running.add(name)
        self.stopped.discard(name)


class FakeSysctl:
    def __init__(self, values=None, available=True):
        self.values = dict(values or {})
        self._available = available

    def available(self):
        return self._available

    def read(self, key):
        return self.values.get(key, 0)


class FakePrivilege:
    def __init__(self, sysctl, available=True, persist_rc=0, raise_works=True):
        self.sysctl = sysctl
        self._available = available
        self.persist_rc = persist_rc
        self.raise_works = raise_works
        self.actions = []
        self.files = {}

    def available(self):
        return self._available

    def run(self, argv):
        argv = tuple(argv)
        self.actions.append(argv)
        if self.raise_works and len(argv) == 2 and argv[0] == "sysctl" and "=" in argv[1]:
            key, value = argv[1].split("=", 1)
            self.sysctl.values[key] = int(value)
        return ActionResult(argv, 0)

    def write_file(self, path, content):
        self.actions.append(("tee", path))
        if self.persist_rc == 0:
            self.files[path] = content
        return ActionResult(("sudo", "tee", path), self.persist_rc)


class World:
    """A converged-able fake machine plus a project checkout under tmp_path."""

    def __init__(self, root, settings):
        self.root = str(root)
        self.settings = settings
        self.runtime = FakeRuntime()
        self.sysctl = FakeSysctl(
            {
                "fs.inotify.max_user_watches": settings.inotify_watches,
                "fs.inotify.max_user_instances": settings.inotify_instances,
            }
        )
        self.executor = FakeExecutor(
            results={
                ("make", "postgres-on-docker"): self._provision("twenty_pg"),
                ("make", "redis-on-docker"): self._provision("twenty_redis"),
                ("yarn", "install"): self._install,
            }
        )
        self.node = FakeVersionManager(current="20.1.0", installed={settings.node_version})
        self.yarn = FakePackageManager(current=None)
        self.privilege = FakePrivilege(self.sysctl)

    def _provision(self, name):
        def run(argv, input):
            self.runtime.start(name)
            return 0

        return run

    def _install(self, argv, input):
        os.makedirs(os.path.join(self.root, "node_modules"), exist_ok=True)
        return 0

    def capabilities(self):
        return Capabilities(
            executor=self.executor,
            node=self.node,
            yarn=self.yarn,
            docker=self.runtime,
            sysctl=self.sysctl,
            privilege=self.privilege,
        )

    def action_count(self):
        return (
            len(self.executor.actions)
            + len(self.node.actions)
            + len(self.yarn.actions)
            + len(self.runtime.actions)
            + len(self.privilege.actions)
        )


@pytest.fixture
def settings(tmp_path):
    s = Settings(db_path=str(tmp_path / "journal" / "events.db"), color=False)
    db.configure(s)
    yield s
    db.configure(Settings(db_path=None, color=False))


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "repo"
    (root / "packages" / "twenty-server").mkdir(parents=True)
    (root / "packages" / "twenty-front").mkdir(parents=True)
    (root / "package.json").write_text("{}\n")
    (root / "yarn.lock").write_text("# lock v1\n")
    (root / "packages" / "twenty-server" / ".env.example").write_text("NODE_PORT=3000\n# PG_PASSWORD=\n")
    (root / "packages" / "twenty-front" / ".env.example").write_text("REACT_APP_SERVER_BASE_URL=http://localhost:3000\n")
    return root


@pytest.fixture
def world(project, settings):
    return World(project, settings)
