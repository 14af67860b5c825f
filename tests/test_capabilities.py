import os

from envrec.executor import ActionResult
from envrec.host import SudoEscalation, Sysctl
from envrec.specs import LimitSpec
from envrec.toolchain import CorepackPackageManager, NvmVersionManager

from conftest import FakeExecutor


def test_nvm_activate_puts_version_first_on_path(tmp_path):
    nvm = tmp_path / ".nvm"
    bin_dir = nvm / "versions" / "node" / "v24.5.0" / "bin"
    bin_dir.mkdir(parents=True)
    (nvm / "nvm.sh").write_text("")
    ex = FakeExecutor()
    vm = NvmVersionManager(ex, str(nvm))

    assert vm.available() and vm.installed("24.5.0") and not vm.installed("22.0.0")
    result = vm.activate("24.5.0")
    assert result.returncode == 0
    assert ex.env["PATH"].split(os.pathsep)[0] == str(bin_dir)
    assert ex.actions == [("nvm", "use", "24.5.0")]


def test_nvm_activate_missing_version(tmp_path):
    ex = FakeExecutor()
    vm = NvmVersionManager(ex, str(tmp_path))
    assert vm.activate("24.5.0").returncode != 0
    assert "PATH" in ex.env and str(tmp_path) not in ex.env["PATH"]


def test_versions_are_parsed():
    ex = FakeExecutor(
        results={
            ("node", "-v"): ActionResult(("node", "-v"), 0, "v24.5.0\n"),
            ("yarn", "-v"): ActionResult(("yarn", "-v"), 0, "! Corepack is about to download\n4.9.2\n"),
        }
    )
    assert NvmVersionManager(ex, "/nowhere").current_version() == "24.5.0"
    assert CorepackPackageManager(ex).current_version() == "4.9.2"
    assert ex.actions == []


def test_missing_yarn():
    ex = FakeExecutor(tools=("corepack",))
    assert CorepackPackageManager(ex).current_version() is None


def test_corepack_ensure_commands():
    ex = FakeExecutor()
    CorepackPackageManager(ex).ensure("4.9.2")
    assert ex.actions == [("corepack", "enable"), ("corepack", "prepare", "yarn@4.9.2", "--activate")]


def test_sysctl_read():
    ex = FakeExecutor(
        results={
            ("sysctl", "-n", "fs.inotify.max_user_watches"): ActionResult((), 0, "8192\n"),
            ("sysctl", "-n", "bad.key"): 255,
        }
    )
    s = Sysctl(ex)
    assert s.read("fs.inotify.max_user_watches") == 8192
    assert s.read("bad.key") == 0


def test_sudo_write_file_overwrites(monkeypatch):
    seen = {}

    def tee(argv, input):
        seen["input"] = input
        return 0

    ex = FakeExecutor(results={("sudo", "tee", "/etc/sysctl.d/x.conf"): tee})
    priv = SudoEscalation(ex)
    monkeypatch.setattr(priv, "_is_root", lambda: False)
    spec = LimitSpec(targets={"fs.inotify.max_user_watches": 524288}, persist_path="/etc/sysctl.d/x.conf")
    assert priv.write_file(spec.persist_path, spec.render_conf()).returncode == 0
    assert seen["input"] == "fs.inotify.max_user_watches=524288\n"
    assert "-a" not in ex.actions[0]


def test_sudo_unavailable(monkeypatch):
    priv = SudoEscalation(FakeExecutor(tools=()))
    monkeypatch.setattr(priv, "_is_root", lambda: False)
    assert priv.available() is False
