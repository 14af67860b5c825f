"""Read-only inspection of managed resources.

Each probe builds a fresh StateSnapshot from the live system and has no side
effects; callers probe again after every action instead of reusing a snapshot.
"""

from __future__ import annotations

import os
import re
from typing import Iterable, Mapping

from .models import StateSnapshot


def probe_toolchain(manager, version: str) -> StateSnapshot:
    current = manager.current_version()
    return StateSnapshot(
        present=current is not None,
        # Exact match only: a newer version is as wrong as an older one.
        matches_desired=current == version,
        details={"current": current or "", "desired": version},
    )


def probe_network(runtime, name: str) -> StateSnapshot:
    exists = runtime.network_exists(name)
    return StateSnapshot(present=exists, matches_desired=exists, details={"network": name})


def probe_container(runtime, name: str) -> StateSnapshot:
    running = name in runtime.list_running()
    present = running or name in runtime.list_all()
    if running:
        state = "running"
    elif present:
        state = "stopped"
    else:
        state = "absent"
    return StateSnapshot(present=present, matches_desired=running, details={"state": state})


def probe_limits(sysctl, targets: Mapping[str, int]) -> StateSnapshot:
    current = {key: sysctl.read(key) for key in targets}
    ok = all(current[key] >= target for key, target in targets.items())
    return StateSnapshot(
        present=True,
        matches_desired=ok,
        details={key: str(value) for key, value in current.items()},
    )


def probe_config_file(path: str) -> StateSnapshot:
    exists = os.path.isfile(path)
    return StateSnapshot(present=exists, matches_desired=exists, details={"path": path})


def probe_required_keys(path: str, keys: Iterable[str]) -> StateSnapshot:
    """True when at least one of ``keys`` is assigned (``KEY=...``) in the file."""
    keys = tuple(keys)
    if not keys:
        return StateSnapshot(present=True, matches_desired=True)
    if not os.path.isfile(path):
        return StateSnapshot(present=False, matches_desired=False, details={"path": path})
    pattern = re.compile(r"^(" + "|".join(re.escape(k) for k in keys) + r")=")
    found: set[str] = set()
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            m = pattern.match(line)
            if m:
                found.add(m.group(1))
    return StateSnapshot(
        present=True,
        matches_desired=bool(found),
        details={"path": path, "found": ",".join(sorted(found))},
    )
