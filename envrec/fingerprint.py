from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass

_CHUNK = 1 << 16


def hash_manifest(path: str) -> str | None:
    """sha256 hex digest of the manifest, or None when the file is absent."""
    if not os.path.isfile(path):
        return None
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


class FingerprintStore:
    """Marker file holding the manifest hash of the last successful install."""

    def __init__(self, path: str) -> None:
        self.path = path

    def read(self) -> str | None:
        try:
            with open(self.path, encoding="utf-8") as f:
                value = f.read().strip()
        except FileNotFoundError:
            return None
        return value or None

    def write(self, value: str) -> None:
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(value + "\n")
        os.replace(tmp, self.path)


@dataclass(frozen=True)
class InstallDecision:
    required: bool
    reason: str  # manifest-missing|first-install|changed|unchanged
    current: str | None
    persisted: str | None


def install_required(manifest_path: str, store: FingerprintStore) -> InstallDecision:
    """Decide whether the dependency install must run.

    Checked in order: manifest absent, no persisted fingerprint, fingerprint
    differs. Anything else skips.
    """
    current = hash_manifest(manifest_path)
    persisted = store.read()
    if current is None:
        return InstallDecision(True, "manifest-missing", None, persisted)
    if persisted is None:
        return InstallDecision(True, "first-install", current, None)
    if persisted != current:
        return InstallDecision(True, "changed", current, persisted)
    return InstallDecision(False, "unchanged", current, persisted)
