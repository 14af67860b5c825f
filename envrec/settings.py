from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Toolchain
    node_version: str = os.getenv("ENVREC_NODE_VERSION", "24.5.0")
    yarn_version: str = os.getenv("ENVREC_YARN_VERSION", "4.9.2")
    nvm_dir: str = os.getenv("NVM_DIR", os.path.join(os.path.expanduser("~"), ".nvm"))
    install_toolchain: bool = _env_bool("ENVREC_INSTALL_TOOLCHAIN", False)

    # Project layout
    manifest: str = os.getenv("ENVREC_MANIFEST", "yarn.lock")
    state_dir: str = os.getenv("ENVREC_STATE_DIR", ".yarn")
    fingerprint_file: str = os.getenv("ENVREC_FINGERPRINT_FILE", ".last-install-lock-hash")
    install_marker: str = os.getenv("ENVREC_INSTALL_MARKER", "node_modules")
    root_marker_file: str = "package.json"
    root_marker_dir: str = "packages"

    # Containers
    docker_network: str = os.getenv("ENVREC_DOCKER_NETWORK", "twenty_network")
    readiness_attempts: int = _env_int("ENVREC_READINESS_ATTEMPTS", 3)
    readiness_interval_s: int = _env_int("ENVREC_READINESS_INTERVAL_S", 1)

    # Kernel limits (inotify, for hot reload)
    inotify_watches: int = _env_int("ENVREC_INOTIFY_WATCHES", 524288)
    inotify_instances: int = _env_int("ENVREC_INOTIFY_INSTANCES", 1024)
    sysctl_conf_path: str = os.getenv("ENVREC_SYSCTL_CONF", "/etc/sysctl.d/99-inotify-twenty.conf")
    # When set, insufficient limits abort the run instead of being advisory.
    strict_limits: bool = _env_bool("ENVREC_STRICT_LIMITS", False)

    # Output / journal
    db_path: str | None = os.getenv("ENVREC_DB_PATH")
    color: bool = _env_bool("ENVREC_COLOR", True)


settings = Settings()
