from __future__ import annotations

from typing import Sequence

import docker
from docker.errors import APIError, DockerException, NotFound

from .db import log_event


class DockerRuntime:
    """Container-runtime capability backed by the docker SDK.

    Containers are addressed by name. The client is created lazily so that
    constructing the runtime never touches the daemon.
    """

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        self._client = client

    def _c(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def available(self) -> bool:
        try:
            self._c().ping()
            return True
        except DockerException:
            self._client = None
            return False

    def network_exists(self, name: str) -> bool:
        try:
            self._c().networks.get(name)
            return True
        except NotFound:
            return False

    def create_network(self, name: str, driver: str = "bridge") -> bool:
        """Create a network. Returns what the daemon reported; callers re-probe."""
        try:
            self._c().networks.create(name, driver=driver)
        except APIError as e:
            log_event("WARN", f"docker network create {name}: {e}", resource=f"network:{name}")
            return False
        log_event("INFO", f"Created docker network '{name}'.", resource=f"network:{name}")
        return True

    def list_running(self) -> list[str]:
        return [x.name for x in self._c().containers.list()]

    def list_all(self) -> list[str]:
        return [x.name for x in self._c().containers.list(all=True)]

    def remove(self, name: str) -> None:
        try:
            self._c().containers.get(name).remove(force=True)
            log_event("INFO", f"Removed stale container {name}", resource=f"service:{name}")
        except NotFound:
            return
        except APIError as e:
            # The fresh probe after provisioning decides.
            log_event("WARN", f"docker rm -f {name}: {e}", resource=f"service:{name}")

    def exec(self, container: str, cmd: Sequence[str]) -> int:
        """Run a command inside a container and return its exit code."""
        try:
            cont = self._c().containers.get(container)
            result = cont.exec_run(list(cmd))
        except NotFound:
            return 125
        except APIError:
            # Raised e.g. when the container is not running.
            return 126
        return int(result.exit_code if result.exit_code is not None else 1)
