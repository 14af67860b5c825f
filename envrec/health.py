from __future__ import annotations

import time
from typing import Protocol, Sequence

import httpx

from .specs import ReadinessSpec


class _Exec(Protocol):
    def exec(self, container: str, cmd: Sequence[str]) -> int: ...


def check_http(url: str, timeout_s: float = 2.0, transport: httpx.BaseTransport | None = None) -> tuple[bool, str]:
    """Call a service health endpoint.

    Healthy means any 2xx and, if the body is a JSON object carrying a
    "status" key, that it equals "healthy" (or "ok").
    """
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False, transport=transport) as client:
            resp = client.get(url)
        if not resp.is_success:
            return False, f"HTTP {resp.status_code}"
        if not resp.content.strip():
            return True, f"HTTP {resp.status_code}"
        try:
            data = resp.json()
        except ValueError:
            return True, f"HTTP {resp.status_code}"
        if isinstance(data, dict) and "status" in data and data["status"] not in {"healthy", "ok"}:
            return False, f"Unhealthy payload: {data!r}"
        return True, "Healthy"
    except (httpx.ConnectError, httpx.TimeoutException):
        return False, "No response"
    except httpx.HTTPError as e:
        return False, f"Error: {type(e).__name__}: {e}"


def check_exec(runtime: _Exec, container: str, cmd: Sequence[str]) -> tuple[bool, str]:
    code = runtime.exec(container, cmd)
    if code == 0:
        return True, "Ready"
    return False, f"'{' '.join(cmd)}' exited {code}"


def check_ready(
    runtime: _Exec,
    container: str,
    spec: ReadinessSpec,
    attempts: int = 1,
    interval_s: float = 1.0,
    transport: httpx.BaseTransport | None = None,
) -> tuple[bool, str]:
    """Run the service readiness probe, retrying a few times for slow starts."""
    ok, msg = False, "not checked"
    for i in range(max(1, attempts)):
        if spec.url:
            ok, msg = check_http(spec.url, transport=transport)
        else:
            ok, msg = check_exec(runtime, container, spec.command)
        if ok:
            return ok, msg
        if i < attempts - 1:
            time.sleep(interval_s)
    return ok, msg
