import httpx

from envrec import health
from envrec.health import check_exec, check_http, check_ready
from envrec.specs import ReadinessSpec

from conftest import FakeRuntime


def _transport(status=200, json=None, text=None):
    def handler(request):
        if json is not None:
            return httpx.Response(status, json=json)
        return httpx.Response(status, text=text or "")

    return httpx.MockTransport(handler)


def test_http_healthy_payload():
    assert check_http("http://svc/health", transport=_transport(json={"status": "healthy"})) == (True, "Healthy")


def test_http_unhealthy_payload():
    ok, msg = check_http("http://svc/health", transport=_transport(json={"status": "degraded"}))
    assert not ok and "degraded" in msg


def test_http_plain_200_is_ready():
    assert check_http("http://svc/health", transport=_transport(text="pong"))[0] is True


def test_http_error_status():
    assert check_http("http://svc/health", transport=_transport(status=503, text="")) == (False, "HTTP 503")


def test_http_no_content_is_ready():
    transport = httpx.MockTransport(lambda request: httpx.Response(204))
    assert check_http("http://svc/health", transport=transport) == (True, "HTTP 204")


def test_http_redirect_is_not_ready():
    transport = httpx.MockTransport(lambda request: httpx.Response(302, headers={"location": "/login"}))
    assert check_http("http://svc/health", transport=transport) == (False, "HTTP 302")


def test_http_no_response():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert check_http("http://svc/health", transport=httpx.MockTransport(handler)) == (False, "No response")


def test_exec_readiness():
    rt = FakeRuntime(running={"twenty_redis"})
    assert check_exec(rt, "twenty_redis", ("redis-cli", "ping"))[0]
    rt.ready["twenty_redis"] = 1
    ok, msg = check_exec(rt, "twenty_redis", ("redis-cli", "ping"))
    assert not ok and "exited 1" in msg


def test_ready_retries(monkeypatch):
    sleeps = []
    monkeypatch.setattr(health.time, "sleep", lambda s: sleeps.append(s))
    rt = FakeRuntime(running={"twenty_pg"})
    rt.ready["twenty_pg"] = 2
    ok, _ = check_ready(rt, "twenty_pg", ReadinessSpec(command=("pg_isready",)), attempts=3, interval_s=0.5)
    assert not ok
    assert sleeps == [0.5, 0.5]


def test_ready_via_url():
    spec = ReadinessSpec(url="http://localhost:3000/healthz")
    ok, _ = check_ready(FakeRuntime(), "server", spec, transport=_transport(json={"status": "ok"}))
    assert ok
