import logging
import threading

from megadunder.middleware import (
    SECURITY_HEADERS,
    RateLimiter,
    logging_middleware,
    security_headers,
    timeout_middleware,
)


class Recorder:
    def __init__(self):
        self.status = None
        self.headers = []

    def __call__(self, status, headers, exc_info=None):
        self.status = status
        self.headers = list(headers)
        return lambda data: None


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def environ(path="/", addr="192.0.2.1", port="5000"):
    return {"REQUEST_METHOD": "GET", "PATH_INFO": path, "REMOTE_ADDR": addr, "REMOTE_PORT": port}


def hello_app(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [b"hello"]


def test_rate_limiter_blocks_after_limit():
    limiter = RateLimiter(2, 60, clock=FakeClock())
    assert [limiter.allow("a") for _ in range(3)] == [True, True, False]


def test_rate_limiter_resets_after_window():
    clock = FakeClock()
    limiter = RateLimiter(1, 60, clock=clock)
    assert limiter.allow("a") is True
    assert limiter.allow("a") is False
    clock.now += 61
    assert limiter.allow("a") is True
    assert limiter.allow("a") is False


def test_rate_limiter_window_is_fixed_from_first_request():
    clock = FakeClock()
    limiter = RateLimiter(2, 60, clock=clock)
    assert limiter.allow("a")
    clock.now += 50
    assert limiter.allow("a")
    clock.now += 20
    assert limiter.allow("a") is True


def test_rate_limiter_clients_are_independent():
    limiter = RateLimiter(1, 60, clock=FakeClock())
    assert limiter.allow("a") and limiter.allow("b")
    assert limiter.allow("a") is False


def test_rate_limiter_wrap_returns_429():
    app = RateLimiter(1, 60, clock=FakeClock()).wrap(hello_app)
    first = Recorder()
    assert b"".join(app(environ(), first)) == b"hello"
    second = Recorder()
    body = b"".join(app(environ(), second))
    assert second.status == "429 Too Many Requests"
    assert body == b"Rate limit exceeded\n"


def test_security_headers_added():
    recorder = Recorder()
    body = b"".join(security_headers(hello_app)(environ(), recorder))
    headers = dict(recorder.headers)
    assert body == b"hello"
    for name, value in SECURITY_HEADERS:
        assert headers[name] == value
    assert headers["X-Frame-Options"] == "DENY"


def test_security_headers_app_can_override():
    def framed(environ, start_response):
        start_response("200 OK", [("X-Frame-Options", "SAMEORIGIN")])
        return [b""]

    recorder = Recorder()
    security_headers(framed)(environ(), recorder)
    values = [value for name, value in recorder.headers if name == "X-Frame-Options"]
    assert values == ["SAMEORIGIN"]


def test_logging_middleware_logs_on_close(caplog):
    caplog.set_level(logging.INFO, logger="megadunder.middleware")

    def missing(environ, start_response):
        start_response("404 Not Found", [])
        return [b"nope"]

    body = logging_middleware(missing)(environ("/missing"), Recorder())
    assert list(body) == [b"nope"]
    assert "Status: 404" not in caplog.text
    body.close()
    assert "[192.0.2.1:5000] GET /missing - Status: 404" in caplog.text


def test_timeout_middleware_passes_fast_response():
    recorder = Recorder()
    body = timeout_middleware(5)(hello_app)(environ(), recorder)
    assert recorder.status == "200 OK"
    assert b"".join(body) == b"hello"


def test_timeout_middleware_returns_504():
    release = threading.Event()

    def slow(environ, start_response):
        release.wait(5)
        start_response("200 OK", [])
        return [b"late"]

    recorder = Recorder()
    try:
        body = timeout_middleware(0.05)(slow)(environ(), recorder)
    finally:
        release.set()
    assert recorder.status == "504 Gateway Timeout"
    assert b"".join(body) == b""


def test_timeout_middleware_propagates_errors():
    def broken(environ, start_response):
        raise RuntimeError("kaboom")

    try:
        timeout_middleware(5)(broken)(environ(), Recorder())
    except RuntimeError as exc:
        assert str(exc) == "kaboom"
    else:
        raise AssertionError("expected RuntimeError")