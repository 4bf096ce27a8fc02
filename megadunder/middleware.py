"""WSGI middleware: request logging, rate limiting, security headers, timeouts."""

import logging
import threading
import time
from dataclasses import dataclass
from http import HTTPStatus

from megadunder.web import text_error

log = logging.getLogger(__name__)

ACCESS_LOG_KEY = "megadunder.access_log"

SECURITY_HEADERS = (
    ("X-Content-Type-Options", "nosniff"),
    ("X-Frame-Options", "DENY"),
    ("X-XSS-Protection", "1; mode=block"),
    (
        "Content-Security-Policy",
        "default-src 'self'; script-src 'self' 'unsafe-inline' cdn.tailwindcss.com; "
        "style-src 'self' 'unsafe-inline';",
    ),
    ("Referrer-Policy", "strict-origin-when-cross-origin"),
    ("Permissions-Policy", "geolocation=(), microphone=(), camera=()"),
)


def _client_address(environ):
    host = environ.get("REMOTE_ADDR", "")
    port = environ.get("REMOTE_PORT")
    if not port:
        return host
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _format_duration(seconds):
    if seconds < 1e-3:
        return f"{seconds * 1e6:.3f}µs"
    if seconds < 1:
        return f"{seconds * 1e3:.3f}ms"
    return f"{seconds:.3f}s"


def _access_line(environ, status, seconds):
    return "[{}] {} {} - Status: {} - Duration: {}".format(
        _client_address(environ),
        environ.get("REQUEST_METHOD", ""),
        environ.get("PATH_INFO", ""),
        status,
        _format_duration(seconds),
    )


@dataclass
class _Window:
    count: int
    started: float


class RateLimiter:
    """Fixed-window request limiter keyed by client address."""

    def __init__(self, limit, window, clock=time.monotonic):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._clients = {}
        self._lock = threading.Lock()

    def allow(self, client):
        """Record a request from client and tell whether it is within the limit."""
        with self._lock:
            now = self._clock()
            entry = self._clients.get(client)
            if entry is None:
                self._clients[client] = _Window(1, now)
                return True
            if now - entry.started > self.window:
                entry.count = 1
                entry.started = now
                return True
            if entry.count >= self.limit:
                return False
            entry.count += 1
            return True

    def wrap(self, app):
        """Return app guarded by this limiter."""

        def limited(environ, start_response):
            if not self.allow(_client_address(environ)):
                return text_error(start_response, "Rate limit exceeded", HTTPStatus.TOO_MANY_REQUESTS)
            return app(environ, start_response)

        return limited


class _LoggedBody:
    """Response body that runs a callback once when closed."""

    def __init__(self, body, on_close):
        self._body = body
        self._on_close = on_close
        self._closed = False

    def __iter__(self):
        return iter(self._body)

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            close = getattr(self._body, "close", None)
            if close is not None:
                close()
        finally:
            self._on_close()


def logging_middleware(app):
    """Log client, method, path, status and duration of each request.

    The access line is also stored in the WSGI environ under ACCESS_LOG_KEY.
    """

    def logged(environ, start_response):
        start = time.perf_counter()
        status = [int(HTTPStatus.OK)]

        def capture(status_line, headers, exc_info=None):
            status[0] = int(status_line.split(" ", 1)[0])
            return start_response(status_line, headers, exc_info)

        def report():
            line = _access_line(environ, status[0], time.perf_counter() - start)
            environ[ACCESS_LOG_KEY] = line
            log.info("%s", line)

        return _LoggedBody(app(environ, capture), report)

    return logged


def security_headers(app):
    """Add security headers to every response unless the app sets them itself."""

    def secured(environ, start_response):
        def with_headers(status, headers, exc_info=None):
            present = {name.lower() for name, _ in headers}
            merged = [(name, value) for name, value in SECURITY_HEADERS if name.lower() not in present]
            merged.extend(headers)
            return start_response(status, merged, exc_info)

        return app(environ, with_headers)

    return secured


def timeout_middleware(timeout):
    """Return a decorator answering 504 when the app takes longer than timeout seconds."""

    def decorator(app):
        def timed(environ, start_response):
            outcome = {}
            done = threading.Event()

            def run():
                captured = {}
                chunks = []

                def capture(status, headers, exc_info=None):
                    if exc_info is not None and "status" in captured:
                        raise exc_info[1].with_traceback(exc_info[2])
                    captured["status"] = status
                    captured["headers"] = list(headers)
                    return chunks.append

                try:
                    result = app(environ, capture)
                    try:
                        chunks.extend(result)
                    finally:
                        close = getattr(result, "close", None)
                        if close is not None:
                            close()
                    outcome["response"] = (
                        captured.get("status", "200 OK"),
                        captured.get("headers", []),
                        chunks,
                    )
                except BaseException as exc:  # handed back to the waiting request
                    outcome["error"] = exc
                finally:
                    done.set()

            threading.Thread(target=run, daemon=True).start()
            if not done.wait(timeout):
                start_response("504 Gateway Timeout", [])
                return [b""]
            if "error" in outcome:
                raise outcome["error"]
            status, headers, chunks = outcome["response"]
            start_response(status, headers)
            return chunks

        return timed

    return decorator