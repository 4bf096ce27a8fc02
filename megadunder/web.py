"""Small WSGI helpers for reading JSON requests and writing responses."""

import json
from http import HTTPStatus

_DECODER = json.JSONDecoder()
_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026", "\u2028": "\\u2028", "\u2029": "\\u2029"}


def _status_line(status):
    if isinstance(status, int):
        return f"{int(status)} {HTTPStatus(status).phrase}"
    return str(status)


def _encode(payload):
    text = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _ESCAPES.items():
        text = text.replace(char, escape)
    return (text + "\n").encode("utf-8")


def read_json(environ):
    """Decode the first JSON value in the request body; raise ValueError if none."""
    stream = environ.get("wsgi.input")
    try:
        length = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        length = 0
    raw = stream.read(length) if stream is not None and length > 0 else b""
    text = raw.decode("utf-8", errors="replace").lstrip(" \t\r\n")
    if not text:
        raise ValueError("EOF")
    value, _ = _DECODER.raw_decode(text)
    return value


def json_response(start_response, payload, status=HTTPStatus.OK):
    """Send a JSON payload; returns the WSGI body."""
    body = _encode(payload)
    start_response(
        _status_line(status),
        [("Content-Type", "application/json"), ("Content-Length", str(len(body)))],
    )
    return [body]


def text_error(start_response, message, status):
    """Send a plain-text error message; returns the WSGI body."""
    body = (message + "\n").encode("utf-8")
    start_response(
        _status_line(status),
        [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
            ("Content-Length", str(len(body))),
        ],
    )
    return [body]