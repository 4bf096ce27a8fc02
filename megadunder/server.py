"""The web server: page routes, API routes and the middleware chain."""

import logging
from datetime import datetime
from http import HTTPStatus
from pathlib import Path
from socketserver import ThreadingMixIn
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

from megadunder.errors import config_error
from megadunder.handlers.cert_tools import CertToolsHandler
from megadunder.handlers.dns_tools import DNSToolsHandler
from megadunder.handlers.ip_tools import IPToolsHandler
from megadunder.handlers.mail_tools import MailToolsHandler
from megadunder.middleware import (
    RateLimiter,
    logging_middleware,
    security_headers,
    timeout_middleware,
)
from megadunder.web import text_error

log = logging.getLogger(__name__)

LAYOUT_TEMPLATE = "layout.html"
CONTENT_TEMPLATES = (
    "index.html",
    "ip_tools.html",
    "dns_tools.html",
    "cert_tools.html",
    "mail_tools.html",
)

RATE_LIMIT = 100
RATE_WINDOW = 60.0
REQUEST_TIMEOUT = 30.0
READ_TIMEOUT = 5.0

_FIXED_YEAR = 2024

# Path -> (title, active tab, year); a year of None means the current year.
_PAGES = {
    "/": ("Home", "home", _FIXED_YEAR),
    "/ip-tools": ("IP Tools", "ip", _FIXED_YEAR),
    "/dns-tools": ("DNS Tools", "dns", _FIXED_YEAR),
    "/cert-tools": ("Certificate Tools", "cert", None),
    "/mail-tools": ("Mail Tools", "mail", None),
}


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietRequestHandler(WSGIRequestHandler):
    timeout = READ_TIMEOUT

    def log_message(self, format, *args):
        # Requests are already logged by the logging middleware.
        pass


class Server:
    """Serves the tool pages and their JSON APIs."""

    def __init__(self, port, template_dir, config):
        self.port = str(port)
        self.config = config
        self._templates = Environment(
            loader=FileSystemLoader(str(Path(template_dir))),
            autoescape=select_autoescape(["html"]),
        )
        for name in (LAYOUT_TEMPLATE, *CONTENT_TEMPLATES):
            try:
                self._templates.get_template(name)
            except TemplateError as exc:
                raise config_error(f"Failed to parse template {name}", exc) from exc

        self._api_routes = {
            "/api/ip-tools": IPToolsHandler().handle,
            "/api/dns-tools": DNSToolsHandler().handle,
            "/api/cert-tools": CertToolsHandler().handle,
            "/api/mail-tools": MailToolsHandler().handle,
        }

    def render_page(self, title, active, year):
        """Render the layout for one page and return the HTML."""
        return self._templates.get_template(LAYOUT_TEMPLATE).render(
            Title=title,
            Active=active,
            Year=year,
            Debug=self.config.debug,
        )

    def _serve_page(self, start_response, title, active, year):
        try:
            body = self.render_page(title, active, year).encode("utf-8")
        except TemplateError as exc:
            log.error("Error executing template: %s", exc)
            return text_error(
                start_response, "Internal Server Error", HTTPStatus.INTERNAL_SERVER_ERROR
            )
        start_response(
            "200 OK",
            [("Content-Type", "text/html; charset=utf-8"), ("Content-Length", str(len(body)))],
        )
        return [body]

    def __call__(self, environ, start_response):
        """Route a request to its page or API handler."""
        path = environ.get("PATH_INFO") or "/"
        api = self._api_routes.get(path)
        if api is not None:
            return api(environ, start_response)
        page = _PAGES.get(path)
        if page is None:
            return text_error(start_response, "404 page not found", HTTPStatus.NOT_FOUND)
        title, active, year = page
        return self._serve_page(
            start_response, title, active, year if year is not None else datetime.now().year
        )

    def build_app(self):
        """Wrap the router in the middleware chain."""
        limiter = RateLimiter(RATE_LIMIT, RATE_WINDOW)
        return timeout_middleware(REQUEST_TIMEOUT)(
            limiter.wrap(security_headers(logging_middleware(self)))
        )

    def start(self):
        """Serve forever on the configured port."""
        app = self.build_app()
        log.info("Server starting on port %s (Debug: %s)", self.port, self.config.debug)
        with make_server(
            "",
            int(self.port),
            app,
            server_class=_ThreadingWSGIServer,
            handler_class=_QuietRequestHandler,
        ) as httpd:
            httpd.serve_forever()