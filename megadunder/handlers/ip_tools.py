"""The IP tools API: dispatches requests to the IPv4 or IPv6 handler."""

from http import HTTPStatus

from megadunder.handlers.ipv4 import IPv4Handler
from megadunder.handlers.ipv6 import IPv6Handler
from megadunder.models import IPToolsRequest, IPToolsResponse
from megadunder.web import json_response, read_json, text_error


class IPToolsHandler:
    """Serves the IP tools API."""

    def __init__(self, ipv4=None, ipv6=None):
        self._handlers = {
            "ipv4": ipv4 or IPv4Handler(),
            "ipv6": ipv6 or IPv6Handler(),
        }

    def process(self, request):
        """Run the requested tool with the handler for the requested IP version."""
        if not request.ip_address:
            return IPToolsResponse(error="IP address is required")
        handler = self._handlers.get(request.ip_version)
        if handler is None:
            return IPToolsResponse(error="Invalid IP version. Must be 'ipv4' or 'ipv6'")
        if request.command == "curl":
            return handler.execute_command_with_options(
                request.command, request.ip_address, request.curl_options
            )
        return handler.execute_command(request.command, request.ip_address)

    def handle(self, environ, start_response):
        """WSGI entry point for POST /api/ip-tools."""
        if environ.get("REQUEST_METHOD") != "POST":
            return text_error(start_response, "Method not allowed", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            request = IPToolsRequest.from_dict(read_json(environ))
        except ValueError:
            return text_error(start_response, "Invalid request body", HTTPStatus.BAD_REQUEST)
        return json_response(start_response, self.process(request).to_dict())