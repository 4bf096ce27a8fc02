"""Network tools run against IPv4 addresses and hostnames."""

import ipaddress
import socket

from megadunder.handlers.ip_common import execute_command, validate_command
from megadunder.models import CurlOptions, IPToolsResponse


def _resolve(host):
    return socket.getaddrinfo(host, None)


def _strip_scheme(address):
    return address.removeprefix("http://").removeprefix("https://")


def _parse_ip(text):
    if "%" in text:
        return None
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def _is_ipv4(ip):
    return ip.version == 4 or ip.ipv4_mapped is not None


class IPv4Handler:
    """Builds and runs IPv4 tool commands."""

    def __init__(self, resolver=None, runner=None):
        self._resolver = resolver or _resolve
        self._runner = runner or execute_command

    def validate_address(self, address):
        """Tell whether an address, optionally host:port, names an IPv4 target."""
        if ":" in address:
            return self.is_valid_host(address.split(":")[0])
        return self.is_valid_host(address)

    def is_valid_host(self, host):
        """Tell whether host is an IPv4 address or a resolvable hostname."""
        host = _strip_scheme(host)
        ip = _parse_ip(host)
        if ip is not None:
            return _is_ipv4(ip)
        if not host:
            return False
        try:
            self._resolver(host)
        except (OSError, UnicodeError):
            return False
        return True

    def build_curl_command(self, address, options):
        """Command line for an IPv4 curl request."""
        address = _strip_scheme(address)
        url = address
        if options.protocol:
            url = f"{options.protocol}://{address}"
        if options.port:
            host, _, path = address.partition("/")
            suffix = f"/{path}" if "/" in address else ""
            url = f"{options.protocol}://{host}:{options.port}{suffix}"
        return ["curl", "-4", "-v", "--max-time", "10", url]

    def build_command(self, command, address):
        """Command line for a tool; raise ValueError when it cannot be built."""
        match command:
            case "curl":
                return self.build_curl_command(address, CurlOptions(protocol="http"))
            case "ping":
                return ["ping", "-4", "-c", "4", address]
            case "traceroute":
                return ["traceroute", "-4", address]
            case "telnet":
                parts = address.split(":")
                if len(parts) != 2:
                    raise ValueError("Telnet requires address in format host:port")
                return ["timeout", "10", "telnet", parts[0], parts[1]]
        raise ValueError("Invalid command")

    def execute_command(self, command, address):
        """Validate and run a tool against an address."""
        if not validate_command(command):
            return IPToolsResponse(error="Invalid command")
        if not self.validate_address(address):
            return IPToolsResponse(error="Invalid host or IPv4 address")
        try:
            args = self.build_command(command, address)
        except ValueError as exc:
            return IPToolsResponse(error=str(exc))
        return self._runner(args)

    def execute_command_with_options(self, command, address, options):
        """Run a tool, using curl options when they are given."""
        if command == "curl" and isinstance(options, CurlOptions):
            if not self.validate_address(address):
                return IPToolsResponse(error="Invalid host or IPv4 address")
            return self._runner(self.build_curl_command(address, options))
        return self.execute_command(command, address)