"""Network tools run against IPv6 addresses and hostnames."""

import ipaddress
import socket

from megadunder.handlers.ip_common import execute_command, validate_command
from megadunder.models import CurlOptions, IPToolsResponse


def _resolve(host):
    """Return the addresses a hostname resolves to, as strings."""
    return [info[4][0] for info in socket.getaddrinfo(host, None)]


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


def _is_ipv6_literal(text):
    ip = _parse_ip(text)
    return ip is not None and not _is_ipv4(ip)


def _bracketed_host(address):
    return address.strip("[]").split("]:")[0]


class IPv6Handler:
    """Builds and runs IPv6 tool commands."""

    def __init__(self, resolver=None, runner=None):
        self._resolver = resolver or _resolve
        self._runner = runner or execute_command

    def validate_address(self, address):
        """Tell whether an address, optionally [host]:port, names an IPv6 target."""
        if "]:" in address:
            return self.is_valid_host(_bracketed_host(address))
        return self.is_valid_host(address)

    def is_valid_host(self, host):
        """Tell whether host is an IPv6 address or a hostname with an IPv6 address."""
        host = _strip_scheme(host)
        ip = _parse_ip(host)
        if ip is not None:
            return not _is_ipv4(ip)
        if not host:
            return False
        try:
            addresses = self._resolver(host)
        except (OSError, UnicodeError):
            return False
        for address in addresses:
            resolved = _parse_ip(str(address).split("%", 1)[0])
            if resolved is not None and not _is_ipv4(resolved):
                return True
        return False

    def build_curl_command(self, address, options):
        """Command line for an IPv6 curl request."""
        address = _strip_scheme(address)
        url = address
        if options.protocol:
            host, _, path = address.partition("/")
            suffix = f"/{path}" if "/" in address else ""
            if _is_ipv6_literal(address):
                url = f"{options.protocol}://[{host}]{suffix}"
            else:
                url = f"{options.protocol}://{address}"
        if options.port:
            host, _, path = address.partition("/")
            suffix = f"/{path}" if "/" in address else ""
            if _is_ipv6_literal(host):
                url = f"{options.protocol}://[{host}]:{options.port}{suffix}"
            else:
                url = f"{options.protocol}://{host}:{options.port}{suffix}"
        return ["curl", "-6", "-v", "--max-time", "10", url]

    def build_command(self, command, address):
        """Command line for a tool; raise ValueError when it cannot be built."""
        match command:
            case "curl":
                return self.build_curl_command(address, CurlOptions(protocol="http"))
            case "ping":
                return ["ping6", "-c", "4", address]
            case "traceroute":
                return ["traceroute6", address]
            case "telnet":
                if "]:" not in address:
                    raise ValueError("IPv6 telnet requires address in format [host]:port")
                host = _bracketed_host(address)
                port = address.split("]:")[1]
                return ["timeout", "10", "telnet", host, port]
        raise ValueError("Invalid command")

    def execute_command(self, command, address):
        """Validate and run a tool against an address."""
        if not validate_command(command):
            return IPToolsResponse(error="Invalid command")
        if not self.validate_address(address):
            return IPToolsResponse(error="Invalid host or IPv6 address")
        try:
            args = self.build_command(command, address)
        except ValueError as exc:
            return IPToolsResponse(error=str(exc))
        return self._runner(args)

    def execute_command_with_options(self, command, address, options):
        """Run a tool, using curl options when they are given."""
        if command == "curl" and isinstance(options, CurlOptions):
            if not self.validate_address(address):
                return IPToolsResponse(error="Invalid host or IPv6 address")
            return self._runner(self.build_curl_command(address, options))
        return self.execute_command(command, address)