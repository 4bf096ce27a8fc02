"""Mail configuration checks: SPF, DMARC, DKIM, MX and SMTP reachability."""

import socket
import string
import subprocess
from contextlib import closing
from http import HTTPStatus

import dns.exception
import dns.resolver

from megadunder.models import CheckInfo, MailToolsRequest, MailToolsResponse
from megadunder.web import json_response, read_json, text_error

LOOKUP_TIMEOUT = 10.0
CONNECT_TIMEOUT = 5.0
TLS_TIMEOUT = 10.0
DEFAULT_SMTP_PORT = "25"
DEFAULT_DKIM_SELECTOR = "default"

_SELECTOR_CHARS = frozenset(string.ascii_letters + string.digits + "-_")


def _text(data):
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _run_combined(args, timeout):
    """Run args with stderr merged into stdout; return (returncode, output)."""
    completed = subprocess.run(
        args,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        timeout=timeout,
        check=False,
    )
    return completed.returncode, _text(completed.stdout)


def _connect(host, port, timeout):
    return socket.create_connection((host, int(port)), timeout=timeout)


def lookup_mx(domain):
    """Resolve the MX records of domain as (preference, host) pairs, lowest first."""
    try:
        answer = dns.resolver.resolve(domain, "MX", lifetime=LOOKUP_TIMEOUT)
    except dns.exception.DNSException as exc:
        raise LookupError(f"lookup {domain}: {exc}") from exc
    records = [(int(rdata.preference), rdata.exchange.to_text()) for rdata in answer]
    return sorted(records, key=lambda record: record[0])


def _first_record(output, marker):
    return next((record for record in output.split("\n") if marker in record), "")


def _tags(record):
    return (part.strip() for part in record.strip('"').split(";"))


def analyze_spf(output):
    """Judge the SPF record found in dig TXT output."""
    record = _first_record(output, "v=spf1")
    if not record:
        return CheckInfo(
            status="error",
            title="SPF Not Found",
            message="No SPF record found",
            details=["SPF record is recommended for email authentication"],
        )

    details = []
    has_all = False
    for mechanism in record.strip('"').split():
        if mechanism.startswith("include:"):
            details.append(f"Includes: {mechanism.removeprefix('include:')}")
        elif mechanism.startswith(("ip4:", "ip6:")):
            details.append(f"IP range: {mechanism}")
        elif mechanism.startswith("mx"):
            details.append("Uses domain's MX records")
        elif mechanism.endswith("all"):
            has_all = True
            details.append(f"Default policy: {mechanism}")

    if has_all:
        return CheckInfo("valid", "SPF Check", "Valid SPF record found", details)
    return CheckInfo("warning", "SPF Check", "SPF record missing terminal 'all' mechanism", details)


def analyze_dmarc(output):
    """Judge the DMARC record found in dig TXT output."""
    record = _first_record(output, "v=DMARC1")
    if not record:
        return CheckInfo(
            status="warning",
            title="DMARC Not Found",
            message="No DMARC record found",
            details=["DMARC record is recommended for enhanced email security"],
        )

    details = []
    policy = "none"
    for part in _tags(record):
        if part.startswith("p="):
            policy = part.removeprefix("p=")
            details.append(f"Policy: {policy}")
        elif part.startswith("rua="):
            details.append(f"Aggregate reports: {part.removeprefix('rua=')}")
        elif part.startswith("ruf="):
            details.append(f"Forensic reports: {part.removeprefix('ruf=')}")
        elif part.startswith("pct="):
            details.append(f"Policy application: {part.removeprefix('pct=')}%")

    if policy == "none":
        return CheckInfo(
            "warning", "DMARC Check", "DMARC policy set to 'none' (monitoring only)", details
        )
    return CheckInfo("valid", "DMARC Check", "Valid DMARC record found", details)


def analyze_dkim(output, selector):
    """Judge the DKIM record found in dig TXT output for a selector."""
    record = _first_record(output, "v=DKIM1")
    if not record:
        return CheckInfo(
            status="warning",
            title="DKIM Not Found",
            message=f"No DKIM record found for selector '{selector}'",
            details=[
                "DKIM record is recommended for email authentication",
                "Try different selectors if you're sure DKIM is configured",
            ],
        )

    details = []
    for part in _tags(record):
        if part.startswith("k="):
            details.append(f"Key type: {part.removeprefix('k=')}")
        elif part.startswith("p="):
            revoked = part.removeprefix("p=") == ""
            details.append("Public key: REVOKED" if revoked else "Public key: Present")
        elif part.startswith("t="):
            details.append(f"Flags: {part.removeprefix('t=')}")
        elif part.startswith("s="):
            details.append(f"Service type: {part.removeprefix('s=')}")

    return CheckInfo(
        "valid", "DKIM Check", f"Valid DKIM record found for selector '{selector}'", details
    )


def is_valid_selector(selector):
    """Tell whether a DKIM selector holds only letters, digits, '-' and '_'."""
    return all(char in _SELECTOR_CHARS for char in selector)


def summarize(response):
    """Readable summary of every check present in a response."""
    sections = ["=== Mail Configuration Check Results ===\n\n"]
    checks = (
        ("SPF", response.spf_info, "\n\n"),
        ("DMARC", response.dmarc_info, "\n\n"),
        ("DKIM", response.dkim_info, "\n\n"),
        ("MX", response.mx_info, "\n\n"),
        ("SMTP", response.smtp_info, "\n"),
    )
    for label, info, ending in checks:
        if info is not None:
            sections.append(f"{label} Check: {info.status}\n{info.message}{ending}")
    return "".join(sections)


class MailToolsHandler:
    """Serves the mail tools API."""

    def __init__(self, runner=None, mx_lookup=None, connector=None):
        self._runner = runner or _run_combined
        self._mx_lookup = mx_lookup or lookup_mx
        self._connector = connector or _connect

    def _run(self, args, timeout):
        """Run a command; return its output, or None when it failed."""
        try:
            code, output = self._runner(list(args), timeout)
        except (subprocess.TimeoutExpired, OSError):
            return None
        return output if code == 0 else None

    def _dig_txt(self, name):
        return self._run(["dig", "+short", "TXT", name], LOOKUP_TIMEOUT)

    def process(self, request):
        """Run the requested checks and build the response."""
        if not request.domain:
            return MailToolsResponse(error="Domain is required")

        response = MailToolsResponse()
        match request.check_type:
            case "all":
                self.perform_all_checks(request, response)
            case "spf":
                response.spf_info = self.check_spf(request.domain)
            case "dmarc":
                response.dmarc_info = self.check_dmarc(request.domain)
            case "dkim":
                response.dkim_info = self.check_dkim(request.domain, request.dkim_selector)
            case "mx":
                response.mx_info = self.check_mx(request.domain)
            case "smtp":
                response.smtp_info = self.check_smtp(request.domain, request.smtp_options)
            case _:
                return MailToolsResponse(error="Invalid check type")
        return response

    def handle(self, environ, start_response):
        """WSGI entry point for POST /api/mail-tools."""
        if environ.get("REQUEST_METHOD") != "POST":
            return text_error(start_response, "Method not allowed", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            request = MailToolsRequest.from_dict(read_json(environ))
        except ValueError:
            return json_response(
                start_response, MailToolsResponse(error="Invalid request body").to_dict()
            )
        return json_response(start_response, self.process(request).to_dict())

    def perform_all_checks(self, request, response):
        """Run every check into response and fill in its summary."""
        response.spf_info = self.check_spf(request.domain)
        response.dmarc_info = self.check_dmarc(request.domain)
        response.dkim_info = self.check_dkim(request.domain, request.dkim_selector)
        response.mx_info = self.check_mx(request.domain)
        response.smtp_info = self.check_smtp(request.domain, request.smtp_options)
        response.output = summarize(response)
        return response

    def check_spf(self, domain):
        """Look up and judge the domain's SPF record."""
        output = self._dig_txt(domain)
        if output is None:
            return CheckInfo("error", "SPF Check Failed", "Failed to lookup SPF record")
        return analyze_spf(output)

    def check_dmarc(self, domain):
        """Look up and judge the domain's DMARC record."""
        output = self._dig_txt(f"_dmarc.{domain}")
        if output is None:
            return CheckInfo("error", "DMARC Check Failed", "Failed to lookup DMARC record")
        return analyze_dmarc(output)

    def check_dkim(self, domain, selector=""):
        """Look up and judge the DKIM record of a selector, 'default' if none is given."""
        selector = selector or DEFAULT_DKIM_SELECTOR
        if not is_valid_selector(selector):
            return CheckInfo(
                status="error",
                title="DKIM Check Failed",
                message="Invalid DKIM selector format",
                details=["Selector can only contain letters, numbers, hyphens, and underscores"],
            )
        output = self._dig_txt(f"{selector}._domainkey.{domain}")
        if output is None:
            return CheckInfo("error", "DKIM Check Failed", "Failed to lookup DKIM record")
        return analyze_dkim(output, selector)

    def check_mx(self, domain):
        """Look up the domain's MX records."""
        try:
            records = list(self._mx_lookup(domain))
        except (LookupError, OSError):
            return CheckInfo("error", "MX Check Failed", "Failed to lookup MX records")
        if not records:
            return CheckInfo(
                status="error",
                title="MX Not Found",
                message="No MX records found",
                details=["MX records are required for receiving email"],
            )
        return CheckInfo(
            status="valid",
            title="MX Check",
            message=f"Found {len(records)} MX record(s)",
            details=[f"Priority {preference}: {host}" for preference, host in records],
        )

    def check_smtp(self, domain, options):
        """Connect to the first mail exchanger and optionally probe STARTTLS."""
        port = options.port or DEFAULT_SMTP_PORT
        try:
            records = list(self._mx_lookup(domain))
        except (LookupError, OSError):
            records = []
        if not records:
            return CheckInfo("error", "SMTP Check Failed", "No MX records found to test SMTP")

        server = records[0][1].removesuffix(".")
        address = f"[{server}]:{port}" if ":" in server else f"{server}:{port}"

        try:
            connection = self._connector(server, port, CONNECT_TIMEOUT)
        except (OSError, ValueError) as exc:
            return CheckInfo(
                status="error",
                title="SMTP Connection Failed",
                message=f"Could not connect to {address}",
                details=[str(exc)],
            )

        with closing(connection):
            details = [f"Successfully connected to {server}"]
            if options.check_tls:
                output = self._run(
                    ["openssl", "s_client", "-starttls", "smtp", "-connect", address],
                    TLS_TIMEOUT,
                )
                if output is None:
                    details.append("STARTTLS not supported or failed")
                elif "BEGIN CERTIFICATE" in output:
                    details.append("STARTTLS supported")
                    if "Verify return code: 0" in output:
                        details.append("Valid TLS certificate")
                    else:
                        details.append("TLS certificate validation failed")

        return CheckInfo(
            status="valid",
            title="SMTP Check",
            message=f"SMTP server responding on port {port}",
            details=details,
        )