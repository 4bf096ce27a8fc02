"""DNS lookups and DNSSEC checks performed with dig."""

import signal
import subprocess
import time
from http import HTTPStatus
from typing import NamedTuple

from megadunder.models import DNSLookupRequest, DNSLookupResponse, DNSSECInfo
from megadunder.web import json_response, read_json, text_error

DIG_TIMEOUT = 10.0

VALID_RECORD_TYPES = frozenset(
    {"A", "AAAA", "CNAME", "MX", "TXT", "NS", "SOA", "PTR", "DNSKEY", "DS", "RRSIG", "NSEC", "NSEC3"}
)


class _DigResult(NamedTuple):
    output: str
    error: str
    timed_out: bool


def _text(data):
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _exit_message(code):
    if code < 0:
        name = signal.strsignal(-code) or f"signal {-code}"
        return f"signal: {name.lower()}"
    return f"exit status {code}"


def _run_combined(args, timeout):
    """Run args with stderr merged into stdout; return (returncode, output)."""
    completed = subprocess.run(
        args,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        timeout=timeout,
        check=False,
    )
    return completed.returncode, _text(completed.stdout)


def is_valid_record_type(record_type):
    """Tell whether a record type is supported."""
    return record_type in VALID_RECORD_TYPES


def build_dig_args(request):
    """Full dig command line for a lookup request."""
    args = ["dig", "+noall", "+answer"]
    if request.check_dnssec:
        args += ["+dnssec", "+multiline"]
    args += ["-t", request.record_type]
    name = request.name
    if request.record_type == "PTR" and not (
        name.endswith(".in-addr.arpa") or name.endswith(".ip6.arpa")
    ):
        args += ["-x", name]
    else:
        args.append(name)
    return args


def parse_signature_info(output):
    """Extract record type, algorithm and expiration from RRSIG lines."""
    entries = []
    for line in output.split("\n"):
        if "RRSIG" not in line:
            continue
        fields = line.split()
        for index, word in enumerate(fields):
            if word == "RRSIG" and len(fields) > index + 4:
                entries.append(
                    f"Record type: {fields[index + 1]}, Algorithm: {fields[index + 2]}, "
                    f"Expiration: {fields[index + 4]}\n"
                )
    return "".join(entries) or "No signature information found"


class DNSToolsHandler:
    """Serves the DNS tools API."""

    def __init__(self, runner=None):
        self._runner = runner or _run_combined

    def _run(self, args, timeout):
        try:
            code, output = self._runner(list(args), timeout)
        except subprocess.TimeoutExpired as exc:
            return _DigResult(_text(exc.output), "signal: killed", True)
        except OSError as exc:
            return _DigResult("", str(exc), False)
        return _DigResult(output, "" if code == 0 else _exit_message(code), False)

    def process(self, request):
        """Validate a lookup request and run it."""
        if not request.name:
            return DNSLookupResponse(error="Name to lookup is required")
        if not is_valid_record_type(request.record_type):
            return DNSLookupResponse(error="Invalid record type")
        response = self.execute_dns_lookup(request)
        if request.check_dnssec:
            response.dnssec_info = self.check_dnssec(request.name)
        return response

    def handle(self, environ, start_response):
        """WSGI entry point for POST /api/dns-tools."""
        if environ.get("REQUEST_METHOD") != "POST":
            return text_error(start_response, "Method not allowed", HTTPStatus.METHOD_NOT_ALLOWED)
        try:
            request = DNSLookupRequest.from_dict(read_json(environ))
        except ValueError:
            return text_error(start_response, "Invalid request body", HTTPStatus.BAD_REQUEST)
        return json_response(start_response, self.process(request).to_dict())

    def execute_dns_lookup(self, request):
        """Run dig for the request and wrap its output."""
        result = self._run(build_dig_args(request), DIG_TIMEOUT)
        response = DNSLookupResponse(output=result.output)
        if result.timed_out:
            response.error = "DNS lookup timed out after 10 seconds"
        elif result.error:
            response.error = result.error
        elif not response.output.strip():
            response.output = "No records found"
        return response

    def check_dnssec(self, domain):
        """Check whether a domain is signed and whether its signatures validate."""
        info = DNSSECInfo(enabled=False, status="DNSSEC not enabled")
        deadline = time.monotonic() + DIG_TIMEOUT

        def dig(*args):
            return self._run(["dig", *args], max(deadline - time.monotonic(), 0.0))

        ds = dig("+multiline", "-t", "DS", domain)
        if not ds.error and " DS " in ds.output:
            info.has_ds = True
            info.ds_records = ds.output
            info.enabled = True
            info.status = "DNSSEC enabled"

        keys = dig("+dnssec", "+cd", "+multiline", "-t", "DNSKEY", domain)
        if keys.error:
            info.error = f"Error checking DNSKEY: {keys.error}"
            return info
        if "DNSKEY" not in keys.output:
            return info

        info.enabled = True
        info.status = "DNSSEC enabled"

        # Primes the resolver; the output is not used.
        dig("+dnssec", "+cd", "+multiline", "+trusted-key=auto", domain)

        validation = dig("+dnssec", "+multiline", domain).output
        has_ad = "flags: qr rd ra ad;" in validation or "status: NOERROR" in validation
        has_rrsig = "RRSIG" in validation

        if has_ad and has_rrsig:
            info.status = "DNSSEC enabled and validated"
            info.validated = True
        elif has_rrsig:
            chase = dig("+dnssec", "+cd", "+multiline", "+trusted-key=auto", "+sigchase", domain).output
            if "DNSKEY" in chase and "SERVFAIL" not in chase:
                info.status = "DNSSEC enabled and valid (resolver may not support validation)"
                info.validated = True
            else:
                info.status = "DNSSEC enabled but validation failed"
                info.validated = False

        signatures = dig("+dnssec", "+multiline", "-t", "RRSIG", domain)
        if not signatures.error:
            info.signature_info = parse_signature_info(signatures.output)

        if info.validated:
            details = []
            if info.has_ds:
                details.append("DS records present in parent zone")
            if has_rrsig:
                details.append("RRSIG records present")
            if has_ad:
                details.append("AD flag set by resolver")
            info.validation_details = ", ".join(details)

        return info