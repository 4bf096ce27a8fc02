"""Shared helpers for running network tools against IP addresses."""

import signal
import subprocess

from megadunder.models import IPToolsResponse

ALLOWED_COMMANDS = frozenset({"curl", "ping", "traceroute", "telnet"})
COMMAND_TIMEOUT = 10.0
TIMEOUT_MESSAGE = "Command timed out after 10 seconds"

_TIMED_COMMANDS = frozenset({"curl", "telnet"})
_TIMEOUT_MARKERS = ("Operation timed out", "Timeout was reached")


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


def validate_command(command):
    """Tell whether a command is one of the allowed tools."""
    return command in ALLOWED_COMMANDS


def is_timeout_output(output):
    """Tell whether tool output reports a timeout."""
    return any(marker in output for marker in _TIMEOUT_MARKERS)


def execute_command(args):
    """Run a command line and capture its combined output."""
    args = list(args)
    if not args:
        raise ValueError("no command given")

    timeout = COMMAND_TIMEOUT if args[0] in _TIMED_COMMANDS else None
    timed_out = False
    try:
        completed = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        output, error, timed_out = _text(exc.output), "signal: killed", True
    except OSError as exc:
        output, error = "", str(exc)
    else:
        output = _text(completed.stdout)
        error = "" if completed.returncode == 0 else _exit_message(completed.returncode)

    response = IPToolsResponse(output=output)
    if error:
        if timed_out or error == "signal: killed" or is_timeout_output(output):
            response.error = TIMEOUT_MESSAGE
        else:
            response.error = error
    return response