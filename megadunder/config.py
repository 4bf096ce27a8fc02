"""Configuration loaded from the environment and optional .env files."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

log = logging.getLogger(__name__)

DEFAULT_LOCATIONS = (
    ".env",
    os.path.join("..", "..", ".env"),
    os.path.join("cmd", "megadunder", ".env"),
)

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass(frozen=True)
class Config:
    """Runtime configuration values."""

    debug: bool = False


def parse_bool(value):
    """Parse a boolean in the accepted spellings; raise ValueError otherwise."""
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean syntax: {value!r}")


def get_env_bool(key, default=False):
    """Read a boolean environment variable, falling back to a default."""
    value = os.environ.get(key)
    if value is None:
        log.info("Environment variable %s not found, using default: %s", key, default)
        return default
    log.info("Found environment variable %s=%s", key, value)
    try:
        return parse_bool(value)
    except ValueError as exc:
        log.warning("Warning: Invalid boolean value for %s: %s", key, exc)
        return default


def load(locations=None):
    """Load the first .env file found and build the configuration."""
    loaded = False
    for location in DEFAULT_LOCATIONS if locations is None else locations:
        path = Path(location)
        if not path.exists():
            continue
        try:
            with path.open(encoding="utf-8") as stream:
                load_dotenv(stream=stream, override=False)
        except (OSError, UnicodeDecodeError) as exc:
            log.error("Error loading %s: %s", location, exc)
            continue
        log.info("Loaded environment from %s", location)
        loaded = True
        break

    if not loaded:
        log.info("No .env file found, using default values")

    debug = get_env_bool("DEBUG", False)
    log.info("Debug mode: %s", debug)
    return Config(debug=debug)