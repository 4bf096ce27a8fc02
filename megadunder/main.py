"""Command entry point: locate the project root, load configuration, serve."""

import argparse
import logging
import os
from pathlib import Path

from megadunder.config import load
from megadunder.errors import AppError
from megadunder.server import Server

log = logging.getLogger(__name__)

DEFAULT_PORT = "8080"
DEFAULT_TEMPLATES = Path(__file__).resolve().parent / "templates"
ROOT_NAME = "megadunder"


def find_project_root(start=None, levels=3):
    """Walk up from start until a directory holding .env is found.

    At most `levels` directories are checked; if none holds .env, the
    directory reached after climbing `levels` times is returned.
    """
    directory = Path(start) if start is not None else Path.cwd()
    for _ in range(levels):
        if (directory / ".env").exists():
            log.info("Found project root directory")
            return directory
        directory = directory.parent
    return directory


def _parse_args(argv):
    parser = argparse.ArgumentParser(prog="megadunder")
    parser.add_argument("--port", default=DEFAULT_PORT, help="port to listen on")
    parser.add_argument(
        "--templates", default=str(DEFAULT_TEMPLATES), help="directory of page templates"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Run the web server; returns the process exit status."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    args = _parse_args(argv)

    if Path(os.environ.get("PWD", "")).name == ROOT_NAME:
        log.info("Already in project root directory")
    else:
        root = find_project_root(Path.cwd())
        try:
            os.chdir(root)
        except OSError as exc:
            log.warning("Warning: Could not change directory: %s", exc)

    log.info("Current directory: %s", Path.cwd())

    config = load()
    try:
        server = Server(args.port, args.templates, config)
        server.start()
    except KeyboardInterrupt:
        return 0
    except (AppError, OSError) as exc:
        log.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())