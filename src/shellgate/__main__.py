"""Entry point for `python -m shellgate` / `shellgate`.

Subcommands:
    shellgate              Run the SSH server (default)
    shellgate check        Validate shell, port and authorized keys, then exit
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from importlib.metadata import PackageNotFoundError, version


def _version() -> str:
    try:
        return version("shellgate")
    except PackageNotFoundError:
        return "unknown"


def _run() -> None:
    from shellgate.app import STARTUP_ERRORS, ShellgateApp
    from shellgate.logger import logger

    app = ShellgateApp()
    try:
        asyncio.run(app.run())
    except STARTUP_ERRORS as exc:
        logger.error("failed to start", error=str(exc))
        sys.exit(1)


def _check() -> None:
    from shellgate.app import ShellgateApp

    sys.exit(0 if ShellgateApp().check() else 1)


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="shellgate",
        description="SSH server running remote commands under a local shell",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("check", help="Validate the startup configuration and exit")

    args = parser.parse_args()

    match args.command:
        case "check":
            _check()
        case _:
            _run()


if __name__ == "__main__":
    main()
