"""Host bootstrap — make sure the configured shell exists before serving."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Literal, TypeAlias

from shellgate.logger import logger

Distribution: TypeAlias = Literal["debian", "alpine", "centos", "unknown"]

OS_RELEASE = Path("/etc/os-release")

_DISTRO_IDS: dict[str, Distribution] = {
    "debian": "debian",
    "ubuntu": "debian",
    "alpine": "alpine",
    "centos": "centos",
}


class ShellNotFoundError(RuntimeError):
    def __init__(self, shell: str) -> None:
        super().__init__(f"{shell} needs to be available in the $PATH of your environment")
        self.shell = shell


def detect_distribution(os_release: Path = OS_RELEASE) -> Distribution:
    """Read the ``ID=`` field of os-release. Missing file → "unknown"."""
    try:
        text = os_release.read_text()
    except FileNotFoundError:
        return "unknown"

    for line in text.splitlines():
        if line.startswith("ID="):
            value = line.removeprefix("ID=").strip().strip('"')
            return _DISTRO_IDS.get(value, "unknown")
    return "unknown"


def install_commands(distro: Distribution, package: str) -> list[list[str]]:
    """Package-manager invocations that install ``package``, update first."""
    match distro:
        case "debian":
            return [["apt-get", "update"], ["apt-get", "install", "-y", package]]
        case "alpine":
            return [["apk", "update", "--no-cache"], ["apk", "add", package]]
        case "centos":
            return [["yum", "-y", "update"], ["yum", "install", "-y", package]]
        case _:
            return []


def assert_shell(shell: str, *, install_missing: bool = True, os_release: Path = OS_RELEASE) -> str:
    """Return the resolved path of ``shell``, installing it if allowed.

    Raises ShellNotFoundError if the shell is absent and can't be installed.
    """
    if path := shutil.which(shell):
        logger.info("shell found", shell=shell, path=path)
        return path

    if not install_missing:
        raise ShellNotFoundError(shell)

    distro = detect_distribution(os_release)
    commands = install_commands(distro, Path(shell).name)
    if not commands:
        logger.error("unknown local distribution, can't install shell", shell=shell)
        raise ShellNotFoundError(shell)

    for cmd in commands:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            logger.error("package manager unavailable", command=cmd, err=str(exc))
            raise ShellNotFoundError(shell) from exc
        if result.returncode != 0:
            logger.error(
                "shell install step failed",
                command=cmd,
                output=(result.stdout + result.stderr)[-500:],
            )
            raise ShellNotFoundError(shell)

    path = shutil.which(shell)
    if path is None:
        raise ShellNotFoundError(shell)
    logger.info("shell installed successfully", shell=shell, path=path, distro=distro)
    return path
