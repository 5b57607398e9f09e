"""Derive the child process for a session."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

from shellgate.types import ProcessSpec, Session


def merge_environment(base: Mapping[str, str], entries: Iterable[str]) -> dict[str, str]:
    """Apply ``KEY=VALUE`` entries over ``base``; later entries win.

    Entries without ``=`` or with an empty key are ignored.
    """
    env = dict(base)
    for entry in entries:
        key, sep, value = entry.partition("=")
        if not sep or not key:
            continue
        env[key] = value
    return env


def build_process_spec(
    session: Session,
    shell: str,
    environ: Mapping[str, str] | None = None,
) -> ProcessSpec:
    """Build the process for ``session`` under ``shell``.

    An empty command starts the shell interactively with no arguments.
    Anything else runs as ``<shell> -c <raw command>``; the command string is
    handed to the shell untouched, splitting and quoting are its business.
    """
    base = os.environ if environ is None else environ
    env = merge_environment(base, session.environment)

    if not session.raw_command:
        return ProcessSpec(executable=shell, env=env)
    return ProcessSpec(executable=shell, args=("-c", session.raw_command), env=env)
