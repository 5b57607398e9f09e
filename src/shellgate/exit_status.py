"""Exit classification: map how a child ended to the status sent to the client."""

from __future__ import annotations

from shellgate.types import ExitOutcome


def translate(returncode: int | None, error: BaseException | None = None) -> ExitOutcome:
    """Classify a wait result.

    ``returncode`` follows asyncio's convention (negative = killed by that
    signal). A wait that raised, or left no return code, is reported as 1
    unless the process is known to have exited 0.
    """
    if error is not None or returncode is None:
        return ExitOutcome.exited(0 if returncode == 0 else 1, error=error)

    if returncode < 0:
        return ExitOutcome.signaled(-returncode)

    return ExitOutcome.exited(returncode)


def describe_start_failure(error: BaseException) -> str:
    """Client-facing message for a process that never started.

    Only the OS reason and the path are exposed, never a traceback.
    """
    if isinstance(error, OSError) and error.strerror:
        if error.filename:
            return f"{error.strerror}: {error.filename}"
        return error.strerror
    return "failed to start command"
