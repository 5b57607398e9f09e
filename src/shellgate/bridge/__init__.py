"""Bridges — wire a session's I/O to a spawned child process.

This package is split into focused submodules:
  _io    — copy loops and asyncio streams over raw descriptors
  _pty   — interactive sessions on a pseudo-terminal, live resizing
  _pipe  — non-interactive sessions over stdin/stdout/stderr pipes
"""

from shellgate.bridge._pipe import run_pipe_bridge
from shellgate.bridge._pty import PtyAllocationError, run_pty_bridge, set_winsize

__all__ = [
    "PtyAllocationError",
    "run_pipe_bridge",
    "run_pty_bridge",
    "set_winsize",
]
