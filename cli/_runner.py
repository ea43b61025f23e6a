"""
Shared CLI runner helper.

Runs a command in a subprocess and exits with its return code, so every
CLI wrapper behaves the same way.
"""

from __future__ import annotations

import subprocess
from collections.abc import Sequence


def run(cmd: Sequence[str]) -> None:
    """
    Run a command and propagate its exit code to the caller.

    Args:
        cmd: Command and arguments to execute

    Example:
        >>> run([sys.executable, "-m", "pytest", "-q"])
    """
    result = subprocess.run(cmd)
    raise SystemExit(result.returncode)
