"""Blocking execution of the external LuaJIT build."""

from __future__ import annotations

import shlex
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from luajit_src.errors import ExternalProcessError


def run_command(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    env_delta: Mapping[str, str] | None = None,
    description: str,
) -> None:
    """Run ``argv`` with stdio passed through; any non-zero exit is fatal."""
    delta = dict(env_delta or {})
    command = list(argv)
    context = {
        "operation": "run_command",
        "command": shlex.join(command),
        "cwd": str(cwd),
        "env": " ".join(f"{key}={shlex.quote(value)}" for key, value in sorted(delta.items())),
    }
    try:
        completed = subprocess.run(command, cwd=str(cwd), env={**env, **delta}, check=False)
    except OSError as exc:
        raise ExternalProcessError(
            f"Error {description}: cannot launch command.",
            hint="Check that the build driver is installed and on PATH.",
            context={**context, "error": str(exc)},
        ) from exc

    if completed.returncode != 0:
        raise ExternalProcessError(
            f"Error {description}.",
            hint="Inspect the build output above for the failing step.",
            context={**context, "exit_status": _describe_status(completed.returncode)},
        )


def _describe_status(returncode: int) -> str:
    if returncode < 0:
        return f"terminated by signal {-returncode}"
    return f"exit code {returncode}"
