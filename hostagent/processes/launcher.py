"""How an assembled command line becomes an argv.

``shell`` hands the line to ``<shell> -c``. ``python`` treats the line as
Python source and runs it unbuffered, so output reaches the pipes line by line.
"""

from __future__ import annotations

import os

SHELL = "shell"
PYTHON = "python"
LAUNCHERS = (SHELL, PYTHON)


def assemble_command(command: str, args: list[str] | None = None) -> str:
    """Join command and args with single spaces.

    Nothing is escaped: callers are responsible for what they send.
    """
    return " ".join([command, *(args or [])])


def build_argv(
    command_line: str,
    launcher: str = SHELL,
    shell: str = "/bin/sh",
    python_executable: str = "python3",
) -> list[str]:
    if launcher == SHELL:
        return [shell, "-c", command_line]
    if launcher == PYTHON:
        return [python_executable, "-u", "-c", command_line]
    raise ValueError(f"Unknown launcher {launcher!r} (expected one of {', '.join(LAUNCHERS)})")


def build_env(launcher: str, env: dict[str, str] | None = None) -> dict[str, str]:
    """Inherit the agent's environment, overlay ``env``."""
    proc_env = {**os.environ, **(env or {})}
    if launcher == PYTHON:
        proc_env["PYTHONUNBUFFERED"] = "1"
    return proc_env
