"""Command execution utilities for external image tools."""

from __future__ import annotations

import subprocess

from imageset_mirror.logging import get_logger

log = get_logger(source=__name__)


def run_checked_command(command, input_text=None):
    """Run a command and raise RuntimeError if it fails."""
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            input=input_text,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError as exc:
        raise RuntimeError(f"Command not found: {command[0]}") from exc
    if result.returncode != 0:
        stderr = result.stderr.strip()
        stdout = result.stdout.strip()
        message = stderr or stdout or "Command failed"
        raise RuntimeError(f"Command failed ({' '.join(command)}): {message}")
    return result.stdout
