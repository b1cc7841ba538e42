from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence

from core.errors import HarnessError

DEFAULT_TOOL = "pvsadm"
SYNC_SUBCOMMAND = ("image", "sync")

_logger = logging.getLogger("image-sync.cli")


class CommandResult(NamedTuple):
    status: int
    stdout: str
    stderr: str


def run_cmd(tool: str, args: Sequence[str] = (), timeout: Optional[float] = None) -> CommandResult:
    cmd = [tool, *args]
    _logger.info("Running: %s", " ".join(cmd))
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise HarnessError(f"Command not found: {tool}") from e
    except subprocess.TimeoutExpired as e:
        raise HarnessError(f"Command timed out after {timeout}s: {' '.join(cmd)}") from e
    return CommandResult(proc.returncode, proc.stdout or "", proc.stderr or "")


def run_sync_cmd(*args: str, tool: str = DEFAULT_TOOL, timeout: Optional[float] = None) -> CommandResult:
    """Run `<tool> image sync <args...>`."""
    return run_cmd(tool, [*SYNC_SUBCOMMAND, *args], timeout=timeout)


HELP_MARKER = "Examples:"
MISSING_SPEC_FLAG_MESSAGE = '"spec-file" not set'
MISSING_FILE_MESSAGE = "no such file or directory"
NONEXISTENT_SPEC_FILE = "fakefile.yaml"


def check_cli_contract(tool: str = DEFAULT_TOOL, timeout: Optional[float] = 60) -> List[str]:
    """Run the argument-handling checks of `image sync`; return a list of violations."""
    problems: List[str] = []

    r = run_sync_cmd("--help", tool=tool, timeout=timeout)
    if r.status != 0:
        problems.append(f"--help exited with status {r.status}")
    if r.stderr:
        problems.append("--help wrote to stderr")
    if HELP_MARKER not in r.stdout:
        problems.append(f"--help output does not contain {HELP_MARKER!r}")

    r = run_sync_cmd(tool=tool, timeout=timeout)
    if r.status == 0:
        problems.append("missing --spec-file exited with status 0")
    if MISSING_SPEC_FLAG_MESSAGE not in r.stderr:
        problems.append(f"missing --spec-file stderr does not contain {MISSING_SPEC_FLAG_MESSAGE!r}")

    r = run_sync_cmd("--spec-file", NONEXISTENT_SPEC_FILE, tool=tool, timeout=timeout)
    if r.status == 0:
        problems.append("nonexistent spec file exited with status 0")
    if MISSING_FILE_MESSAGE not in r.stderr:
        problems.append(f"nonexistent spec file stderr does not contain {MISSING_FILE_MESSAGE!r}")

    return problems


def sync_with_spec_file(spec_file: str | Path, tool: str = DEFAULT_TOOL,
                        timeout: Optional[float] = None) -> CommandResult:
    return run_sync_cmd("--spec-file", str(spec_file), tool=tool, timeout=timeout)
