"""Shared utility functions for dna-scaffold.

Provides async command execution, JSON loading, name helpers, Rich-based
console output and the per-target advisory lock used by the CLI.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import os
import re
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from dna_scaffold.errors import ConcurrentGenerationError

console = Console()

# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


async def run_command(
    argv: list[str],
    cwd: str | Path | None = None,
    timeout: int = 120,
    capture: bool = True,
) -> tuple[int, str, str]:
    """Run an executable (never through a shell) and wait for it.

    Args:
        argv: Executable followed by its arguments.
        cwd: Working directory for the child process.
        timeout: Seconds before the process is killed and ``-1`` returned.
        capture: Collect stdout/stderr; with ``False`` the child writes
            straight to the terminal and both strings come back empty.

    Returns:
        A ``(returncode, stdout, stderr)`` tuple with the output stripped.

    Raises:
        OSError: If the executable cannot be spawned (e.g. not installed).
    """
    pipe = asyncio.subprocess.PIPE if capture else None
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdout=pipe,
        stderr=pipe,
        cwd=str(cwd) if cwd else None,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return -1, "", f"{argv[0]} timed out after {timeout}s"

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
    return process.returncode or 0, stdout, stderr


# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary project name to a safe directory/package slug.

    Examples::

        sanitize_name("My Cool App") -> "my-cool-app"
        sanitize_name("  2FA (TOTP)  ") -> "2fa-totp"
    """
    result = re.sub(r"[^a-zA-Z0-9_-]", "-", name.strip().lower())
    result = re.sub(r"-+", "-", result)
    return result.strip("-")


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file whose top level is an object.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"_root": data}
    return data


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


STAGE_NAMES: dict[int, str] = {
    1: "VALIDATE",
    2: "PREPARE",
    3: "GENERATE",
    4: "INSTALL",
    5: "VCS",
    6: "FINALIZE",
}

STAGE_COLORS: dict[int, str] = {
    1: "bright_cyan",
    2: "bright_green",
    3: "bright_yellow",
    4: "bright_magenta",
    5: "bright_blue",
    6: "bright_white",
}


def print_stage_header(stage: int, message: str = "") -> None:
    """Print a rule with the stage number and name, coloured per stage."""
    color = STAGE_COLORS.get(stage, "white")
    name = STAGE_NAMES.get(stage, "STAGE")
    title = f"[bold {color}] {stage}/{len(STAGE_NAMES)} {name} [/bold {color}]"
    if message:
        title += f" [dim]{message}[/dim]"
    console.print(Rule(title, style=color))


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")


def print_debug(message: str, verbose: bool) -> None:
    if verbose:
        console.print(f"[dim]{message}[/dim]")


# ---------------------------------------------------------------------------
# Advisory path lock
# ---------------------------------------------------------------------------


def lock_path_for(target: str | Path, lock_dir: str | Path) -> Path:
    """Return the lock file that guards generation into *target*."""
    resolved = str(Path(target).expanduser().resolve())
    digest = hashlib.sha1(resolved.encode("utf-8")).hexdigest()[:16]
    return Path(lock_dir) / f"{digest}.lock"


@contextlib.asynccontextmanager
async def path_lock(target: str | Path, lock_dir: str | Path) -> AsyncIterator[Path]:
    """Hold an exclusive advisory lock on *target* for the duration of a run.

    The lock is an ``O_EXCL`` file under *lock_dir* named after the resolved
    target path, so two processes generating into the same directory cannot
    both enter.

    Raises:
        ConcurrentGenerationError: If the lock is already held.
    """
    lock_file = lock_path_for(target, lock_dir)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        raise ConcurrentGenerationError(target, lock_file) from None

    try:
        os.write(fd, f"{os.getpid()}\n{Path(target)}\n".encode("utf-8"))
    finally:
        os.close(fd)

    try:
        yield lock_file
    finally:
        lock_file.unlink(missing_ok=True)
