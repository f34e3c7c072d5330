"""Pre-generation checks: project name, target path, permissions and tools.

Nothing in here mutates the filesystem.  Every check raises a
``ValidationError`` subclass (or ``InsufficientPermissionsError``) on the
first problem it finds.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from dna_scaffold.collaborators import CommandRunner
from dna_scaffold.errors import (
    InsufficientPermissionsError,
    MissingSystemToolError,
    UnsupportedToolVersionError,
    ValidationError,
)

PROJECT_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")
PROJECT_NAME_MAX_LENGTH = 214

RESERVED_NAMES = frozenset({
    "node_modules", "npm", "yarn", "pnpm", "bun",
    "src", "lib", "test", "tests", "dist", "build",
    "public", "static", "assets", ".git", ".env",
    "package", "packages", "config", "scripts",
})

INVALID_PATH_CHARS = re.compile(r'[<>:"|?*]')

# Tools every project of a framework needs, checked with ``<tool> --version``.
FRAMEWORK_TOOLS: dict[str, list[str]] = {
    "flutter": ["flutter"],
    "tauri": ["cargo", "rustc"],
}

_VERSION_RE = re.compile(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def validate_project_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationError(
            "Project name is required",
            code="INVALID_PROJECT_NAME",
            suggestion="Pass a project name with --name",
        )
    if len(name) > PROJECT_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Project name is longer than {PROJECT_NAME_MAX_LENGTH} characters",
            code="INVALID_PROJECT_NAME",
            name=name,
        )
    if not PROJECT_NAME_RE.match(name):
        raise ValidationError(
            f"Invalid project name: {name!r}",
            code="INVALID_PROJECT_NAME",
            suggestion=(
                "Project name must start with a letter and contain only letters, "
                "numbers, hyphens and underscores"
            ),
            name=name,
        )
    if name.lower() in RESERVED_NAMES:
        raise ValidationError(
            f"{name!r} is a reserved name and cannot be used",
            code="RESERVED_PROJECT_NAME",
            suggestion="Choose a different project name",
            name=name,
        )


def validate_project_path(path: str | Path) -> Path:
    """Reject relative paths, ``..`` segments and invalid characters.

    Returns the path as a ``Path``.  Existence is not checked here.
    """
    raw = str(path)
    candidate = Path(raw)
    if ".." in candidate.parts:
        raise ValidationError(
            "Project path cannot contain relative path traversal (..)",
            code="UNSAFE_PROJECT_PATH",
            suggestion='Use an absolute path without ".." segments',
            path=raw,
        )
    if INVALID_PATH_CHARS.search(raw):
        raise ValidationError(
            "Project path contains invalid characters",
            code="INVALID_PATH_CHARACTERS",
            suggestion='Remove any of <>:"|?* from the path',
            path=raw,
        )
    if not candidate.is_absolute():
        raise ValidationError(
            f"Project path must be absolute: {raw}",
            code="RELATIVE_PROJECT_PATH",
            path=raw,
        )
    return candidate


def check_backup_root_outside(path: Path, backup_root: Path) -> None:
    """Reject a project *path* that is the backup root or one of its ancestors.

    Replacing such a target would copy or delete the transaction's own
    backup storage.
    """
    target = path.expanduser().resolve()
    backups = backup_root.expanduser().resolve()
    if target == backups or target in backups.parents:
        raise ValidationError(
            f"Project path {path} contains the backup directory {backup_root}",
            code="TARGET_CONTAINS_BACKUP_DIR",
            suggestion="Generate into another directory or point DNA_BACKUP_DIR outside it",
            path=str(path),
            backup_dir=str(backup_root),
        )


def nearest_existing_ancestor(path: Path) -> Path:
    current = path
    while not current.exists() and current != current.parent:
        current = current.parent
    return current


def check_write_access(path: Path) -> None:
    """Raise ``InsufficientPermissionsError`` unless *path* (or its nearest
    existing ancestor) is a writable directory."""
    anchor = nearest_existing_ancestor(path)
    if anchor.is_file():
        anchor = anchor.parent
    if not os.access(anchor, os.W_OK):
        raise InsufficientPermissionsError(anchor, "write")


# ---------------------------------------------------------------------------
# Tool versions
# ---------------------------------------------------------------------------


def parse_version(text: str) -> tuple[int, int, int] | None:
    """Extract the first ``major[.minor[.patch]]`` found in *text*.

    Examples::

        parse_version("v18.17.1")                  -> (18, 17, 1)
        parse_version("git version 2.39.2")        -> (2, 39, 2)
        parse_version("cargo 1.75.0 (1d8b05cdd)")  -> (1, 75, 0)
        parse_version("unknown")                   -> None
    """
    match = _VERSION_RE.search(text or "")
    if match is None:
        return None
    return tuple(int(part or 0) for part in match.groups())  # type: ignore[return-value]


def version_satisfies(current: str, required: str) -> bool:
    """``True`` when *current* is at least *required*.

    *required* may carry a ``>=`` or ``^`` prefix.  An unparsable current
    version is treated as satisfying the requirement.
    """
    want = parse_version(required.lstrip(">=^~ "))
    have = parse_version(current)
    if want is None or have is None:
        return True
    return have >= want


async def check_tool(runner: CommandRunner, tool: str, minimum: str | None = None) -> str:
    """Run ``<tool> --version`` and return its output.

    Raises:
        MissingSystemToolError: If the tool cannot be run.
        UnsupportedToolVersionError: If it is older than *minimum*.
    """
    try:
        result = await runner.run(tool, ["--version"], output_mode="pipe")
    except OSError as exc:
        raise MissingSystemToolError(tool, str(exc)) from exc
    if result.returncode != 0:
        raise MissingSystemToolError(tool, result.stderr or f"exit code {result.returncode}")

    version_text = result.stdout.strip() or result.stderr.strip()
    if minimum and not version_satisfies(version_text, minimum):
        raise UnsupportedToolVersionError(tool, version_text, minimum)
    return version_text


async def check_system_requirements(
    runner: CommandRunner,
    requirements: dict[str, str | None],
    framework: str = "",
) -> dict[str, str]:
    """Check every required tool and return ``{tool: version output}``.

    *requirements* maps tool names to a minimum version (or ``None``); the
    framework's own tools from ``FRAMEWORK_TOOLS`` are added without a
    minimum.
    """
    wanted: dict[str, str | None] = dict(requirements)
    for tool in FRAMEWORK_TOOLS.get(framework, []):
        wanted.setdefault(tool, None)

    found: dict[str, str] = {}
    for tool, minimum in wanted.items():
        found[tool] = await check_tool(runner, tool, minimum)
    return found
