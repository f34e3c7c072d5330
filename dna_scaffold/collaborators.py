"""Interfaces the generation pipeline depends on, plus default implementations.

The pipeline never touches templates, subprocesses or the terminal directly;
it talks to a ``TemplateProvider``, a ``CommandRunner`` and a
``ProgressReporter``.  Tests swap these for mocks.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

from pydantic import BaseModel

from dna_scaffold.utils import STAGE_NAMES, console, print_warning, run_command

if TYPE_CHECKING:
    from dna_scaffold.config import GenerationConfig
    from dna_scaffold.scaffolder.models import RenderedFile, TemplateMetadata


OutputMode = Literal["pipe", "inherit"]


class CommandResult(BaseModel):
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout/stderr, as shown to the user on failure."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class TemplateProvider(Protocol):
    def get_template(self, template_id: str) -> "TemplateMetadata | None": ...

    def list_templates(self) -> "list[TemplateMetadata]": ...

    async def generate_files(self, config: "GenerationConfig") -> "list[RenderedFile]": ...


@runtime_checkable
class CommandRunner(Protocol):
    async def run(
        self,
        command: str,
        args: list[str],
        *,
        cwd: str | Path | None = None,
        output_mode: OutputMode = "pipe",
        timeout: int = 120,
    ) -> CommandResult:
        """Run *command* with *args*.

        Raises:
            OSError: If the executable cannot be spawned.
        """
        ...


@runtime_checkable
class ProgressReporter(Protocol):
    def update(self, stage_index: int, message: str) -> None: ...


# ---------------------------------------------------------------------------
# Default implementations
# ---------------------------------------------------------------------------


class SubprocessRunner:
    """``CommandRunner`` backed by :func:`dna_scaffold.utils.run_command`."""

    async def run(
        self,
        command: str,
        args: list[str],
        *,
        cwd: str | Path | None = None,
        output_mode: OutputMode = "pipe",
        timeout: int = 120,
    ) -> CommandResult:
        returncode, stdout, stderr = await run_command(
            [command, *args],
            cwd=cwd,
            timeout=timeout,
            capture=output_mode == "pipe",
        )
        return CommandResult(returncode=returncode, stdout=stdout, stderr=stderr)


class ConsoleProgressReporter:
    """Prints one dim line per progress update on the shared Rich console."""

    def update(self, stage_index: int, message: str) -> None:
        name = STAGE_NAMES.get(stage_index, "STAGE")
        console.print(f"  [dim]\\[{stage_index}/{len(STAGE_NAMES)} {name}][/dim] {message}")


class NullProgressReporter:
    def update(self, stage_index: int, message: str) -> None:
        return None


def safe_update(reporter: ProgressReporter, stage_index: int, message: str) -> None:
    """Forward a progress update; a failing reporter never breaks a run."""
    try:
        reporter.update(stage_index, message)
    except Exception as exc:
        print_warning(f"Progress reporter failed: {exc}")
