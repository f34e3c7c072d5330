"""dna-scaffold generation pipeline.

Implements the 6-stage project generation pipeline:

Stage 1: VALIDATE -- Resolve the template, check name, path, variables and tools.
Stage 2: PREPARE  -- Open a transaction and create (or replace) the target directory.
Stage 3: GENERATE -- Render the template and record every file it produces.
Stage 4: INSTALL  -- Run the package manager, retrying with exponential backoff.
Stage 5: VCS      -- git init, add, initial commit (failures only degrade the result).
Stage 6: FINALIZE -- Write the manifest, verify the files, commit the transaction.

Every filesystem mutation from stage 2 onwards goes through the
``TransactionLog``; a failure in stages 2, 3, 5 or 6 rolls the whole run
back.  Stage 4 failures leave the generated files in place.

Usage::

    dna-scaffold react-app ./my-app
    dna-scaffold python-cli ./tool --module tests --skip-git
    dna-scaffold --list-templates
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from collections.abc import Awaitable
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, TypeVar

from pydantic import BaseModel, Field
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from dna_scaffold import __version__
from dna_scaffold.collaborators import (
    CommandRunner,
    ConsoleProgressReporter,
    NullProgressReporter,
    ProgressReporter,
    SubprocessRunner,
    TemplateProvider,
    safe_update,
)
from dna_scaffold.config import GenerationConfig, GenerationOptions, Settings
from dna_scaffold.errors import (
    DependencyInstallError,
    DirectoryExistsError,
    EmergencyCleanupError,
    FilesystemError,
    PackageManagerNotFoundError,
    PipelineError,
    RollbackFailedError,
    ScaffoldError,
    TemplateNotFoundError,
    ValidationError,
)
from dna_scaffold.rollback import RollbackReport, TransactionLog
from dna_scaffold.rollback.fsops import path_exists, remove_path
from dna_scaffold.scaffolder import RenderedFile, TemplateMetadata, TemplateRegistry
from dna_scaffold.utils import (
    STAGE_NAMES,
    console,
    format_duration,
    path_lock,
    print_debug,
    print_error,
    print_stage_header,
    print_success,
    print_summary_table,
    print_warning,
    sanitize_name,
)
from dna_scaffold.validation import (
    check_backup_root_outside,
    check_system_requirements,
    check_write_access,
    validate_project_name,
    validate_project_path,
)

T = TypeVar("T")

MANIFEST_VERSION = "0.1.0"
GENERATOR_NAME = "dna-scaffold"

# Arguments passed to each package manager to install a project's dependencies.
INSTALL_COMMANDS: dict[str, list[str]] = {
    "npm": ["install"],
    "yarn": ["install"],
    "pnpm": ["install"],
    "bun": ["install"],
    "pip": ["install", "-e", "."],
    "poetry": ["install"],
    "uv": ["sync"],
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class VCSResult(BaseModel):
    """Outcome of the version-control stage.  Never raised, only returned."""

    initialized: bool = False
    committed: bool = False
    skipped: bool = False
    reason: str = ""


class GenerationResult(BaseModel):
    project_path: Path
    template: str
    files: list[str] = Field(default_factory=list)
    manifest_path: Path | None = None
    backup_path: Path | None = Field(
        default=None, description="Where a replaced directory was moved to"
    )
    dependencies_installed: bool = False
    install_error: str | None = None
    vcs: VCSResult = Field(default_factory=VCSResult)
    dry_run: bool = False
    duration: float = 0.0
    transaction_id: str | None = None


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class GenerationPipeline:
    """Drives one project generation through the six stages.

    Stages must be called in order (``run`` does that); each stage method is
    public so callers and tests can drive the pipeline step by step.
    ``rollback`` may be called at any point.

    Attributes:
        config: What to generate and where.
        options: Behaviour switches for this run.
        transaction_id: The open transaction, ``None`` before stage 2, in
            dry-run mode, and after commit or rollback.
        files: Project-relative paths written by stage 3.
    """

    def __init__(
        self,
        config: GenerationConfig,
        transaction_log: TransactionLog,
        templates: TemplateProvider,
        *,
        options: GenerationOptions | None = None,
        runner: CommandRunner | None = None,
        reporter: ProgressReporter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.config = config
        self.options = options or GenerationOptions()
        self.log = transaction_log
        self.templates = templates
        self.runner = runner or SubprocessRunner()
        self.settings = settings or Settings()
        if reporter is None:
            reporter = ConsoleProgressReporter() if self.options.progress else NullProgressReporter()
        self.reporter = reporter

        self.template: TemplateMetadata | None = None
        self.transaction_id: str | None = None
        self.files: list[str] = []
        self.backup_path: Path | None = None
        self._stage = 0
        self._committed_id: str | None = None
        self._git_initialized = False
        self._dependencies_installed = False
        self._install_error: str | None = None
        self._vcs = VCSResult(skipped=True, reason="not run")

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    async def run(self, continue_on_install_failure: bool = False) -> GenerationResult:
        """Run all six stages, rolling back on failure.

        Args:
            continue_on_install_failure: Keep going (and commit) when
                dependency installation fails; the error is recorded in the
                result instead of being raised.

        Raises:
            ScaffoldError: The first failure.  When the rollback it triggered
                failed too, a ``RollbackFailedError`` whose ``cause`` is that
                failure.
        """
        started = time.monotonic()
        mode = " [yellow](dry run)[/yellow]" if self.options.dry_run else ""
        console.print(
            Panel(
                f"[bold bright_cyan]dna-scaffold {__version__}[/bold bright_cyan]{mode}\n"
                f"Project  : {self.config.name}\n"
                f"Template : {self.config.template}\n"
                f"Output   : {self.config.path}",
                title="[bold]Generate Project[/bold]",
                border_style="bright_cyan",
            )
        )

        await self.validate_configuration()
        await self._guarded(self.prepare_directory())
        await self._guarded(self.generate_files())

        try:
            await self.install_dependencies()
        except DependencyInstallError as exc:
            if not continue_on_install_failure:
                raise
            self._install_error = exc.message
            print_warning(f"{exc.message}. Continuing without dependencies.")

        await self._guarded(self.initialize_vcs())
        result = await self._guarded(self.finalize())
        result.duration = time.monotonic() - started
        self._print_summary(result)
        return result

    async def _guarded(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except Exception as exc:
            await self.rollback(cause=exc)
            raise

    # ------------------------------------------------------------------
    # Stage 1: VALIDATE
    # ------------------------------------------------------------------

    async def validate_configuration(self) -> TemplateMetadata:
        """Check the request without touching the filesystem.

        Resolves the template and fills in the framework and package manager
        it implies when the config left them unset.
        """
        self._enter_stage(1)
        config = self.config

        template = self.templates.get_template(config.template)
        if template is None:
            available = [t.id for t in self.templates.list_templates()]
            raise TemplateNotFoundError(config.template, available)

        validate_project_name(config.name)

        if config.framework and template.framework and config.framework != template.framework:
            raise ValidationError(
                f"Template '{template.id}' is a {template.framework} template, "
                f"not {config.framework}",
                code="FRAMEWORK_MISMATCH",
                suggestion="Drop --framework or pick a template for that framework",
                template=template.id,
                framework=config.framework,
            )

        unknown = [m for m in config.modules if m not in template.modules]
        if unknown:
            raise ValidationError(
                f"Unknown module(s) for '{template.id}': {', '.join(unknown)}",
                code="UNKNOWN_MODULE",
                suggestion=f"Available modules: {', '.join(template.modules) or 'none'}",
                modules=unknown,
            )

        missing = [v for v in template.required_variables if v not in config.variables]
        if missing:
            raise ValidationError(
                f"Missing required variable(s): {', '.join(missing)}",
                code="MISSING_VARIABLES",
                suggestion="Pass them with --var NAME=VALUE",
                variables=missing,
            )

        validate_project_path(config.path)
        check_backup_root_outside(config.path, self.log.backup_root)
        await asyncio.to_thread(check_write_access, config.path)

        updates: dict[str, Any] = {}
        if not config.framework:
            updates["framework"] = template.framework
        if "package_manager" not in config.model_fields_set and template.package_manager:
            updates["package_manager"] = template.package_manager
        if updates:
            self.config = config.model_copy(update=updates)

        await check_system_requirements(
            self.runner, template.system_requirements, self.config.framework
        )

        self.template = template
        self._progress(1, f"Template '{template.id}' ({template.framework or 'generic'}) validated")
        return template

    # ------------------------------------------------------------------
    # Stage 2: PREPARE
    # ------------------------------------------------------------------

    async def prepare_directory(self) -> None:
        """Open the transaction and create the project directory.

        An existing target is only replaced with ``overwrite`` (or an
        interactive confirmation): it is moved aside to
        ``<path>.backup.<timestamp>`` when ``backup`` is on, and deleted
        otherwise.

        Raises:
            DirectoryExistsError: Before any transaction is opened.
        """
        self._enter_stage(2)
        path = self.config.path
        exists = await asyncio.to_thread(path_exists, path)

        overwrite = self.options.overwrite
        if exists and not overwrite and self.options.interactive:
            overwrite = await asyncio.to_thread(
                Confirm.ask,
                f"[yellow]{path} already exists. Overwrite it?[/yellow]",
                default=False,
                console=console,
            )
        if exists and not overwrite:
            raise DirectoryExistsError(path)

        if self.options.dry_run:
            action = "replace" if exists else "create"
            self._progress(2, f"[dry run] Would {action} {path}")
            return

        self.transaction_id = await self.log.start_transaction(
            f"Generate {self.config.name} from {self.config.template}", path
        )
        if exists:
            if self.options.backup:
                stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
                backup = path.with_name(f"{path.name}.backup.{stamp}")
                await self.log.record_file_move(self.transaction_id, path, backup)
                self.backup_path = backup
                print_warning(f"Existing directory moved to {backup}")
            else:
                await self.log.record_deletion(self.transaction_id, path)
                print_warning(f"Existing directory {path} removed (no backup)")

        await self.log.record_directory_creation(self.transaction_id, path)
        if os.name == "posix":
            await asyncio.to_thread(os.chmod, path, 0o755)
        self._progress(2, f"Created {path}")

    # ------------------------------------------------------------------
    # Stage 3: GENERATE
    # ------------------------------------------------------------------

    async def generate_files(self) -> list[str]:
        """Render the template and record every file it produces.

        Returns the project-relative paths written (or, in dry-run mode,
        the paths that would be written).
        """
        self._enter_stage(3)
        rendered = await self.templates.generate_files(self.config)
        targets = [(f, self._target_for(f)) for f in rendered]

        if self.options.dry_run:
            for f, _ in targets:
                self._progress(3, f"[dry run] Would write {f.path}")
            self.files = [f.path for f, _ in targets]
            return list(self.files)

        tx = self._require_transaction("generate")
        await self.log.create_snapshot(tx, "before file generation")

        total = len(targets)
        for index, (f, target) in enumerate(targets, 1):
            await self._write_file(tx, target, f)
            self.files.append(f.path)
            self._progress(3, f"({index}/{total}) {f.path}")

        print_success(f"Generated {total} file(s)")
        return list(self.files)

    def _target_for(self, rendered: RenderedFile) -> Path:
        """Absolute target for a rendered file; rejects paths leaving the project."""
        rel = PurePosixPath(rendered.path)
        root = self.config.path.resolve()
        candidate = (root / rel).resolve()
        if rel.is_absolute() or not candidate.is_relative_to(root) or candidate == root:
            raise FilesystemError(
                f"Template file path escapes the project directory: {rendered.path}",
                code="PATH_OUTSIDE_PROJECT",
                suggestion="Fix the template so every file stays inside the project",
                path=rendered.path,
            )
        return self.config.path.joinpath(*rel.parts)

    async def _write_file(self, tx: str, target: Path, rendered: RenderedFile) -> None:
        if await asyncio.to_thread(target.is_file):
            await self.log.record_file_modification(tx, target, rendered.content)
        else:
            await self.log.record_file_creation(tx, target, rendered.content)
        if rendered.executable and os.name == "posix":
            await asyncio.to_thread(os.chmod, target, 0o755)

    # ------------------------------------------------------------------
    # Stage 4: INSTALL
    # ------------------------------------------------------------------

    async def install_dependencies(self) -> bool:
        """Install dependencies with the configured package manager.

        Returns ``True`` if they were installed, ``False`` if the stage was
        skipped.

        Raises:
            PackageManagerNotFoundError: If the package manager cannot run.
            DependencyInstallError: After ``install.max_attempts`` failures.
        """
        self._enter_stage(4)
        if self.config.skip_install or self.options.dry_run:
            reason = "dry run" if self.options.dry_run else "--skip-install"
            self._progress(4, f"Dependency installation skipped ({reason})")
            return False

        manager = self.config.package_manager
        await self._check_package_manager(manager)

        policy = self.settings.install
        args = INSTALL_COMMANDS.get(manager, ["install"])
        output_mode = "pipe" if self.options.progress else "inherit"
        exit_code, output = -1, ""

        for attempt in range(1, policy.max_attempts + 1):
            self._progress(4, f"{manager} {' '.join(args)} (attempt {attempt}/{policy.max_attempts})")
            try:
                result = await self.runner.run(
                    manager,
                    args,
                    cwd=self.config.path,
                    output_mode=output_mode,
                    timeout=policy.timeout,
                )
            except OSError as exc:
                exit_code, output = -1, str(exc)
            else:
                if result.ok:
                    self._dependencies_installed = True
                    print_success(f"Dependencies installed with {manager}")
                    return True
                exit_code, output = result.returncode, result.output

            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                print_warning(
                    f"Install attempt {attempt} failed (exit code {exit_code}); "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        raise DependencyInstallError(manager, exit_code, output, attempts=policy.max_attempts)

    async def _check_package_manager(self, manager: str) -> None:
        try:
            result = await self.runner.run(manager, ["--version"], output_mode="pipe")
        except OSError as exc:
            raise PackageManagerNotFoundError(manager, str(exc)) from exc
        if not result.ok:
            raise PackageManagerNotFoundError(manager, result.output)

    # ------------------------------------------------------------------
    # Stage 5: VCS
    # ------------------------------------------------------------------

    async def initialize_vcs(self) -> VCSResult:
        """Initialise a git repository with an initial commit.

        Never raises: every problem is reported as a warning and reflected
        in the returned ``VCSResult``.
        """
        self._enter_stage(5)
        if self.config.skip_git or self.options.dry_run:
            reason = "dry run" if self.options.dry_run else "--skip-git"
            self._vcs = VCSResult(skipped=True, reason=reason)
            self._progress(5, f"Git initialisation skipped ({reason})")
            return self._vcs

        path = self.config.path
        if await asyncio.to_thread((path / ".git").exists):
            self._vcs = VCSResult(skipped=True, reason="already a git repository")
            return self._vcs

        if not await self._git(["--version"]):
            self._vcs = VCSResult(skipped=True, reason="git is not available")
            print_warning("git not found; skipping repository initialisation")
            return self._vcs

        if not await self._git(["init"]):
            self._vcs = VCSResult(reason="git init failed")
            return self._vcs
        self._git_initialized = True

        message = self.settings.vcs.commit_message.format(template=self.config.template)
        committed = await self._git(["add", "."]) and await self._git(["commit", "-m", message])
        self._vcs = VCSResult(
            initialized=True,
            committed=committed,
            reason="" if committed else "initial commit failed",
        )
        if committed:
            self._progress(5, "Git repository initialised with an initial commit")
        return self._vcs

    async def _git(self, args: list[str]) -> bool:
        try:
            result = await self.runner.run(
                "git",
                args,
                cwd=self.config.path,
                output_mode="pipe",
                timeout=self.settings.vcs.timeout,
            )
        except OSError as exc:
            print_warning(f"git {args[0]} failed: {exc}")
            return False
        if not result.ok:
            print_warning(f"git {args[0]} failed: {result.output or result.returncode}")
            return False
        return True

    # ------------------------------------------------------------------
    # Stage 6: FINALIZE
    # ------------------------------------------------------------------

    async def finalize(self) -> GenerationResult:
        """Write the manifest, verify the generated files and commit."""
        self._enter_stage(6)
        path = self.config.path
        if self.options.dry_run:
            self._progress(6, f"[dry run] Would write {self.settings.manifest_name}")
            return self._result(manifest_path=None)

        tx = self._require_transaction("finalize")
        manifest_path = path / self.settings.manifest_name
        content = json.dumps(self.manifest(), indent=2) + "\n"
        if await asyncio.to_thread(manifest_path.is_file):
            await self.log.record_file_modification(tx, manifest_path, content)
        else:
            await self.log.record_file_creation(tx, manifest_path, content)

        missing = [f for f in self.files if not (path / f).exists()]
        for rel in missing:
            print_warning(f"Generated file is missing: {rel}")

        await self.log.commit_transaction(tx)
        self._committed_id = tx
        self.transaction_id = None
        self._progress(6, f"Wrote {manifest_path.name} and committed")
        return self._result(manifest_path=manifest_path)

    def manifest(self) -> dict[str, Any]:
        """The ``dna.config.json`` document describing this project."""
        return {
            "name": self.config.name,
            "template": self.config.template,
            "framework": self.config.framework,
            "modules": list(self.config.modules),
            "generated": datetime.now(timezone.utc).isoformat(),
            "version": MANIFEST_VERSION,
            "generator": {"name": GENERATOR_NAME, "version": __version__},
        }

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def rollback(self, cause: BaseException | None = None) -> RollbackReport | None:
        """Undo everything this run did to the filesystem.

        A no-op in dry-run mode or when no transaction is open.  If the
        transaction log cannot undo every operation, the project directory
        is removed outright and ``RollbackFailedError`` is raised either way.

        Raises:
            RollbackFailedError: With ``cause`` set to *cause*, and
                ``emergency_cleanup`` telling whether the directory was removed.
        """
        if self.options.dry_run or self.transaction_id is None:
            return None

        tx = self.transaction_id
        path = self.config.path
        print_warning("Rolling back project generation...")
        try:
            if self._git_initialized:
                await asyncio.to_thread(remove_path, path / ".git")
                self._git_initialized = False
            report = await self.log.rollback_transaction(tx)
        except (RollbackFailedError, OSError) as exc:
            print_error(f"Rollback failed: {exc}")
            undone = exc.undone if isinstance(exc, RollbackFailedError) else []
            failed = exc.failed if isinstance(exc, RollbackFailedError) else []
            unrestored = list(exc.unrestored_paths) if isinstance(exc, RollbackFailedError) else [path]
            if self.backup_path is not None and self.backup_path.exists():
                unrestored.append(self.backup_path)

            try:
                await self.log.emergency_cleanup(path)
                cleaned = True
                print_warning("Emergency cleanup completed")
            except EmergencyCleanupError as cleanup_exc:
                cleaned = False
                print_error(str(cleanup_exc))

            self.transaction_id = None
            raise RollbackFailedError(
                tx,
                undone=undone,
                failed=failed,
                unrestored_paths=unrestored,
                cause=cause,
                emergency_cleanup=cleaned,
            ) from (cause or exc)

        self.transaction_id = None
        for warning in report.warnings:
            print_debug(warning, self.settings.verbose)
        print_success(f"Rollback completed ({len(report.undone)} operation(s) undone)")
        return report

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter_stage(self, index: int) -> None:
        name = STAGE_NAMES[index].lower()
        if index != self._stage + 1:
            if self._stage + 1 in STAGE_NAMES:
                expected = f"expected {STAGE_NAMES[self._stage + 1].lower()}"
            else:
                expected = "every stage has already run"
            raise PipelineError(name, f"called out of order ({expected})")
        self._stage = index
        print_stage_header(index)

    def _require_transaction(self, stage: str) -> str:
        if self.transaction_id is None:
            raise PipelineError(stage, "no open transaction")
        return self.transaction_id

    def _progress(self, stage_index: int, message: str) -> None:
        if self.options.progress:
            safe_update(self.reporter, stage_index, message)

    def _result(self, manifest_path: Path | None) -> GenerationResult:
        return GenerationResult(
            project_path=self.config.path,
            template=self.config.template,
            files=list(self.files),
            manifest_path=manifest_path,
            backup_path=self.backup_path,
            dependencies_installed=self._dependencies_installed,
            install_error=self._install_error,
            vcs=self._vcs,
            dry_run=self.options.dry_run,
            transaction_id=self._committed_id,
        )

    def _print_summary(self, result: GenerationResult) -> None:
        if result.vcs.committed:
            vcs = "initialised"
        else:
            vcs = result.vcs.reason or "skipped"
        data = {
            "Project": str(result.project_path),
            "Template": result.template,
            "Files": str(len(result.files)),
            "Dependencies": "installed" if result.dependencies_installed else (
                result.install_error or "skipped"
            ),
            "Git": vcs,
            "Duration": format_duration(result.duration),
        }
        if result.backup_path:
            data["Previous directory"] = str(result.backup_path)
        title = "Dry Run Summary" if result.dry_run else "Project Generated"
        print_summary_table(data, title=title)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _parse_variables(pairs: list[str]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValidationError(
                f"Invalid variable: {pair!r}",
                code="INVALID_VARIABLE",
                suggestion="Use --var NAME=VALUE",
            )
        variables[key.strip()] = value
    return variables


def _print_templates(registry: TemplateRegistry) -> None:
    table = Table(title="Available Templates", show_header=True, header_style="bold cyan")
    table.add_column("ID", no_wrap=True)
    table.add_column("Category", style="dim")
    table.add_column("Framework")
    table.add_column("Modules")
    table.add_column("Description")
    for t in registry.list_templates():
        table.add_row(t.id, t.category, t.framework, ", ".join(t.modules), t.description)
    console.print(table)


def _report_error(exc: ScaffoldError) -> None:
    console.print(f"[bold red]Error:[/bold red] {exc.message}")
    if isinstance(exc, RollbackFailedError) and exc.unrestored_paths:
        console.print("[yellow]Paths that need manual cleanup:[/yellow]")
        for p in exc.unrestored_paths:
            console.print(f"  - {p}")
    elif exc.suggestion:
        console.print(f"[dim]{exc.suggestion}[/dim]")


async def _generate(
    pipeline: GenerationPipeline,
    log: TransactionLog,
    settings: Settings,
) -> GenerationResult:
    if settings.durable_journal:
        for report in await log.recover():
            print_warning(
                f"Recovered transaction {report.transaction_id}: "
                f"{len(report.undone)} operation(s) undone"
            )
    async with path_lock(pipeline.config.path, settings.locks_dir):
        return await pipeline.run(continue_on_install_failure=True)


def main() -> None:
    """CLI entry point for ``dna-scaffold``."""
    import argparse

    parser = argparse.ArgumentParser(
        description="dna-scaffold -- generate projects from templates, safely",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  dna-scaffold react-app ./my-app\n"
            "  dna-scaffold react-app ./my-app --module auth --package-manager pnpm\n"
            "  dna-scaffold python-cli ./tool --skip-install --dry-run\n"
            "  dna-scaffold --list-templates\n"
        ),
    )
    parser.add_argument("template", nargs="?", help="Template identifier")
    parser.add_argument(
        "path", nargs="?", help="Output directory (default: ./<name>)"
    )
    parser.add_argument("--name", default=None, help="Project name (default: directory name)")
    parser.add_argument("--framework", default="", help="Expected framework of the template")
    parser.add_argument(
        "--module", "-m", action="append", default=[], dest="modules",
        help="Enable a template module (repeatable)",
    )
    parser.add_argument(
        "--var", action="append", default=[], dest="variables", metavar="NAME=VALUE",
        help="Template variable (repeatable)",
    )
    parser.add_argument(
        "--package-manager", default=None,
        help="Package manager to install with (default: the template's)",
    )
    parser.add_argument("--skip-install", action="store_true", help="Do not install dependencies")
    parser.add_argument("--skip-git", action="store_true", help="Do not initialise git")
    parser.add_argument(
        "--overwrite", action="store_true", help="Replace the output directory if it exists"
    )
    parser.add_argument(
        "--no-backup", action="store_true",
        help="With --overwrite, delete the existing directory instead of moving it aside",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show what would be generated")
    parser.add_argument(
        "--interactive", "-i", action="store_true", help="Ask before overwriting"
    )
    parser.add_argument("--no-progress", action="store_true", help="Hide per-file progress")
    parser.add_argument("--templates-dir", default=None, help="Template root directory")
    parser.add_argument("--backup-dir", default=None, help="Transaction backup directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print debug output")
    parser.add_argument(
        "--list-templates", action="store_true", help="List available templates and exit"
    )

    args = parser.parse_args()

    settings = Settings.from_env()
    if args.templates_dir:
        settings.templates_dir = Path(args.templates_dir)
    if args.backup_dir:
        settings.backup_dir = Path(args.backup_dir)
    if args.verbose:
        settings.verbose = True

    registry = TemplateRegistry(settings.templates_dir)
    if args.list_templates:
        _print_templates(registry)
        return

    if not args.template:
        parser.error("a template is required (see --list-templates)")

    try:
        raw_path = Path(args.path or args.name or args.template).expanduser()
        path = raw_path if raw_path.is_absolute() else Path.cwd() / raw_path
        config_kwargs: dict[str, Any] = {
            "name": args.name or sanitize_name(path.name),
            "template": args.template,
            "framework": args.framework,
            "modules": args.modules,
            "variables": _parse_variables(args.variables),
            "path": path,
            "skip_install": args.skip_install,
            "skip_git": args.skip_git,
        }
        if args.package_manager:
            config_kwargs["package_manager"] = args.package_manager
        config = GenerationConfig(**config_kwargs)
        options = GenerationOptions(
            interactive=args.interactive,
            dry_run=args.dry_run,
            overwrite=args.overwrite,
            backup=not args.no_backup,
            progress=not args.no_progress,
        )

        log = TransactionLog.from_settings(settings)
        pipeline = GenerationPipeline(
            config, log, registry, options=options, settings=settings
        )
        result = asyncio.run(_generate(pipeline, log, settings))
    except ScaffoldError as exc:
        _report_error(exc)
        sys.exit(1)
    except KeyboardInterrupt:
        print_error("Interrupted.")
        sys.exit(130)

    if result.dry_run:
        console.print("[bold yellow]Dry run complete; nothing was written.[/bold yellow]")
    else:
        console.print(f"[bold green]Project created at {result.project_path}[/bold green]")


if __name__ == "__main__":
    main()
