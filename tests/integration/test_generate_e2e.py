"""Integration tests for project generation.

These run the real template registry (bundled templates), the real
transaction log and the CLI entry point against a temporary directory.
Only external tools (node, npm, git, python3) are replaced by a mocked
command runner, so no network or toolchain is required.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from dna_scaffold.config import GenerationConfig, GenerationOptions, Settings
from dna_scaffold.errors import FilesystemError
from dna_scaffold.pipeline import GenerationPipeline, main
from dna_scaffold.rollback import TransactionLog
from dna_scaffold.scaffolder import TemplateRegistry


@pytest.fixture
def bundled_pipeline(tmp_path: Path, mock_runner, settings: Settings):
    """Factory for a pipeline over the bundled templates."""

    def factory(template: str, name: str = "demo-app", **overrides) -> GenerationPipeline:
        config = GenerationConfig(
            name=name, template=template, path=tmp_path / "projects" / name, **overrides
        )
        return GenerationPipeline(
            config,
            TransactionLog.from_settings(settings),
            TemplateRegistry(),
            options=GenerationOptions(progress=False),
            runner=mock_runner(),
            settings=settings,
        )

    return factory


# ---------------------------------------------------------------------------
# Bundled templates end to end
# ---------------------------------------------------------------------------


class TestBundledTemplates:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_react_app_with_modules(self, bundled_pipeline, backup_root: Path):
        pipeline = bundled_pipeline("react-app", modules=["auth", "testing"])
        result = await pipeline.run()
        root = result.project_path

        package = json.loads((root / "package.json").read_text())
        assert package["name"] == "demo-app"
        assert package["scripts"]["test"] == "vitest run"
        assert "vitest" in package["devDependencies"]
        assert (root / "src" / "auth.jsx").exists()
        assert (root / "src" / "App.test.jsx").exists()
        assert (root / ".gitignore").exists()

        manifest = json.loads((root / "dna.config.json").read_text())
        assert manifest["template"] == "react-app"
        assert manifest["framework"] == "react"
        assert manifest["modules"] == ["auth", "testing"]
        assert not backup_root.exists()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_react_app_without_testing_is_valid_json(self, bundled_pipeline):
        result = await bundled_pipeline("react-app", skip_install=True, skip_git=True).run()
        package = json.loads((result.project_path / "package.json").read_text())
        assert "test" not in package["scripts"]
        assert "vitest" not in package["devDependencies"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_python_cli(self, bundled_pipeline):
        pipeline = bundled_pipeline("python-cli", name="my-tool", modules=["tests"])
        result = await pipeline.run()
        root = result.project_path

        assert pipeline.config.package_manager == "pip"
        cli = (root / "src" / "my_tool" / "cli.py").read_text()
        assert "from my_tool import __version__" in cli
        assert 'prog="my-tool"' in cli
        assert (root / "tests" / "test_cli.py").exists()
        assert 'name = "my-tool"' in (root / "pyproject.toml").read_text()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failure_leaves_nothing_behind(
        self, bundled_pipeline, tmp_path: Path, backup_root: Path
    ):
        pipeline = bundled_pipeline("react-app")
        with patch.object(
            TransactionLog,
            "commit_transaction",
            side_effect=FilesystemError("commit failed"),
        ):
            with pytest.raises(FilesystemError):
                await pipeline.run()

        assert not (tmp_path / "projects").exists()
        assert not backup_root.exists()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_overwrite_keeps_previous_project(self, bundled_pipeline, tmp_path: Path):
        first = await bundled_pipeline("react-app", skip_install=True, skip_git=True).run()
        (first.project_path / "notes.txt").write_text("keep me")

        pipeline = bundled_pipeline("python-cli", skip_install=True, skip_git=True)
        pipeline.options = GenerationOptions(overwrite=True, progress=False)
        second = await pipeline.run()

        assert second.backup_path is not None
        assert (second.backup_path / "notes.txt").read_text() == "keep me"
        assert (second.project_path / "pyproject.toml").exists()
        assert not (second.project_path / "package.json").exists()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, mock_runner):
    """Isolate the CLI: fresh backup dir, no env overrides, mocked tools."""
    for name in ("DNA_TEMPLATES_DIR", "DNA_DURABLE_JOURNAL", "DNA_MANIFEST_NAME"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DNA_BACKUP_DIR", str(tmp_path / "backups"))
    monkeypatch.setenv("DNA_INSTALL_BASE_DELAY", "0")
    with patch("dna_scaffold.pipeline.SubprocessRunner", return_value=mock_runner()):
        yield tmp_path


def _main(*argv: str) -> None:
    with patch.object(sys, "argv", ["dna-scaffold", *argv]):
        main()


class TestCLI:
    @pytest.mark.integration
    def test_list_templates(self, cli_env: Path, capsys: pytest.CaptureFixture[str]):
        _main("--list-templates")
        out = capsys.readouterr().out
        assert "react-app" in out
        assert "python-cli" in out

    @pytest.mark.integration
    def test_generate_project(self, cli_env: Path):
        target = cli_env / "cli-app"
        _main(
            "react-app", str(target),
            "--module", "auth",
            "--var", "description=From CLI",
            "--no-progress",
        )

        package = json.loads((target / "package.json").read_text())
        assert package["description"] == "From CLI"
        assert (target / "src" / "auth.jsx").exists()
        assert (target / "dna.config.json").exists()
        assert not (cli_env / "backups").exists()

    @pytest.mark.integration
    def test_dry_run_writes_nothing(self, cli_env: Path):
        target = cli_env / "dry"
        _main("python-cli", str(target), "--dry-run", "--no-progress")
        assert not target.exists()

    @pytest.mark.integration
    def test_existing_directory_exits_with_error(self, cli_env: Path):
        target = cli_env / "taken"
        target.mkdir()
        with pytest.raises(SystemExit) as exc_info:
            _main("react-app", str(target), "--no-progress")
        assert exc_info.value.code == 1
        assert list(target.iterdir()) == []

    @pytest.mark.integration
    def test_bad_variable_exits_with_error(self, cli_env: Path):
        with pytest.raises(SystemExit) as exc_info:
            _main("react-app", str(cli_env / "x"), "--var", "novalue")
        assert exc_info.value.code == 1

    @pytest.mark.integration
    def test_template_required(self, cli_env: Path):
        with pytest.raises(SystemExit) as exc_info:
            _main()
        assert exc_info.value.code == 2

    @pytest.mark.integration
    def test_durable_journal_recovers_interrupted_run(
        self, cli_env: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setenv("DNA_DURABLE_JOURNAL", "1")
        crashed = cli_env / "crashed"

        async def _interrupted_run() -> None:
            log = TransactionLog(cli_env / "backups", durable=True)
            tx = await log.start_transaction("interrupted", crashed)
            await log.record_file_creation(tx, crashed / "half-written.txt", "partial")
            # Process exit drops the owner lock.
            for owner in log._owner_locks.values():
                owner.release()

        asyncio.run(_interrupted_run())
        assert (crashed / "half-written.txt").exists()

        _main("react-app", str(cli_env / "fresh"), "--no-progress")

        assert not crashed.exists()
        assert (cli_env / "fresh" / "package.json").exists()
        assert not (cli_env / "backups").exists()
