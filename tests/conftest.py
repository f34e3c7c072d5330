"""Shared pytest fixtures for the dna-scaffold test suite.

Provides reusable fixtures for:
- Transaction logs with a temporary backup root
- A temporary template tree with small fixture templates
- Mocked command runners (package managers, git, tool version checks)
- A pipeline factory wired to all of the above
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from dna_scaffold.collaborators import CommandResult
from dna_scaffold.config import (
    GenerationConfig,
    GenerationOptions,
    InstallConfig,
    Settings,
)
from dna_scaffold.pipeline import GenerationPipeline
from dna_scaffold.rollback import TransactionLog
from dna_scaffold.scaffolder import TemplateRegistry


# ---------------------------------------------------------------------------
# Transaction log
# ---------------------------------------------------------------------------

@pytest.fixture
def backup_root(tmp_path: Path) -> Path:
    """Backup root for the transaction log (created lazily by the log)."""
    return tmp_path / ".dna-temp"


@pytest.fixture
def tx_log(backup_root: Path) -> TransactionLog:
    return TransactionLog(backup_root)


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """An existing, empty directory to mutate inside transactions."""
    path = tmp_path / "work"
    path.mkdir()
    return path


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def make_template(
    root: Path,
    category: str,
    template_id: str,
    metadata: dict[str, Any] | None = None,
    files: dict[str, str] | None = None,
    modules: dict[str, dict[str, str]] | None = None,
) -> Path:
    """Write a template directory under *root* and return it."""
    template_dir = root / category / template_id
    template_dir.mkdir(parents=True)
    meta = {"id": template_id, "name": template_id.title(), **(metadata or {})}
    (template_dir / "template.json").write_text(json.dumps(meta), encoding="utf-8")

    for rel, content in (files or {}).items():
        out = template_dir / "files" / rel
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(content, encoding="utf-8")

    for module, module_files in (modules or {}).items():
        for rel, content in module_files.items():
            out = template_dir / "modules" / module / rel
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(content, encoding="utf-8")
    return template_dir


@pytest.fixture
def template_factory():
    """``make_template`` for tests that need their own template tree."""
    return make_template


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """Template root with a ``demo`` web template and a ``strict`` cli template.

    ``demo`` renders five files (two of them in nested directories) and has
    an ``extra`` module; ``strict`` requires the ``author`` variable.
    """
    root = tmp_path / "templates"
    make_template(
        root,
        "web",
        "demo",
        metadata={
            "framework": "react",
            "type": "web",
            "description": "Demo template",
            "modules": ["extra"],
            "package_manager": "npm",
            "system_requirements": {"node": ">=18"},
        },
        files={
            "README.md.j2": "# {{ project_name }}\n",
            "package.json.j2": '{"name": "{{ project_name_slug }}"}\n',
            "src/index.js.j2": "console.log('{{ project_name }}');\n",
            "src/lib/util.js.j2": "export const name = '{{ project_name_camel }}';\n",
            "gitignore.j2": "node_modules/\n",
        },
        modules={"extra": {"src/extra.js.j2": "// extra for {{ project_name }}\n"}},
    )
    make_template(
        root,
        "cli",
        "strict",
        metadata={
            "framework": "python",
            "required_variables": ["author"],
            "package_manager": "pip",
        },
        files={"AUTHORS.j2": "{{ author }}\n"},
    )
    return root


@pytest.fixture
def registry(templates_dir: Path) -> TemplateRegistry:
    return TemplateRegistry(templates_dir)


# ---------------------------------------------------------------------------
# Mock command runner
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_runner():
    """Factory for a ``CommandRunner`` mock.

    ``responses`` maps ``"<command> <first arg>"`` (or just ``"<command>"``)
    to a ``CommandResult``, an exception instance to raise, or a list of
    those consumed in order (the last one repeats).  Anything unlisted
    succeeds with a version-like stdout.

    Usage:
        def test_install(mock_runner):
            runner = mock_runner({"npm install": CommandResult(returncode=1)})
            ...
            runner.run.assert_any_await("npm", ["install"], ...)
    """

    def factory(responses: dict[str, Any] | None = None) -> MagicMock:
        table = {k: (list(v) if isinstance(v, list) else v) for k, v in (responses or {}).items()}

        async def _run(command: str, args: list[str], **kwargs: Any) -> CommandResult:
            key = f"{command} {args[0]}" if args else command
            value = table.get(key, table.get(command))
            if isinstance(value, list):
                value = value.pop(0) if len(value) > 1 else value[0]
            if isinstance(value, BaseException):
                raise value
            return value or CommandResult(returncode=0, stdout=f"{command} 99.1.0")

        runner = MagicMock()
        runner.run = AsyncMock(side_effect=_run)
        return runner

    return factory


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(backup_root: Path, tmp_path: Path) -> Settings:
    return Settings(
        backup_dir=backup_root,
        locks_dir=tmp_path / "locks",
        install=InstallConfig(max_attempts=3, base_delay=0.0),
    )


@pytest.fixture
def project_path(tmp_path: Path) -> Path:
    """Target directory of a generated project (does not exist yet)."""
    return tmp_path / "out" / "my-app"


@pytest.fixture
def make_pipeline(tx_log, registry, mock_runner, settings, project_path):
    """Factory building a ``GenerationPipeline`` around the shared fixtures.

    Keyword arguments override ``GenerationConfig`` fields; ``options``,
    ``runner``, ``reporter`` and ``templates`` replace the defaults.
    """

    def factory(
        *,
        options: GenerationOptions | None = None,
        runner: Any = None,
        reporter: Any = None,
        templates: Any = None,
        **overrides: Any,
    ) -> GenerationPipeline:
        config_kwargs: dict[str, Any] = {
            "name": "my-app",
            "template": "demo",
            "path": project_path,
            **overrides,
        }
        return GenerationPipeline(
            GenerationConfig(**config_kwargs),
            tx_log,
            templates or registry,
            options=options or GenerationOptions(progress=False),
            runner=runner or mock_runner(),
            reporter=reporter,
            settings=settings,
        )

    return factory
