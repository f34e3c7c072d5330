"""dna-scaffold configuration.

Typed configuration for the generator.  ``GenerationConfig`` and
``GenerationOptions`` describe a single run and are built by the CLI;
``Settings`` holds the process-wide tunables (backup storage, retry policy,
VCS behaviour) and can be persisted to JSON or read from the environment.
All models are Pydantic v2 so they validate at construction time.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


DEFAULT_BACKUP_DIRNAME = ".dna-temp"
DEFAULT_MANIFEST_NAME = "dna.config.json"


class GenerationConfig(BaseModel):
    """What to generate and where."""

    name: str = Field(..., description="Project name")
    template: str = Field(..., description="Template identifier")
    framework: str = Field(default="", description="Framework; defaults to the template's")
    modules: list[str] = Field(default_factory=list, description="Selected feature modules")
    variables: dict[str, Any] = Field(default_factory=dict)
    path: Path = Field(..., description="Absolute output directory of the project")
    package_manager: str = Field(default="npm")
    skip_install: bool = False
    skip_git: bool = False


class GenerationOptions(BaseModel):
    """Behaviour switches for one pipeline run.  Never persisted."""

    interactive: bool = False
    dry_run: bool = False
    overwrite: bool = False
    backup: bool = True
    progress: bool = True


class InstallConfig(BaseModel):
    """Retry policy for the dependency installation stage."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(
        default=1.0, ge=0, description="Seconds before the first retry; doubles each time"
    )
    timeout: int = Field(default=600, ge=1, description="Per-attempt timeout in seconds")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number *attempt* (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))


class VCSConfig(BaseModel):
    commit_message: str = Field(default="Initial commit from dna-scaffold - {template}")
    timeout: int = Field(default=60, ge=1)


class Settings(BaseModel):
    """Global dna-scaffold settings.

    Instances are typically created once by the CLI and handed to the
    ``TransactionLog`` and ``GenerationPipeline``.
    """

    backup_dir: Path = Field(default_factory=lambda: Path.cwd() / DEFAULT_BACKUP_DIRNAME)
    templates_dir: Path | None = Field(
        default=None, description="Template root; defaults to the bundled templates"
    )
    manifest_name: str = Field(default=DEFAULT_MANIFEST_NAME)
    durable_journal: bool = Field(
        default=False, description="fsync a journal entry before every tracked mutation"
    )
    verbose: bool = False
    locks_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "dna-scaffold" / "locks",
        description="Per-target advisory lock files, shared by every working directory",
    )
    install: InstallConfig = Field(default_factory=InstallConfig)
    vcs: VCSConfig = Field(default_factory=VCSConfig)

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the settings to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Settings":
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build ``Settings`` from environment variables.

        Recognised variables (all optional):
            DNA_BACKUP_DIR, DNA_TEMPLATES_DIR, DNA_MANIFEST_NAME,
            DNA_DURABLE_JOURNAL, DNA_VERBOSE, DNA_INSTALL_MAX_ATTEMPTS,
            DNA_INSTALL_BASE_DELAY, DNA_INSTALL_TIMEOUT, DNA_VCS_TIMEOUT.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("DNA_BACKUP_DIR"):
            kwargs["backup_dir"] = Path(os.environ["DNA_BACKUP_DIR"])
        if os.environ.get("DNA_TEMPLATES_DIR"):
            kwargs["templates_dir"] = Path(os.environ["DNA_TEMPLATES_DIR"])
        if os.environ.get("DNA_MANIFEST_NAME"):
            kwargs["manifest_name"] = os.environ["DNA_MANIFEST_NAME"]
        if os.environ.get("DNA_DURABLE_JOURNAL"):
            kwargs["durable_journal"] = _env_flag(os.environ["DNA_DURABLE_JOURNAL"])
        if os.environ.get("DNA_VERBOSE"):
            kwargs["verbose"] = _env_flag(os.environ["DNA_VERBOSE"])

        install_kwargs: dict[str, Any] = {}
        if os.environ.get("DNA_INSTALL_MAX_ATTEMPTS"):
            install_kwargs["max_attempts"] = int(os.environ["DNA_INSTALL_MAX_ATTEMPTS"])
        if os.environ.get("DNA_INSTALL_BASE_DELAY"):
            install_kwargs["base_delay"] = float(os.environ["DNA_INSTALL_BASE_DELAY"])
        if os.environ.get("DNA_INSTALL_TIMEOUT"):
            install_kwargs["timeout"] = int(os.environ["DNA_INSTALL_TIMEOUT"])

        vcs_kwargs: dict[str, Any] = {}
        if os.environ.get("DNA_VCS_TIMEOUT"):
            vcs_kwargs["timeout"] = int(os.environ["DNA_VCS_TIMEOUT"])

        return cls(
            install=InstallConfig(**install_kwargs),
            vcs=VCSConfig(**vcs_kwargs),
            **kwargs,
        )


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}
