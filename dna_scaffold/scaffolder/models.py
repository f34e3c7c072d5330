"""Template metadata and rendered-file models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class TemplateMetadata(BaseModel):
    """Pydantic model for a template's ``template.json``."""

    id: str = Field(..., description="Identifier passed on the command line")
    name: str = Field(..., description="Human-readable template name")
    type: str = Field(default="", description="Project type, e.g. web or cli")
    framework: str = Field(default="")
    description: str = Field(default="")
    category: str = Field(default="", description="Directory the template lives in")
    version: str = Field(default="1.0.0")
    required_variables: list[str] = Field(
        default_factory=list,
        description="Variables that must be supplied with --var",
    )
    system_requirements: dict[str, str | None] = Field(
        default_factory=dict,
        description="Tool name -> minimum version (or null for any version)",
    )
    modules: list[str] = Field(
        default_factory=list,
        description="Optional feature modules rendered from modules/<name>/",
    )
    package_manager: str | None = Field(
        default=None, description="Package manager the template installs with"
    )
    path: Path | None = Field(default=None, description="Template directory on disk")


class RenderedFile(BaseModel):
    """One file produced by a template, relative to the project root."""

    path: str = Field(..., description="POSIX path relative to the project root")
    content: str | bytes = ""
    executable: bool = False
