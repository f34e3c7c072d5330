"""Jinja2 template rendering for project scaffolding.

Provides the TemplateRenderer class which loads Jinja2 templates from one
template directory and renders them with project-specific context data.
Rendering happens in memory: ``render_tree`` returns ``RenderedFile``
objects and never writes to disk, so the caller decides how each file is
recorded.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .models import RenderedFile


# ---------------------------------------------------------------------------
# Path conventions
# ---------------------------------------------------------------------------

# Files that cannot ship under their real name inside a Python package.
RENAMED_FILES: dict[str, str] = {
    "gitignore": ".gitignore",
    "npmignore": ".npmignore",
    "env.example": ".env.example",
}

# ``__project_name__`` and its ``_slug``/``_snake``/``_pascal``/``_camel`` forms.
_PATH_TOKEN_RE = re.compile(r"__(project_name(?:_[a-z]+)?)__")


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders Jinja2 templates for project scaffolding.

    The renderer discovers ``.j2`` template files under *template_dir*.
    Templates are rendered with a context dictionary that typically contains
    project metadata (name, framework, modules, user variables).
    """

    def __init__(self, template_dir: str | Path) -> None:
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape([]),
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        # Register custom filters
        self.env.filters["slugify"] = slugify
        self.env.filters["pascal_case"] = pascal_case
        self.env.filters["snake_case"] = snake_case
        self.env.filters["camel_case"] = camel_case

    # -- Single template rendering -----------------------------------------

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a single template with the provided context.

        Args:
            template_path: Path relative to the template directory (e.g.
                ``"files/src/index.js.j2"``).
            context: Dictionary of variables available inside the template.
        """
        template = self.env.get_template(template_path)
        return template.render(**context)

    # -- Tree rendering ----------------------------------------------------

    def render_tree(self, template_prefix: str, context: dict[str, Any]) -> list[RenderedFile]:
        """Render every file under *template_prefix* into ``RenderedFile`` objects.

        ``*.j2`` files are rendered and lose their extension; any other file
        is passed through unchanged.  The directory structure is preserved
        relative to *template_prefix*, ``__project_name*__`` path tokens are
        replaced from *context* (``__project_name_snake__`` ->
        ``context["project_name_snake"]``) and names listed in
        ``RENAMED_FILES`` get their real name back.

        Args:
            template_prefix: Subdirectory inside the template root to scan.
            context: Template context variables.

        Returns:
            Rendered files sorted by path.  Empty if the prefix is missing.
        """
        prefix_path = self.template_dir / template_prefix
        if not prefix_path.is_dir():
            return []

        rendered: list[RenderedFile] = []
        for source in sorted(p for p in prefix_path.rglob("*") if p.is_file()):
            rel_str = source.relative_to(prefix_path).as_posix()
            executable = os.access(source, os.X_OK) or rel_str.endswith((".sh", ".sh.j2"))
            if rel_str.endswith(".j2"):
                template_key = f"{template_prefix}/{rel_str}"
                content: str | bytes = self.render(template_key, context)
                rel_str = rel_str[: -len(".j2")]
            else:
                content = source.read_bytes()

            rendered.append(
                RenderedFile(
                    path=output_path(rel_str, context),
                    content=content,
                    executable=executable,
                )
            )
        return rendered


def output_path(rel_path: str, context: dict[str, Any]) -> str:
    """Map a template-relative path to the path written in the project.

    Examples::

        output_path("src/__project_name_snake__/cli.py", {"project_name_snake": "my_app"})
            -> "src/my_app/cli.py"
        output_path("gitignore", {}) -> ".gitignore"
    """

    def _token(match: re.Match[str]) -> str:
        value = context.get(match.group(1))
        return str(value) if value is not None else match.group(0)

    parts = [_PATH_TOKEN_RE.sub(_token, part) for part in rel_path.split("/")]
    parts[-1] = RENAMED_FILES.get(parts[-1], parts[-1])
    return "/".join(parts)


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

def slugify(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower().strip())
    return slug.strip("-")


def pascal_case(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    parts = re.split(r"[-_\s]+", value)
    return "".join(word.capitalize() for word in parts if word)


def snake_case(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", value)
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-\s]+", "_", s2).lower()


def camel_case(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = pascal_case(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""
