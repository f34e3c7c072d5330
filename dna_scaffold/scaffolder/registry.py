"""Template discovery and materialisation.

Templates live in ``<root>/<category>/<template>/``:

* ``template.json`` - metadata (see ``TemplateMetadata``)
* ``files/``        - always rendered
* ``modules/<m>/``  - rendered only when module *m* is selected; a module
  file replaces a base file with the same output path
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import jinja2
from pydantic import ValidationError as PydanticValidationError

from dna_scaffold.config import GenerationConfig
from dna_scaffold.errors import TemplateNotFoundError, TemplateRenderError
from dna_scaffold.utils import load_json, print_warning

from .generator import build_context
from .models import RenderedFile, TemplateMetadata
from .templates import TemplateRenderer

BUNDLED_TEMPLATES_DIR = Path(__file__).parent / "templates"
METADATA_FILE = "template.json"


class TemplateRegistry:
    """``TemplateProvider`` over a directory of Jinja2 templates.

    Metadata is loaded lazily on first use; call :meth:`load` to rescan.
    """

    def __init__(self, templates_dir: str | Path | None = None) -> None:
        self.templates_dir = Path(templates_dir) if templates_dir else BUNDLED_TEMPLATES_DIR
        self._templates: dict[str, TemplateMetadata] | None = None

    def load(self) -> list[TemplateMetadata]:
        """Scan the templates directory.  Invalid ``template.json`` files are
        reported and skipped."""
        templates: dict[str, TemplateMetadata] = {}
        if not self.templates_dir.is_dir():
            self._templates = templates
            return []

        for metadata_path in sorted(self.templates_dir.glob(f"*/*/{METADATA_FILE}")):
            template_dir = metadata_path.parent
            category = template_dir.parent.name
            try:
                raw = load_json(metadata_path)
                raw.setdefault("id", template_dir.name)
                raw.setdefault("name", template_dir.name.replace("-", " ").title())
                raw.setdefault("category", category)
                raw["path"] = template_dir
                meta = TemplateMetadata.model_validate(raw)
            except (OSError, json.JSONDecodeError, PydanticValidationError) as exc:
                print_warning(f"Skipping invalid template {metadata_path}: {exc}")
                continue
            if meta.id in templates:
                print_warning(f"Duplicate template id '{meta.id}' in {template_dir}; skipped")
                continue
            templates[meta.id] = meta

        self._templates = templates
        return list(templates.values())

    def list_templates(self) -> list[TemplateMetadata]:
        return sorted(self._loaded().values(), key=lambda t: (t.category, t.id))

    def get_template(self, template_id: str) -> TemplateMetadata | None:
        return self._loaded().get(template_id)

    async def generate_files(self, config: GenerationConfig) -> list[RenderedFile]:
        """Render the template (and the selected modules) for *config*.

        Raises:
            TemplateNotFoundError: If ``config.template`` is unknown.
            TemplateRenderError: If a Jinja2 template fails to render.
        """
        template = self.get_template(config.template)
        if template is None or template.path is None:
            raise TemplateNotFoundError(config.template, sorted(self._loaded()))
        return await asyncio.to_thread(self._render, template, config)

    # -- Internal ----------------------------------------------------------

    def _loaded(self) -> dict[str, TemplateMetadata]:
        if self._templates is None:
            self.load()
        assert self._templates is not None
        return self._templates

    def _render(self, template: TemplateMetadata, config: GenerationConfig) -> list[RenderedFile]:
        renderer = TemplateRenderer(template.path)
        context = build_context(config, template)
        by_path: dict[str, RenderedFile] = {}
        try:
            for prefix in ["files", *(f"modules/{m}" for m in config.modules)]:
                for rendered in renderer.render_tree(prefix, context):
                    by_path[rendered.path] = rendered
        except jinja2.TemplateError as exc:
            raise TemplateRenderError(template.id, str(exc)) from exc
        return list(by_path.values())
