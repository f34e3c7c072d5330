"""Template context building.

Turns a ``GenerationConfig`` plus the resolved ``TemplateMetadata`` into the
dictionary every template (and every ``__project_name*__`` path token) is
rendered with.
"""

from __future__ import annotations

from typing import Any

from dna_scaffold import __version__
from dna_scaffold.config import GenerationConfig

from .models import TemplateMetadata
from .templates import camel_case, pascal_case, slugify, snake_case


def build_context(config: GenerationConfig, template: TemplateMetadata) -> dict[str, Any]:
    """Build the Jinja2 template context for one generation run.

    User variables are merged last so ``--var`` can override any derived
    value except the project name forms.
    """
    name = config.name
    context: dict[str, Any] = {
        "description": template.description,
        "framework": config.framework or template.framework,
        "template_id": template.id,
        "template_name": template.name,
        "modules": list(config.modules),
        "package_manager": config.package_manager,
        "generator_version": __version__,
    }
    context.update(config.variables)
    context.update(
        {
            "project_name": name,
            "project_name_slug": slugify(name),
            "project_name_snake": snake_case(name),
            "project_name_pascal": pascal_case(name),
            "project_name_camel": camel_case(name),
        }
    )
    return context
