"""dna-scaffold template layer -- discovers and renders project templates.

Quick usage::

    from dna_scaffold.scaffolder import TemplateRegistry

    registry = TemplateRegistry()
    for template in registry.list_templates():
        print(template.id, template.framework)
    files = await registry.generate_files(config)
"""

from dna_scaffold.scaffolder.models import RenderedFile, TemplateMetadata
from dna_scaffold.scaffolder.registry import TemplateRegistry
from dna_scaffold.scaffolder.templates import TemplateRenderer

__all__ = [
    "RenderedFile",
    "TemplateMetadata",
    "TemplateRegistry",
    "TemplateRenderer",
]
