"""Tests for template discovery and rendering (dna_scaffold.scaffolder.registry)."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dna_scaffold.collaborators import TemplateProvider
from dna_scaffold.config import GenerationConfig
from dna_scaffold.errors import TemplateNotFoundError, TemplateRenderError
from dna_scaffold.scaffolder import TemplateRegistry
from dna_scaffold.scaffolder.registry import BUNDLED_TEMPLATES_DIR


def _config(path: Path, **overrides) -> GenerationConfig:
    return GenerationConfig(
        **{"name": "my-app", "template": "demo", "path": path / "my-app", **overrides}
    )


class TestLoad:
    @pytest.mark.unit
    def test_discovers_templates(self, registry: TemplateRegistry, templates_dir: Path):
        ids = [t.id for t in registry.list_templates()]
        assert ids == ["strict", "demo"]  # sorted by category (cli < web), then id

        demo = registry.get_template("demo")
        assert demo.category == "web"
        assert demo.framework == "react"
        assert demo.modules == ["extra"]
        assert demo.system_requirements == {"node": ">=18"}
        assert demo.path == templates_dir / "web" / "demo"

    @pytest.mark.unit
    def test_unknown_template(self, registry: TemplateRegistry):
        assert registry.get_template("nope") is None

    @pytest.mark.unit
    def test_missing_directory(self, tmp_path: Path):
        assert TemplateRegistry(tmp_path / "nothing").list_templates() == []

    @pytest.mark.unit
    def test_defaults_from_directory_names(self, tmp_path: Path):
        template_dir = tmp_path / "api" / "rest-service"
        template_dir.mkdir(parents=True)
        (template_dir / "template.json").write_text("{}")

        (meta,) = TemplateRegistry(tmp_path).list_templates()
        assert meta.id == "rest-service"
        assert meta.name == "Rest Service"
        assert meta.category == "api"

    @pytest.mark.unit
    def test_invalid_metadata_skipped(self, tmp_path: Path, template_factory):
        template_factory(tmp_path, "web", "good")
        broken = tmp_path / "web" / "broken"
        broken.mkdir()
        (broken / "template.json").write_text("{not json")
        wrong_type = tmp_path / "web" / "wrong"
        wrong_type.mkdir()
        (wrong_type / "template.json").write_text(json.dumps({"modules": "auth"}))

        assert [t.id for t in TemplateRegistry(tmp_path).load()] == ["good"]

    @pytest.mark.unit
    def test_duplicate_ids_keep_first(self, tmp_path: Path, template_factory):
        template_factory(tmp_path, "a", "one", metadata={"id": "same", "description": "first"})
        template_factory(tmp_path, "b", "two", metadata={"id": "same", "description": "second"})

        registry = TemplateRegistry(tmp_path)
        assert len(registry.list_templates()) == 1
        assert registry.get_template("same").description == "first"

    @pytest.mark.unit
    def test_satisfies_provider_protocol(self, registry: TemplateRegistry):
        assert isinstance(registry, TemplateProvider)


class TestGenerateFiles:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_renders_base_files(self, registry: TemplateRegistry, tmp_path: Path):
        files = {f.path: f.content for f in await registry.generate_files(_config(tmp_path))}
        assert files["README.md"] == "# my-app\n"
        assert files["package.json"] == '{"name": "my-app"}\n'
        assert files["src/lib/util.js"] == "export const name = 'myApp';\n"
        assert files[".gitignore"] == "node_modules/\n"
        assert "src/extra.js" not in files

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_renders_selected_modules(self, registry: TemplateRegistry, tmp_path: Path):
        files = await registry.generate_files(_config(tmp_path, modules=["extra"]))
        assert "src/extra.js" in [f.path for f in files]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_module_file_replaces_base_file(self, tmp_path: Path, template_factory):
        root = tmp_path / "templates"
        template_factory(
            root,
            "web",
            "layered",
            metadata={"modules": ["docs"]},
            files={"README.md.j2": "base\n"},
            modules={"docs": {"README.md.j2": "with docs\n"}},
        )
        config = _config(tmp_path, template="layered", modules=["docs"])

        files = await TemplateRegistry(root).generate_files(config)
        assert [(f.path, f.content) for f in files] == [("README.md", "with docs\n")]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_variables_reach_templates(self, registry: TemplateRegistry, tmp_path: Path):
        config = _config(tmp_path, template="strict", variables={"author": "Ada"})
        (authors,) = await registry.generate_files(config)
        assert authors.path == "AUTHORS"
        assert authors.content == "Ada\n"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_template(self, registry: TemplateRegistry, tmp_path: Path):
        with pytest.raises(TemplateNotFoundError) as exc_info:
            await registry.generate_files(_config(tmp_path, template="nope"))
        assert exc_info.value.available == ["demo", "strict"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_render_error(self, tmp_path: Path, template_factory):
        root = tmp_path / "templates"
        template_factory(root, "web", "bad", files={"index.j2": "{% if %}\n"})

        with pytest.raises(TemplateRenderError) as exc_info:
            await TemplateRegistry(root).generate_files(_config(tmp_path, template="bad"))
        assert exc_info.value.template_id == "bad"


class TestBundledTemplates:
    @pytest.mark.unit
    def test_bundled_templates_load(self):
        registry = TemplateRegistry()
        assert registry.templates_dir == BUNDLED_TEMPLATES_DIR
        ids = {t.id for t in registry.list_templates()}
        assert {"react-app", "python-cli"} <= ids

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_python_cli_package_directory(self, tmp_path: Path):
        config = _config(tmp_path, name="my-tool", template="python-cli", modules=["tests"])
        paths = {f.path for f in await TemplateRegistry().generate_files(config)}
        assert "src/my_tool/__init__.py" in paths
        assert "src/my_tool/cli.py" in paths
        assert "tests/test_cli.py" in paths
        assert ".gitignore" in paths
