"""Unit tests for the generation pipeline, artifact scopes and report workflow."""

import asyncio

import pytest
from conftest import FakeOffice, docx_text, png_bytes

from reportforge.core.factory import ComponentFactory
from reportforge.interfaces.errors import ConversionError, RenderingError, TemplateSourceMissing
from reportforge.pipeline.artifacts import ArtifactScope, remove_path, unique_name
from reportforge.pipeline.models import (
    DOCX_MEDIA_TYPE,
    PDF_MEDIA_TYPE,
    AppendixItem,
    AppendixKind,
    OutputFormat,
)
from reportforge.pipeline.workflow import can_delete, can_generate, is_valid_next_status
from reportforge.strategies.template_engine.models import TemplateVariable


def variable(name: str, **kwargs) -> TemplateVariable:
    return TemplateVariable(id=f"v-{name}", name=name, **kwargs)


async def collect(document) -> bytes:
    return b"".join([chunk async for chunk in document.stream()])


# =============================================================================
# Artifact Scope Tests
# =============================================================================


class TestArtifactScope:
    """Test suite for ArtifactScope."""

    def test_cleanup_removes_everything_once(self, tmp_path):
        scope = ArtifactScope(tmp_path / "work", label="t")
        scope.path("a.docx").write_text("a")
        scope.mkdir("nested").joinpath("b.png").write_bytes(b"b")

        scope.cleanup()
        scope.cleanup()

        assert scope.closed is True
        assert not scope.root.exists()
        assert (tmp_path / "work").exists()

    def test_context_manager_cleans_on_error(self, tmp_path):
        with pytest.raises(RuntimeError):
            with ArtifactScope(tmp_path, label="t") as scope:
                scope.path("x").write_text("x")
                raise RuntimeError("boom")
        assert not scope.root.exists()

    def test_unique_names_and_remove_path(self, tmp_path):
        assert unique_name("a") != unique_name("a")
        assert unique_name("img", ".png").endswith(".png")
        assert remove_path(tmp_path / "never-existed") is True
        directory = tmp_path / "d"
        (directory / "sub").mkdir(parents=True)
        assert remove_path(directory) is True
        assert not directory.exists()


# =============================================================================
# Workflow Tests
# =============================================================================


class TestReportWorkflow:
    """Test suite for the report status workflow."""

    @pytest.mark.parametrize(
        "current, next_status, expected",
        [
            ("Draft", "Draft", True),
            ("Draft", "Initial Review", True),
            ("Initial Review", "Final Review", True),
            ("Final Review", "Submitted", True),
            ("Draft", "Final Review", False),
            ("Submitted", "Draft", False),
            ("Final Review", "Initial Review", False),
            ("Draft", "Archived", False),
            (None, "Initial Review", True),
            ("Draft", None, True),
        ],
    )
    def test_transitions(self, current, next_status, expected):
        assert is_valid_next_status(current, next_status) is expected

    def test_generation_and_delete_gates(self):
        assert can_generate("Final Review") and can_generate("Submitted")
        assert not can_generate("Draft") and not can_generate("Initial Review")
        assert can_delete("Final Review")
        assert not can_delete("Submitted")


# =============================================================================
# Generation Pipeline Tests
# =============================================================================


class TestGenerationPipeline:
    """Test suite for GenerationPipeline."""

    @pytest.fixture
    def office(self):
        return FakeOffice()

    @pytest.fixture
    def pipeline(self, settings, office, fake_rasterizer):
        factory = ComponentFactory(settings, office_runner=office, rasterizer=fake_rasterizer)
        return factory.get_generation_pipeline()

    def scopes_left(self, storage):
        return [p for p in storage.work.iterdir() if not p.name.startswith("lo-profile")]

    def test_generate_docx(self, pipeline, office, storage, docx_factory):
        """Test that text is rendered, indexes refreshed and the scope cleaned after streaming."""
        source = docx_factory("tpl.docx", ["Client: {{client}}", "Site: {{site}}"])

        document = asyncio.run(pipeline.generate(source, [variable("client"), variable("site")], {"client": "Acme"}))

        assert document.media_type == DOCX_MEDIA_TYPE
        assert document.filename == "report.docx"
        assert docx_text(document.path) == ["Client: Acme", "Site: [site]"]
        assert [m.routine for m in office.macros] == ["Standard.Module1.UpdateIndexes"]

        data = asyncio.run(collect(document))
        assert data[:2] == b"PK"
        assert self.scopes_left(storage) == []

    def test_stream_closed_midway_cleans_scope(self, pipeline, storage, docx_factory):
        """Test that a client disconnect during download still removes the output."""
        source = docx_factory("tpl.docx", ["Client: {{client}}"])
        document = asyncio.run(pipeline.generate(source, [variable("client")], {"client": "Acme"}))

        async def read_one_chunk():
            stream = document.stream(chunk_size=16)
            first = await stream.__anext__()
            await stream.aclose()
            return first

        first = asyncio.run(read_one_chunk())
        assert len(first) == 16 and first[:2] == b"PK"
        assert not document.scope.root.exists()
        assert self.scopes_left(storage) == []
        document.cleanup()
        assert document.scope.closed is True

    def test_generate_accepts_stored_variable_dicts(self, pipeline, docx_factory):
        source = docx_factory("tpl.docx", ["{{client}}"])
        stored = [{"id": "v1", "name": "client", "type": "text"}]
        document = asyncio.run(pipeline.generate(source, stored, {"client": "Acme"}))
        try:
            assert docx_text(document.path) == ["Acme"]
        finally:
            document.cleanup()

    def test_generate_pdf(self, pipeline, office, docx_factory):
        source = docx_factory("tpl.docx", ["{{client}}"])
        document = asyncio.run(pipeline.generate(source, [variable("client")], {"client": "Acme"}, OutputFormat.PDF))
        try:
            assert document.media_type == PDF_MEDIA_TYPE
            assert document.filename == "report.pdf"
            assert document.path.read_bytes().startswith(b"%PDF")
            assert len(office.conversions) == 1
        finally:
            document.cleanup()

    def test_appendix_appended_in_order_after_refresh(self, pipeline, office, docx_factory, tmp_path):
        """Test that appendix pages follow the refresh routine, by ascending order."""
        first = tmp_path / "first.png"
        second = tmp_path / "second.png"
        first.write_bytes(png_bytes())
        second.write_bytes(png_bytes())
        items = [
            AppendixItem(id="b", kind=AppendixKind.IMAGE, original_path=str(second), order=2),
            AppendixItem(id="a", kind=AppendixKind.IMAGE, original_path=str(first), order=1),
        ]
        source = docx_factory("tpl.docx", ["Body"])

        document = asyncio.run(pipeline.generate(source, [], {}, appendix_items=items))
        document.cleanup()

        routines = [m.routine for m in office.macros]
        assert routines == [
            "Standard.Module1.UpdateIndexes",
            "Standard.Insert.InsertPhotoSaveAndClose_FitToPage",
            "Standard.Insert.InsertPhotoSaveAndClose_FitToPage",
        ]
        assert office.macros[1].args[0].path == first
        assert office.macros[2].args[0].path == second

    def test_conversion_failure_cleans_scope(self, settings, fake_rasterizer, storage, docx_factory):
        """Test that a failed conversion raises and leaves no output behind."""
        office = FakeOffice(fail_conversion=True)
        pipeline = ComponentFactory(settings, office_runner=office, rasterizer=fake_rasterizer).get_generation_pipeline()
        source = docx_factory("tpl.docx", ["{{client}}"])

        with pytest.raises(ConversionError) as exc_info:
            asyncio.run(pipeline.generate(source, [variable("client")], {"client": "x"}, OutputFormat.PDF))

        assert exc_info.value.message == "PDF conversion failed"
        assert self.scopes_left(storage) == []

    def test_unavailable_renderer_is_conversion_error(self, settings, fake_rasterizer, storage, docx_factory):
        office = FakeOffice(available=False)
        pipeline = ComponentFactory(settings, office_runner=office, rasterizer=fake_rasterizer).get_generation_pipeline()
        source = docx_factory("tpl.docx", ["x"])
        with pytest.raises(ConversionError):
            asyncio.run(pipeline.generate(source, [], {}, OutputFormat.PDF))
        assert office.conversions == []
        assert self.scopes_left(storage) == []

    def test_missing_source(self, pipeline, storage, tmp_path):
        with pytest.raises(TemplateSourceMissing):
            asyncio.run(pipeline.generate(tmp_path / "gone.docx", [], {}))
        with pytest.raises(TemplateSourceMissing):
            asyncio.run(pipeline.generate(None, [], {}))
        assert self.scopes_left(storage) == []

    def test_rendering_failure_produces_no_output(self, pipeline, office, storage, docx_factory):
        source = docx_factory("tpl.docx", ["Broken {{client"])
        with pytest.raises(RenderingError):
            asyncio.run(pipeline.generate(source, [variable("client")], {"client": "x"}))
        assert office.macros == []
        assert self.scopes_left(storage) == []

    def test_preview_html(self, pipeline, storage, docx_factory):
        source = docx_factory("tpl.docx", ["Client: {{client}}"])
        html = asyncio.run(pipeline.preview_html(source, [variable("client")], {"client": "Acme & Sons"}))
        assert "Client: Acme &amp; Sons" in html
        assert self.scopes_left(storage) == []

    def test_template_preview(self, pipeline, storage, docx_factory):
        source = docx_factory("tpl.docx", ["{{client}}"])
        preview = asyncio.run(pipeline.build_template_preview(source))
        assert preview is not None
        assert preview.parent == storage.template_previews
        assert preview.read_bytes().startswith(b"%PDF")

    def test_template_preview_failure_yields_none(self, settings, fake_rasterizer, docx_factory):
        office = FakeOffice(fail_conversion=True)
        pipeline = ComponentFactory(settings, office_runner=office, rasterizer=fake_rasterizer).get_generation_pipeline()
        assert asyncio.run(pipeline.build_template_preview(docx_factory("tpl.docx", ["x"]))) is None
