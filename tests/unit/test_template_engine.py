"""Unit tests for tokenization, analysis and rendering."""

import asyncio
import zipfile

import pytest
from conftest import docx_text

from reportforge.interfaces.errors import RenderingError
from reportforge.strategies.template_engine.analyzer import (
    TemplateAnalyzer,
    count_paragraphs,
    extract_token_names,
    find_extent_for_target,
)
from reportforge.strategies.template_engine.injector import TemplateInjector
from reportforge.strategies.template_engine.models import TemplateVariable, VariableType
from reportforge.strategies.template_engine.package import SETTINGS_PART, DocxPackage
from reportforge.strategies.template_engine.renderer import (
    TemplateRenderer,
    enable_update_fields_on_open,
    format_date_for_report,
    stringify,
)


def variable(name: str, **kwargs) -> TemplateVariable:
    return TemplateVariable(id=f"v-{name}", name=name, **kwargs)


def render_file(source, tmp_path, variables, values, name="out.docx"):
    renderer = TemplateRenderer()
    package = DocxPackage.open(source)
    renderer.render(package, renderer.build_substitutions(variables, values))
    return package.save(tmp_path / name)


# =============================================================================
# Injector Tests
# =============================================================================


class TestTemplateInjector:
    """Test suite for TemplateInjector."""

    @pytest.fixture
    def injector(self):
        return TemplateInjector()

    def test_supported_extensions(self, injector):
        assert injector.supported_extensions == {".docx"}

    def test_inject_nonexistent_file(self, injector):
        """Test that a missing template raises FileNotFoundError."""

        async def run_test():
            with pytest.raises(FileNotFoundError):
                await injector.inject_tags("/nonexistent/file.docx", [])

        asyncio.run(run_test())

    def test_phrase_split_across_runs_is_tokenized(self, injector, docx_factory, tmp_path):
        """Test that a phrase spread over several runs becomes one token."""
        source = docx_factory(
            "src.docx",
            [["Prepared for Ac", "me Co", "rp on Monday"], "Acme Corp again"],
        )
        result = asyncio.run(
            injector.inject_tags(
                str(source),
                [variable("client_name", source_text="Acme Corp")],
                output_path=str(tmp_path / "tok.docx"),
            )
        )

        assert result.replacements == 2
        assert result.variables[0].tokenized is True
        assert result.untokenized == []
        assert docx_text(tmp_path / "tok.docx") == [
            "Prepared for {{client_name}} on Monday",
            "{{client_name}} again",
        ]

    def test_missing_phrase_is_reported_not_raised(self, injector, docx_factory, tmp_path):
        """Test that an unmatched phrase leaves the variable untokenized."""
        source = docx_factory("src.docx", ["Nothing to see"])
        result = asyncio.run(
            injector.inject_tags(
                str(source),
                [variable("site", source_text="Springfield")],
                output_path=str(tmp_path / "tok.docx"),
            )
        )
        assert result.replacements == 0
        assert result.untokenized == ["site"]
        assert (tmp_path / "tok.docx").exists()

    def test_phrase_inside_its_own_token_does_not_loop(self, injector, docx_factory, tmp_path):
        """Test that a phrase equal to the variable name terminates."""
        source = docx_factory("src.docx", ["name and name"])
        result = asyncio.run(
            injector.inject_tags(
                str(source),
                [variable("name", source_text="name")],
                output_path=str(tmp_path / "tok.docx"),
            )
        )
        assert result.replacements == 2
        assert docx_text(tmp_path / "tok.docx") == ["{{name}} and {{name}}"]

    def test_tokenize_then_render_round_trip(self, injector, docx_factory, tmp_path):
        """Test that rendering the tokenized package with the source phrase restores the text."""
        source = docx_factory("src.docx", [["Client: Acme ", "Corp"], "Site: Springfield"])
        variables = [
            variable("client", source_text="Acme Corp"),
            variable("site", source_text="Springfield"),
        ]
        result = asyncio.run(
            injector.inject_tags(str(source), variables, output_path=str(tmp_path / "tok.docx"))
        )
        out = render_file(
            result.output_path, tmp_path, result.variables, {"client": "Acme Corp", "site": "Springfield"}
        )
        assert docx_text(out) == docx_text(source)


# =============================================================================
# Analyzer Tests
# =============================================================================


class TestTemplateAnalyzer:
    """Test suite for TemplateAnalyzer."""

    @pytest.fixture
    def analyzer(self):
        return TemplateAnalyzer()

    def test_extract_names_through_interleaved_markup(self):
        """Test that tags inside braces are stripped and entities decoded."""
        xml = (
            "<w:t>{{</w:t></w:r><w:r><w:t>client</w:t></w:r><w:r><w:t>_name}}</w:t>"
            "<w:t>{{ a&amp;b }}</w:t><w:t>{{site  name}}</w:t>"
        )
        assert extract_token_names(xml) == ["client_name", "a&b", "site name"]

    def test_analyze_dedupes_case_insensitively(self, analyzer, docx_factory):
        """Test that repeated tokens are reported once, first spelling wins."""
        source = docx_factory("t.docx", ["{{Client}} and {{client}}", ["{{si", "te}}"]])
        analysis = asyncio.run(analyzer.analyze(str(source)))

        assert [t.name for t in analysis.variables] == ["Client", "site"]
        assert analysis.total_paragraphs == 2
        assert analysis.media == []

    def test_count_paragraphs_unreadable_files(self, tmp_path):
        not_a_zip = tmp_path / "notes.docx"
        not_a_zip.write_text("plain text")
        assert count_paragraphs(str(not_a_zip)) == 0
        assert count_paragraphs(str(tmp_path / "missing.docx")) == 0

    def test_analyze_reports_media_extent(self, analyzer, docx_factory):
        """Test that embedded pictures are listed with their drawn size."""
        source = docx_factory("p.docx", ["Photo:"], picture=(200, 100))
        analysis = asyncio.run(analyzer.analyze(str(source)))

        assert len(analysis.media) == 1
        media = analysis.media[0]
        assert media.target.startswith("word/media/")
        assert media.extent.cx == 914400
        assert media.extent.cy == 457200
        assert media.extent.to_pixels() == (96, 48)

    def test_unreadable_package_yields_empty_analysis(self, analyzer, tmp_path):
        """Test that a corrupt upload degrades to an empty result."""
        bad = tmp_path / "bad.docx"
        bad.write_bytes(b"not a package")
        analysis = asyncio.run(analyzer.analyze(str(bad)))
        assert analysis.variables == []
        assert analysis.media == []

    def test_extent_lookup_for_unknown_target(self, docx_factory):
        package = DocxPackage.open(docx_factory("p.docx", ["x"], picture=(10, 10)))
        assert find_extent_for_target(package, "word/media/nope.png") is None


# =============================================================================
# Renderer Tests
# =============================================================================


class TestValueFormatting:
    """Test suite for value stringification and date formatting."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (3.0, "3"),
            (2.5, "2.5"),
            (True, "true"),
            (False, "false"),
            (7, "7"),
            ("text", "text"),
            (None, None),
        ],
    )
    def test_stringify(self, value, expected):
        assert stringify(value) == expected

    def test_iso_date_has_no_timezone_shift(self):
        assert format_date_for_report("2024-03-05") == "Mar 05, 2024"
        assert format_date_for_report("2024-12-31") == "Dec 31, 2024"

    def test_other_date_formats(self):
        assert format_date_for_report("03/05/2024") == "Mar 05, 2024"
        assert format_date_for_report("2024-03-05T10:30:00") == "Mar 05, 2024"

    def test_unparseable_date_unchanged(self):
        assert format_date_for_report("N/A") == "N/A"
        assert format_date_for_report("2024-13-45") == "2024-13-45"
        assert format_date_for_report(42) == 42


class TestTemplateRenderer:
    """Test suite for TemplateRenderer."""

    @pytest.fixture
    def renderer(self):
        return TemplateRenderer()

    def test_missing_value_renders_placeholder(self, docx_factory, tmp_path):
        """Test that missing and blank values become [name]."""
        source = docx_factory("t.docx", ["A={{a}} B={{b}} C={{c}}"])
        out = render_file(source, tmp_path, [variable("a"), variable("b"), variable("c")], {"a": "x", "b": ""})
        assert docx_text(out) == ["A=x B=[b] C=[c]"]

    def test_token_split_across_runs(self, docx_factory, tmp_path):
        source = docx_factory("t.docx", [["Hello {{na", "me}}!"]])
        out = render_file(source, tmp_path, [variable("name")], {"name": "World"})
        assert docx_text(out) == ["Hello World!"]

    def test_kml_aliasing(self, renderer):
        """Test that a KML value is published under its field and its own name."""
        var = variable("parcel", type=VariableType.KML, kml_field="PARCEL_ID")
        subs = renderer.build_substitutions([var], {"kmlData": {"PARCEL_ID": 1234.0}})
        assert subs["parcel"] == "1234"
        assert subs["PARCEL_ID"] == "1234"

    def test_kml_falls_back_to_values(self, renderer):
        var = variable("parcel", type=VariableType.KML, kml_field="PARCEL_ID")
        subs = renderer.build_substitutions([var], {"parcel": "P-9"})
        assert subs["parcel"] == "P-9"
        assert subs["PARCEL_ID"] == "P-9"

    def test_calculated_and_date_values(self, renderer):
        """Test calculated expressions, date formatting and image blanking."""
        variables = [
            variable("width", type=VariableType.TEXT),
            variable("height", type=VariableType.TEXT),
            variable("area", type=VariableType.CALCULATED, expression="width * height"),
            variable("broken", type=VariableType.CALCULATED, expression="__import__('os')"),
            variable("visited", type=VariableType.DATE),
            variable("photo", type=VariableType.IMAGE),
        ]
        subs = renderer.build_substitutions(
            variables,
            {"width": "2.5", "height": 4, "visited": "2024-03-05", "photo": "data:image/png;base64,AAAA"},
        )
        assert stringify(subs["area"]) == "10"
        assert subs["broken"] is None
        assert subs["visited"] == "Mar 05, 2024"
        assert subs["photo"] is None

    def test_oversized_calculated_value_renders_placeholder(self, docx_factory, tmp_path):
        """Test that a calculation too large to print leaves generation intact."""
        source = docx_factory("t.docx", ["Total: {{big}}"])
        variables = [variable("big", type=VariableType.CALCULATED, expression="(10**99)**50")]
        out = render_file(source, tmp_path, variables, {})
        assert docx_text(out) == ["Total: [big]"]

    def test_multiline_value_renders_line_breaks(self, docx_factory, tmp_path):
        source = docx_factory("t.docx", ["Address: {{addr}}"])
        out = render_file(source, tmp_path, [variable("addr")], {"addr": "1 Main St\nSpringfield"})
        with zipfile.ZipFile(out) as zf:
            document = zf.read("word/document.xml").decode("utf-8")
        assert "<w:br/>" in document
        assert "1 Main St" in document and "Springfield" in document

    def test_render_is_idempotent(self, docx_factory, tmp_path):
        """Test that re-rendering a rendered package changes nothing."""
        source = docx_factory("t.docx", ["Client: {{client}}"])
        first = render_file(source, tmp_path, [variable("client")], {"client": "Acme"}, "first.docx")
        second = render_file(first, tmp_path, [variable("client")], {"client": "Acme"}, "second.docx")
        with zipfile.ZipFile(first) as a, zipfile.ZipFile(second) as b:
            assert a.read("word/document.xml") == b.read("word/document.xml")

    @pytest.mark.parametrize("text", ["Broken {{name", "Broken name}}", "Empty {{}} tag"])
    def test_malformed_tags_fail(self, renderer, docx_factory, text):
        package = DocxPackage.open(docx_factory("t.docx", [text]))
        with pytest.raises(RenderingError) as exc_info:
            renderer.render(package, {})
        assert exc_info.value.message == "Template rendering failed"

    def test_update_fields_flag(self, docx_factory):
        """Test that the settings part asks Word to refresh fields."""
        package = DocxPackage.open(docx_factory("t.docx", ["x"]))
        enable_update_fields_on_open(package)
        enable_update_fields_on_open(package)
        settings_xml = package.read(SETTINGS_PART)
        assert settings_xml.count("updateFields") == 1
        assert 'w:val="true"' in settings_xml

    def test_update_fields_creates_settings(self):
        package = DocxPackage({"word/document.xml": b"<x/>"})
        enable_update_fields_on_open(package)
        assert "updateFields" in package.read(SETTINGS_PART)
