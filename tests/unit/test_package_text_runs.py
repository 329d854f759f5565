"""Unit tests for package access and the text-run index."""

import zipfile

import pytest
from lxml import etree

from reportforge.interfaces.errors import PackageError
from reportforge.strategies.template_engine.package import DocxPackage
from reportforge.strategies.template_engine.text_runs import (
    W_BR,
    W_NS,
    W_T,
    TextRunIndex,
    package_contains_text,
)


def paragraph_xml(*runs: str) -> bytes:
    body = "".join(f'<w:r><w:t xml:space="preserve">{text}</w:t></w:r>' for text in runs)
    return (
        f'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<w:document xmlns:w="{W_NS}"><w:body><w:p>{body}</w:p></w:body></w:document>'
    ).encode("utf-8")


def index_for(*runs: str) -> TextRunIndex:
    return TextRunIndex(etree.fromstring(paragraph_xml(*runs)))


def node_texts(index: TextRunIndex) -> list[str]:
    return [node.text or "" for node in index._root.iter(W_T)]


# =============================================================================
# Package Tests
# =============================================================================


class TestDocxPackage:
    """Test suite for DocxPackage."""

    def test_open_missing_file(self, tmp_path):
        """Test that a missing path raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            DocxPackage.open(tmp_path / "missing.docx")

    def test_open_corrupt_archive(self, tmp_path):
        """Test that a non-ZIP file raises PackageError."""
        bad = tmp_path / "bad.docx"
        bad.write_bytes(b"this is not a zip archive")
        with pytest.raises(PackageError):
            DocxPackage.open(bad)

    def test_untouched_parts_survive_round_trip(self, docx_factory, tmp_path):
        """Test that rewriting one part leaves every other part byte-identical."""
        source = docx_factory("in.docx", ["Hello world"])
        package = DocxPackage.open(source)
        original = {name: package.read_bytes(name) for name in package.list_parts()}

        package.write("word/document.xml", package.read("word/document.xml").replace("Hello", "Howdy"))
        out = package.save(tmp_path / "out.docx")

        with zipfile.ZipFile(out) as zf:
            names = zf.namelist()
            assert names[0] == "[Content_Types].xml"
            for name, data in original.items():
                if name == "word/document.xml":
                    assert b"Howdy" in zf.read(name)
                else:
                    assert zf.read(name) == data

    def test_text_parts_exclude_relationships(self, docx_factory):
        """Test that relationship parts are never treated as text parts."""
        package = DocxPackage.open(docx_factory("t.docx", ["x"]))
        parts = package.text_parts()
        assert "word/document.xml" in parts
        assert not any("/_rels/" in name for name in parts)

    def test_rels_part_and_target_resolution(self):
        """Test relationship part naming and relative target resolution."""
        assert DocxPackage.rels_part_for("word/document.xml") == "word/_rels/document.xml.rels"
        assert DocxPackage.resolve_target("word/document.xml", "media/image1.png") == "word/media/image1.png"
        assert DocxPackage.resolve_target("word/header1.xml", "../customXml/item1.xml") == "customXml/item1.xml"
        assert DocxPackage.resolve_target("word/document.xml", "/word/media/a.png") == "word/media/a.png"


# =============================================================================
# Text-Run Index Tests
# =============================================================================


class TestTextRunIndex:
    """Test suite for TextRunIndex."""

    def test_flattened_text_and_locate(self):
        """Test offsets map back to the right node."""
        index = index_for("Acme ", "Cor", "p Ltd")
        assert index.text == "Acme Corp Ltd"
        assert index.locate(0) == (0, 0)
        assert index.locate(5) == (1, 0)
        assert index.locate(8) == (2, 0)
        with pytest.raises(IndexError):
            index.locate(len(index.text))

    def test_nbsp_matches_regular_space(self):
        """Test that a non-breaking space in the package matches a plain space."""
        index = index_for("Acme\u00a0Corp")
        assert index.find("Acme Corp") == 0

    def test_replace_within_single_node(self):
        """Test in-node replacement keeps the head and tail."""
        index = index_for("Client: Acme Corp.")
        start = index.find("Acme Corp")
        index.replace_range(start, start + len("Acme Corp"), "{{client}}")
        assert index.text == "Client: {{client}}."

    def test_replace_across_nodes_keeps_boundaries(self):
        """Test a phrase spanning three runs collapses into the first run."""
        index = index_for("Prepared for Ac", "me Co", "rp on Monday")
        start = index.find("Acme Corp")
        index.replace_range(start, start + len("Acme Corp"), "{{client}}")

        assert index.text == "Prepared for {{client}} on Monday"
        assert node_texts(index) == ["Prepared for {{client}}", "", " on Monday"]

    def test_replace_with_newlines_inserts_breaks(self):
        """Test that newlines become w:br elements, not literal text."""
        index = index_for("Address: {{addr}}!")
        start = index.find("{{addr}}")
        index.replace_range(start, start + len("{{addr}}"), "1 Main St\nSpringfield")

        run = next(index._root.iter(f"{{{W_NS}}}r"))
        children = [child.tag for child in run]
        assert children == [W_T, W_BR, W_T]
        assert node_texts(index) == ["Address: 1 Main St", "Springfield!"]
        assert "\n" not in index.text

    def test_empty_range_rejected(self):
        """Test that an empty range is a ValueError."""
        index = index_for("abc")
        with pytest.raises(ValueError):
            index.replace_range(1, 1, "x")

    def test_normalize_token_whitespace(self):
        """Test that padding inside token braces is removed."""
        index = index_for("{{  name }} and {{other}}")
        assert index.normalize_token_whitespace() is True
        assert index.text == "{{name}} and {{other}}"
        assert index.normalize_token_whitespace() is False


class TestPackageContainsText:
    """Test suite for package-wide text search."""

    def test_finds_text_split_across_runs(self, docx_factory):
        """Test that the search sees text split across runs."""
        package = DocxPackage.open(docx_factory("s.docx", [["Site ", "photo ", "here"]]))
        assert package_contains_text(package, "Site photo here")
        assert not package_contains_text(package, "Missing phrase")
        assert not package_contains_text(package, "")
