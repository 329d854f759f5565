"""Addressable view of the text runs inside a WordprocessingML part.

Word splits visible text across many ``<w:t>`` nodes (spell-check
marks, revision ids, formatting changes). ``TextRunIndex`` flattens the
nodes of one part into a single string, maps flat offsets back to
(node, offset) pairs and rewrites node text by reference, so a phrase
can be found and replaced even when it straddles several runs.
"""

import bisect
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass

from lxml import etree

from reportforge.interfaces.errors import PackageError
from reportforge.strategies.template_engine.package import DocxPackage

logger = logging.getLogger(__name__)

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
W_T = f"{{{W_NS}}}t"
W_BR = f"{{{W_NS}}}br"
XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"
NBSP = "\u00a0"

_TOKEN_OPEN_WS = re.compile(r"\{\{\s+")
_TOKEN_CLOSE_WS = re.compile(r"\s+\}\}")


def normalize_spaces(text: str) -> str:
    """Map non-breaking spaces to regular spaces (length preserving)."""
    return text.replace(NBSP, " ")


def parse_xml(data: bytes) -> etree._ElementTree:
    """Parse an XML part without resolving entities or dropping whitespace."""
    parser = etree.XMLParser(resolve_entities=False, huge_tree=True, remove_blank_text=False)
    try:
        root = etree.fromstring(data, parser)
    except etree.XMLSyntaxError as e:
        raise PackageError("Malformed XML part", detail=str(e)) from e
    return root.getroottree()


def serialize_xml(tree: etree._ElementTree) -> bytes:
    """Serialize a parsed part, keeping its declaration's standalone flag."""
    return etree.tostring(
        tree,
        xml_declaration=True,
        encoding="UTF-8",
        standalone=tree.docinfo.standalone,
    )


def _set_text(node: etree._Element, text: str) -> None:
    node.text = text
    node.set(XML_SPACE, "preserve")


@dataclass
class _Run:
    node: etree._Element
    start: int
    end: int


class TextRunIndex:
    """Flat, mutable index over every ``<w:t>`` node of one XML tree.

    Offsets refer to ``text``, the concatenation of all node contents with
    non-breaking spaces normalized. Mutations go straight to the nodes;
    call ``rebuild`` (or pass ``rebuild=True``) before searching again.
    """

    def __init__(self, root: etree._Element) -> None:
        self._root = root
        self._runs: list[_Run] = []
        self._starts: list[int] = []
        self._text = ""
        self.rebuild()

    @property
    def text(self) -> str:
        return self._text

    @property
    def node_count(self) -> int:
        return len(self._runs)

    def rebuild(self) -> None:
        """Re-scan the tree; required after any mutation that shifts offsets."""
        runs: list[_Run] = []
        chunks: list[str] = []
        pos = 0
        for node in self._root.iter(W_T):
            content = node.text or ""
            runs.append(_Run(node, pos, pos + len(content)))
            chunks.append(normalize_spaces(content))
            pos += len(content)
        self._runs = runs
        self._starts = [run.start for run in runs]
        self._text = "".join(chunks)

    def find(self, needle: str, start: int = 0) -> int:
        """First flat offset of ``needle`` at or after ``start``, or -1."""
        if not needle:
            return -1
        return self._text.find(normalize_spaces(needle), start)

    def locate(self, pos: int) -> tuple[int, int]:
        """Map a flat character offset to (run index, offset inside run)."""
        if pos < 0 or pos >= len(self._text):
            raise IndexError(f"Offset {pos} outside text of length {len(self._text)}")
        idx = bisect.bisect_right(self._starts, pos) - 1
        run = self._runs[idx]
        return idx, pos - run.start

    def replace_range(self, start: int, end: int, replacement: str, rebuild: bool = True) -> None:
        """Replace flat range ``[start, end)`` with ``replacement``.

        Within one node the substring is replaced in place. Across nodes
        the first node keeps its head plus the replacement, every fully
        covered node is blanked and the last node keeps its tail, so the
        surrounding run formatting survives. Newlines in ``replacement``
        become ``<w:br/>`` elements inside the first node's run.

        Replacements may be batched back-to-front with ``rebuild=False``:
        offsets before ``start`` stay valid.
        """
        if start >= end:
            raise ValueError("Empty replacement range")

        first_idx, first_off = self.locate(start)
        last_idx, last_off = self.locate(end - 1)
        last_off += 1

        first = self._runs[first_idx].node
        first_text = first.text or ""

        if first_idx == last_idx:
            self._write_value(first, first_text[:first_off], replacement, first_text[last_off:])
        else:
            # Last node keeps its tail, covered nodes are blanked
            last = self._runs[last_idx].node
            _set_text(last, (last.text or "")[last_off:])
            for idx in range(last_idx - 1, first_idx, -1):
                _set_text(self._runs[idx].node, "")
            self._write_value(first, first_text[:first_off], replacement, "")

        if rebuild:
            self.rebuild()

    def _write_value(self, node: etree._Element, prefix: str, value: str, suffix: str) -> None:
        lines = value.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        if len(lines) == 1:
            _set_text(node, prefix + value + suffix)
            return

        parent = node.getparent()
        _set_text(node, prefix + lines[0])
        anchor = node
        for line in lines[1:]:
            # SubElement picks up the ancestor's w: prefix; addnext then positions it
            br = etree.SubElement(parent, W_BR)
            text_node = etree.SubElement(parent, W_T)
            _set_text(text_node, line)
            anchor.addnext(br)
            br.addnext(text_node)
            anchor = text_node
        _set_text(anchor, (anchor.text or "") + suffix)

    def normalize_token_whitespace(self) -> bool:
        """Strip whitespace just inside ``{{`` and ``}}`` in every node.

        Returns:
            True if any node changed.
        """
        changed = False
        for run in self._runs:
            content = run.node.text or ""
            cleaned = _TOKEN_CLOSE_WS.sub("}}", _TOKEN_OPEN_WS.sub("{{", content))
            if cleaned != content:
                _set_text(run.node, cleaned)
                changed = True
        if changed:
            self.rebuild()
        return changed


class XmlTextPart:
    """A parsed package part together with its text-run index."""

    def __init__(self, name: str, data: bytes) -> None:
        self.name = name
        self.tree = parse_xml(data)
        self.index = TextRunIndex(self.tree.getroot())
        self.modified = False

    def to_bytes(self) -> bytes:
        return serialize_xml(self.tree)


def iter_text_parts(package: DocxPackage) -> Iterator[XmlTextPart]:
    """Yield every part that contains at least one text node."""
    for name in package.text_parts():
        data = package.read_bytes(name)
        if not data or W_NS.encode("ascii") not in data:
            continue
        part = XmlTextPart(name, data)
        if part.index.node_count:
            yield part


def commit_parts(package: DocxPackage, parts: list[XmlTextPart]) -> int:
    """Write modified parts back into the package; returns how many."""
    written = 0
    for part in parts:
        if part.modified:
            package.write(part.name, part.to_bytes())
            written += 1
    return written


def package_contains_text(package: DocxPackage, needle: str) -> bool:
    """Whether ``needle`` occurs in the flattened text of any text part."""
    if not needle:
        return False
    target = normalize_spaces(needle)
    return any(target in part.index.text for part in iter_text_parts(package))
