"""Template analyzer strategy.

Analyzes an already tokenized Word package: collects every ``{{...}}``
token (even when Word interleaved markup inside the braces) and lists
embedded media parts with the physical extent they are drawn at.
"""

import html
import logging
import re
import secrets
import time
import zipfile
from pathlib import Path

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from lxml import etree

from reportforge.interfaces.errors import PackageError
from reportforge.interfaces.template import BaseTemplateAnalyzer
from reportforge.strategies.template_engine.models import (
    DetectedToken,
    ImageExtent,
    MediaPlaceholder,
    TemplateAnalysis,
)
from reportforge.strategies.template_engine.package import DocxPackage
from reportforge.strategies.template_engine.text_runs import NBSP, parse_xml

logger = logging.getLogger(__name__)

A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
WP_NS = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"
PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"

A_BLIP = f"{{{A_NS}}}blip"
R_EMBED = f"{{{R_NS}}}embed"
R_LINK = f"{{{R_NS}}}link"
WP_EXTENT = f"{{{WP_NS}}}extent"
DRAWING_CONTAINERS = {f"{{{WP_NS}}}inline", f"{{{WP_NS}}}anchor"}

# Raw-XML token scan: braces may enclose run boundaries
TOKEN_PATTERN = re.compile(r"\{\{\s*([\s\S]*?)\s*\}\}")
TAG_PATTERN = re.compile(r"<[^>]*>")
EXTENT_PATTERN = re.compile(r"<wp:extent[^>]*cx=\"([0-9]+)\"[^>]*cy=\"([0-9]+)\"", re.IGNORECASE)

# Characters searched on each side of a blip when no drawing ancestor is found
EXTENT_WINDOW = 1500


def _new_id() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def extract_token_names(xml: str) -> list[str]:
    """Token names in one raw XML part, in document order.

    Entities are decoded, interleaved tags stripped, non-breaking spaces
    and runs of whitespace collapsed. Names still containing markup
    characters are discarded.
    """
    names: list[str] = []
    for match in TOKEN_PATTERN.finditer(xml):
        inner = html.unescape(match.group(1))
        inner = TAG_PATTERN.sub("", inner).replace(NBSP, " ")
        name = re.sub(r"\s+", " ", inner).strip()
        if not name or "<" in name or ">" in name:
            continue
        names.append(name)
    return names


def read_relationships(package: DocxPackage, part_name: str) -> dict[str, str]:
    """Map relationship id to resolved part name for ``part_name``."""
    rels_data = package.read_bytes(DocxPackage.rels_part_for(part_name))
    if not rels_data:
        return {}
    try:
        root = parse_xml(rels_data).getroot()
    except PackageError:
        logger.warning(f"Skipping malformed relationships for {part_name}")
        return {}

    rels: dict[str, str] = {}
    for rel in root.iter(f"{{{PKG_REL_NS}}}Relationship"):
        rid = rel.get("Id")
        target = rel.get("Target")
        if not rid or not target or rel.get("TargetMode") == "External":
            continue
        rels[rid] = DocxPackage.resolve_target(part_name, target)
    return rels


def _blips_for(root: etree._Element, rid: str) -> list[etree._Element]:
    return [
        blip
        for blip in root.iter(A_BLIP)
        if blip.get(R_EMBED) == rid or blip.get(R_LINK) == rid
    ]


def _extent_from_ancestors(blip: etree._Element) -> ImageExtent | None:
    for ancestor in blip.iterancestors():
        if ancestor.tag in DRAWING_CONTAINERS:
            extent = ancestor.find(WP_EXTENT)
            if extent is not None and extent.get("cx") and extent.get("cy"):
                return ImageExtent(cx=int(extent.get("cx")), cy=int(extent.get("cy")))
            return None
    return None


def _extent_from_window(xml: str, rid: str) -> ImageExtent | None:
    blip_re = re.compile(rf"<a:blip[^>]*r:(?:embed|link)=\"{re.escape(rid)}\"[^>]*/?>")
    for blip in blip_re.finditer(xml):
        start = max(0, blip.start() - EXTENT_WINDOW)
        end = min(len(xml), blip.start() + EXTENT_WINDOW)
        found = EXTENT_PATTERN.search(xml, start, end)
        if found:
            return ImageExtent(cx=int(found.group(1)), cy=int(found.group(2)))
    return None


def find_extent_for_target(package: DocxPackage, target: str) -> ImageExtent | None:
    """Physical extent of the first drawing that references media ``target``.

    Each text part is cross-referenced with its relationship part; the
    drawing container around the matching blip supplies the extent. A
    bounded text window around the blip is the fallback for unusual markup.
    """
    for part_name in package.text_parts():
        rels = read_relationships(package, part_name)
        rids = [rid for rid, full in rels.items() if full == target]
        if not rids:
            continue
        data = package.read_bytes(part_name) or b""
        try:
            root = parse_xml(data).getroot()
        except PackageError:
            continue
        xml = data.decode("utf-8", errors="replace")
        for rid in rids:
            for blip in _blips_for(root, rid):
                extent = _extent_from_ancestors(blip)
                if extent:
                    return extent
            extent = _extent_from_window(xml, rid)
            if extent:
                return extent
    return None


def relationship_ids_for_target(package: DocxPackage, target: str) -> dict[str, list[str]]:
    """Part name to relationship ids that point at media ``target``."""
    found: dict[str, list[str]] = {}
    for part_name in package.text_parts():
        rids = [rid for rid, full in read_relationships(package, part_name).items() if full == target]
        if rids:
            found[part_name] = rids
    return found


def count_paragraphs(file_path: str) -> int:
    """Body paragraph count as seen by python-docx (0 if it can't open the file)."""
    try:
        return len(Document(file_path).paragraphs)
    except (PackageNotFoundError, KeyError, ValueError, zipfile.BadZipFile, etree.XMLSyntaxError) as e:
        logger.debug(f"Paragraph count unavailable for {file_path}: {e}")
        return 0


class TemplateAnalyzer(BaseTemplateAnalyzer):
    """Enumerates tokens and media placeholders of a tokenized template."""

    def analyze_package(self, package: DocxPackage) -> TemplateAnalysis:
        """Analyze an open package.

        Tokens are deduplicated case-insensitively, keeping the first spelling.
        """
        seen: set[str] = set()
        tokens: list[DetectedToken] = []
        for part_name in package.text_parts():
            xml = package.read(part_name) or ""
            for name in extract_token_names(xml):
                canonical = name.lower()
                if canonical in seen:
                    continue
                seen.add(canonical)
                tokens.append(DetectedToken(id=_new_id(), name=name))

        media = [
            MediaPlaceholder(
                target=target,
                extent=find_extent_for_target(package, target),
                file_name=target.rsplit("/", 1)[-1],
            )
            for target in package.media_parts()
        ]
        return TemplateAnalysis(variables=tokens, media=media)

    async def analyze(self, file_path: str) -> TemplateAnalysis:
        """Analyze document to enumerate tokens and media.

        Args:
            file_path: Path to the Word package.

        Returns:
            TemplateAnalysis with tokens, media and the body paragraph count.
            An unreadable package yields an empty analysis.

        Raises:
            FileNotFoundError: If template file doesn't exist.
        """
        logger.info(f"Starting template analysis: {file_path}")

        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Template file not found: {file_path}")

        try:
            package = DocxPackage.open(path)
            analysis = self.analyze_package(package)
        except PackageError as e:
            logger.warning(f"Template analysis degraded to empty result: {e.detail}")
            return TemplateAnalysis()

        analysis.total_paragraphs = count_paragraphs(str(path))
        logger.info(
            f"Analysis complete: {len(analysis.variables)} tokens, "
            f"{len(analysis.media)} media parts"
        )
        return analysis

    @property
    def supported_extensions(self) -> set[str]:
        """Return supported file extensions."""
        return {".docx"}
