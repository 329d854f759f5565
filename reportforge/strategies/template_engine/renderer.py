"""Template renderer strategy.

Turns a report's raw values into display strings and substitutes every
``{{name}}`` token of a tokenized package. Missing values render as a
visible ``[name]`` placeholder.
"""

import logging
import math
import re
from collections.abc import Mapping
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from lxml import etree

from reportforge.interfaces.errors import PackageError, RenderingError
from reportforge.interfaces.template import BaseTemplateRenderer
from reportforge.strategies.template_engine.expressions import evaluate_or_blank
from reportforge.strategies.template_engine.models import TemplateVariable, VariableType
from reportforge.strategies.template_engine.package import SETTINGS_PART, DocxPackage
from reportforge.strategies.template_engine.text_runs import (
    W_NS,
    XmlTextPart,
    commit_parts,
    iter_text_parts,
    parse_xml,
    serialize_xml,
)

logger = logging.getLogger(__name__)

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
TOKEN = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
DELIMITER = re.compile(r"\{\{|\}\}")
EMPTY_TOKEN = re.compile(r"\{\{\s*\}\}")

FALLBACK_DATE_FORMATS = (
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
)

EMPTY_SETTINGS = (
    b'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    b'<w:settings xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main"/>'
)


def placeholder_for(name: str) -> str:
    return f"[{name}]"


def stringify(value: Any) -> str | None:
    """Display text for a substitution value (None stays None)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _display(dt: date) -> str:
    return f"{MONTHS[dt.month - 1]} {dt.day:02d}, {dt.year}"


def _parse_datetime(text: str) -> datetime | None:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None


def format_date_for_report(value: Any) -> Any:
    """Format a date value as ``Mon DD, YYYY``.

    A plain ``YYYY-MM-DD`` is taken as a calendar date with no timezone
    shift. Other parseable inputs carrying an offset are converted to
    local time first. Unparseable input is returned unchanged.
    """
    if isinstance(value, datetime):
        return _display(value.astimezone() if value.tzinfo else value)
    if isinstance(value, date):
        return _display(value)
    if not isinstance(value, str):
        return value

    text = value.strip()
    if not text:
        return value

    iso = ISO_DATE.match(text)
    if iso:
        try:
            return _display(date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3))))
        except ValueError:
            return value

    parsed = _parse_datetime(text)
    if parsed is None:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return _display(parsed)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def check_token_syntax(part: XmlTextPart) -> None:
    """Reject unclosed ``{{``, unopened ``}}`` and empty ``{{}}`` tags.

    Raises:
        RenderingError: On the first malformed delimiter found.
    """
    text = part.index.text
    if EMPTY_TOKEN.search(text):
        raise RenderingError("Template rendering failed", detail=f"Empty tag in {part.name}")

    open_at = -1
    for match in DELIMITER.finditer(text):
        if match.group() == "{{":
            if open_at != -1:
                raise RenderingError(
                    "Template rendering failed",
                    detail=f"Unclosed tag at offset {open_at} in {part.name}",
                )
            open_at = match.start()
        else:
            if open_at == -1:
                raise RenderingError(
                    "Template rendering failed",
                    detail=f"Unopened tag at offset {match.start()} in {part.name}",
                )
            open_at = -1
    if open_at != -1:
        raise RenderingError(
            "Template rendering failed",
            detail=f"Unclosed tag at offset {open_at} in {part.name}",
        )


def render_part(part: XmlTextPart, substitutions: Mapping[str, Any]) -> int:
    """Replace every token of one part; returns the number of tokens."""
    check_token_syntax(part)
    index = part.index
    matches = list(TOKEN.finditer(index.text))
    if not matches:
        return 0

    # Back-to-front keeps earlier offsets valid without rebuilding
    for match in reversed(matches):
        name = match.group(1).strip()
        value = stringify(substitutions.get(name))
        replacement = placeholder_for(name) if value is None else value
        index.replace_range(match.start(), match.end(), replacement, rebuild=False)
    index.rebuild()
    part.modified = True
    return len(matches)


def enable_update_fields_on_open(package: DocxPackage) -> None:
    """Flag the package so computed fields (TOC, indexes) refresh on open."""
    data = package.read_bytes(SETTINGS_PART)
    if not data or not data.strip():
        data = EMPTY_SETTINGS
    tree = parse_xml(data)
    root = tree.getroot()
    tag = f"{{{W_NS}}}updateFields"
    element = root.find(tag)
    if element is None:
        element = etree.SubElement(root, tag)
    element.set(f"{{{W_NS}}}val", "true")
    package.write(SETTINGS_PART, serialize_xml(tree))


class TemplateRenderer(BaseTemplateRenderer):
    """Builds substitution maps and fills tokenized packages."""

    def build_substitutions(
        self,
        variables: list[Any],
        values: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Resolve raw values into the final substitution map.

        KML variables are aliased under both their KML field and their own
        name, calculated variables are evaluated against everything known
        so far, dates are reformatted and image variables are blanked.
        Blank strings become None so they render as placeholders.
        """
        parsed = [
            v if isinstance(v, TemplateVariable) else TemplateVariable.model_validate(v)
            for v in variables
        ]
        final: dict[str, Any] = dict(values or {})

        kml_data = final.get("kmlData")
        if not isinstance(kml_data, Mapping):
            kml_data = {}

        for var in parsed:
            if var.type != VariableType.KML:
                continue
            field = var.kml_field or var.name
            if not _is_blank(kml_data.get(field)):
                resolved = kml_data.get(field)
            elif not _is_blank(final.get(field)):
                resolved = final.get(field)
            else:
                resolved = final.get(var.name)
            if resolved is not None:
                text = stringify(resolved)
                final[field] = text
                final[var.name] = text

        for var in parsed:
            if var.type == VariableType.CALCULATED:
                final[var.name] = evaluate_or_blank(var.expression, final)

        for var in parsed:
            if var.type == VariableType.DATE and not _is_blank(final.get(var.name)):
                final[var.name] = stringify(format_date_for_report(final[var.name]))

        for var in parsed:
            if var.type == VariableType.IMAGE:
                final[var.name] = None

        for key, value in final.items():
            if isinstance(value, str) and value == "":
                final[key] = None

        return final

    def render(self, package: DocxPackage, substitutions: Mapping[str, Any]) -> DocxPackage:
        """Substitute every token of every text part in place.

        Raises:
            RenderingError: On malformed tokens or a failure while rewriting parts.
        """
        try:
            parts = list(iter_text_parts(package))
            total = sum(render_part(part, substitutions) for part in parts)
            commit_parts(package, parts)
        except RenderingError:
            raise
        except (PackageError, ValueError, IndexError, etree.LxmlError) as e:
            logger.error(f"Template rendering failed: {e}", exc_info=True)
            detail = e.detail if isinstance(e, PackageError) else str(e)
            raise RenderingError("Template rendering failed", detail=detail) from e

        logger.info(f"Rendered {total} token(s) across {len(parts)} part(s)")
        return package
