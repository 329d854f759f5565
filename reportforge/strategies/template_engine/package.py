"""Word package reader/writer.

A DOCX file is a ZIP container of named parts. ``DocxPackage`` loads
every part's raw bytes once, decodes text on request, and only touches
the disk on an explicit ``save`` or ``to_bytes`` call.
"""

import io
import logging
import posixpath
import zipfile
from pathlib import Path

from reportforge.interfaces.errors import PackageError

logger = logging.getLogger(__name__)

CONTENT_TYPES_PART = "[Content_Types].xml"
SETTINGS_PART = "word/settings.xml"
MEDIA_PREFIX = "word/media/"


class DocxPackage:
    """In-memory view of a Word package.

    Part bytes are kept exactly as stored in the archive; writing a part
    replaces it in memory and leaves every other part byte-identical.

    Example:
        ```python
        package = DocxPackage.open("template.docx")
        xml = package.read("word/document.xml")
        package.write("word/document.xml", xml.replace("a", "b"))
        package.save("filled.docx")
        ```
    """

    def __init__(self, parts: dict[str, bytes], compression: dict[str, int] | None = None) -> None:
        self._parts = parts
        self._compression = compression or {}

    @classmethod
    def open(cls, source: str | Path | bytes) -> "DocxPackage":
        """Load a package from a path or raw bytes.

        Raises:
            FileNotFoundError: If a path is given and doesn't exist.
            PackageError: If the archive is unreadable or corrupt.
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.exists():
                raise FileNotFoundError(f"Package not found: {source}")
            data = path.read_bytes()
        else:
            data = source

        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                parts: dict[str, bytes] = {}
                compression: dict[str, int] = {}
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    parts[info.filename] = zf.read(info)
                    compression[info.filename] = info.compress_type
        except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
            raise PackageError("Unreadable document package", detail=str(e)) from e

        if not parts:
            raise PackageError("Document package is empty")

        return cls(parts, compression)

    def read(self, part_name: str) -> str | None:
        """Return a part decoded as UTF-8 text, or None if absent."""
        data = self._parts.get(part_name)
        if data is None:
            return None
        return data.decode("utf-8")

    def read_bytes(self, part_name: str) -> bytes | None:
        """Return a part's raw bytes, or None if absent."""
        return self._parts.get(part_name)

    def write(self, part_name: str, data: bytes | str) -> None:
        """Replace (or add) a part."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._parts[part_name] = data

    def has_part(self, part_name: str) -> bool:
        return part_name in self._parts

    def list_parts(self, prefix: str = "") -> list[str]:
        """Part names starting with ``prefix``, in archive order."""
        return [name for name in self._parts if name.startswith(prefix)]

    def text_parts(self) -> list[str]:
        """XML parts under word/ that may carry text (relationship parts excluded)."""
        return [
            name
            for name in self._parts
            if name.startswith("word/") and name.endswith(".xml") and "/_rels/" not in name
        ]

    def media_parts(self) -> list[str]:
        return self.list_parts(MEDIA_PREFIX)

    @staticmethod
    def rels_part_for(part_name: str) -> str:
        """Relationship part that belongs to ``part_name``."""
        folder, base = posixpath.split(part_name)
        return posixpath.join(folder, "_rels", f"{base}.rels")

    @staticmethod
    def resolve_target(source_part: str, target: str) -> str:
        """Resolve a relationship target relative to the part that owns it."""
        if target.startswith("/"):
            return target.lstrip("/")
        folder = posixpath.dirname(source_part)
        return posixpath.normpath(posixpath.join(folder, target))

    def to_bytes(self) -> bytes:
        """Serialize the package into a new ZIP archive."""
        buffer = io.BytesIO()
        names = list(self._parts)
        # Content types first, as Office writes it
        if CONTENT_TYPES_PART in names:
            names.remove(CONTENT_TYPES_PART)
            names.insert(0, CONTENT_TYPES_PART)

        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for name in names:
                compress_type = self._compression.get(name, zipfile.ZIP_DEFLATED)
                zf.writestr(name, self._parts[name], compress_type=compress_type)
        return buffer.getvalue()

    def save(self, path: str | Path) -> Path:
        """Serialize the package to ``path``."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_bytes())
        logger.debug(f"Package written: {path}")
        return path
