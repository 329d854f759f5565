"""Shared fixtures: throwaway storage, Word packages and external process fakes."""

import base64
import io
import os
import tempfile
from pathlib import Path

# Module-level app creation in reportforge.main reads these
_SESSION_ROOT = Path(tempfile.mkdtemp(prefix="reportforge-tests-"))
os.environ.setdefault("UPLOAD_DIR", str(_SESSION_ROOT / "uploads"))
os.environ.setdefault("LOG_DIR", str(_SESSION_ROOT / "logs"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_SESSION_ROOT / 'session.db'}")

import pytest
from docx import Document
from docx.shared import Inches
from PIL import Image

from reportforge.core.config import Settings, StoragePaths
from reportforge.interfaces.errors import ConversionError, ExternalRendererNotFound
from reportforge.interfaces.office import BaseDocumentRenderer, BasePageRasterizer


# =============================================================================
# Images
# =============================================================================


def png_bytes(size: tuple[int, int] = (10, 10), color: str = "red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_url(size: tuple[int, int] = (10, 10), color: str = "red") -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(size, color)).decode("ascii")


# =============================================================================
# Word packages
# =============================================================================


def build_docx(path: Path, paragraphs: list[list[str] | str], picture: tuple[int, int] | None = None) -> Path:
    """Write a package with python-docx.

    Each paragraph is a string (one run) or a list of strings (one run
    each). ``picture`` adds an image of that pixel size one inch wide.
    """
    document = Document()
    for paragraph in paragraphs:
        runs = [paragraph] if isinstance(paragraph, str) else paragraph
        p = document.add_paragraph()
        for text in runs:
            p.add_run(text)
    if picture is not None:
        document.add_picture(io.BytesIO(png_bytes(picture, "blue")), width=Inches(1))
    document.save(str(path))
    return path


def docx_text(path: Path) -> list[str]:
    """Body paragraph texts of a package."""
    return [p.text for p in Document(str(path)).paragraphs]


@pytest.fixture
def docx_factory(tmp_path):
    """Build packages inside the test's temporary directory."""

    def factory(name: str, paragraphs, picture=None) -> Path:
        return build_docx(tmp_path / name, paragraphs, picture)

    return factory


# =============================================================================
# Settings and storage
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated in the test's temporary directory."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        upload_dir=tmp_path / "uploads",
        log_dir=tmp_path / "logs",
        libreoffice_path="soffice-test",
    )


@pytest.fixture
def storage(settings) -> StoragePaths:
    return settings.storage


# =============================================================================
# External process fakes
# =============================================================================


class FakeOffice(BaseDocumentRenderer):
    """Records invocations instead of starting LibreOffice."""

    def __init__(self, fail_conversion: bool = False, available: bool = True, on_macro=None) -> None:
        self.fail_conversion = fail_conversion
        self.available = available
        self.on_macro = on_macro
        self.macros = []
        self.conversions = []

    async def convert(self, input_path: Path, target_filter: str, output_dir: Path) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        produced = output_dir / f"{input_path.stem}.{target_filter.split(':', 1)[0]}"
        produced.write_bytes(b"%PDF-1.4\n% fake\n")
        return produced

    async def convert_docx_to_pdf(self, input_path: Path, output_dir: Path) -> Path:
        self.conversions.append(Path(input_path))
        if self.fail_conversion:
            raise ConversionError("PDF conversion failed", detail="filter rejected the document")
        return await self.convert(Path(input_path), "pdf", output_dir)

    async def run_macro(self, command) -> None:
        self.macros.append(command)
        if self.on_macro is not None:
            self.on_macro(command)

    async def check_available(self) -> None:
        if not self.available:
            raise ExternalRendererNotFound("LibreOffice not found or not accessible", detail="soffice-test")


class FakeRasterizer(BasePageRasterizer):
    """Writes a fixed number of page images for any PDF."""

    def __init__(self, pages: int = 2) -> None:
        self.pages = pages
        self.calls = []

    async def rasterize(self, pdf_path: Path, output_dir: Path, prefix: str = "page", dpi: int | None = None):
        self.calls.append(Path(pdf_path))
        output_dir.mkdir(parents=True, exist_ok=True)
        produced = []
        for number in range(1, self.pages + 1):
            page = output_dir / f"{prefix}-{number}.png"
            page.write_bytes(png_bytes((20, 30), "white"))
            produced.append(page)
        return produced


@pytest.fixture
def fake_office() -> FakeOffice:
    return FakeOffice()


@pytest.fixture
def fake_rasterizer() -> FakeRasterizer:
    return FakeRasterizer()
