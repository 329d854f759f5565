"""External process interfaces.

The document renderer (headless LibreOffice) and the page rasterizer
(pdftoppm) are opaque collaborators driven through their command lines.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


class BaseDocumentRenderer(ABC):
    """Abstract base class for the external document renderer.

    Every invocation runs with its own disposable session profile.
    """

    @abstractmethod
    async def convert(self, input_path: Path, target_filter: str, output_dir: Path) -> Path:
        """Convert a document with the given export filter.

        Args:
            input_path: Document to convert.
            target_filter: Filter name, e.g. ``pdf:writer_pdf_Export``.
            output_dir: Directory receiving the converted file.

        Returns:
            Path of the converted file.

        Raises:
            ExternalRendererError: If the invocation fails.
        """

    @abstractmethod
    async def convert_docx_to_pdf(self, input_path: Path, output_dir: Path) -> Path:
        """Convert DOCX to PDF, trying fallback filters and executables.

        Raises:
            ConversionError: If every attempt fails.
        """

    @abstractmethod
    async def run_macro(self, command: Any) -> None:
        """Invoke an automation routine.

        Args:
            command: A MacroCommand.

        Raises:
            ExternalRendererError: If the invocation fails.
        """

    @abstractmethod
    async def check_available(self) -> None:
        """Verify the renderer executable can be started.

        Raises:
            ExternalRendererNotFound: If it cannot.
        """


class BasePageRasterizer(ABC):
    """Abstract base class for PDF page rasterizers."""

    @abstractmethod
    async def rasterize(
        self,
        pdf_path: Path,
        output_dir: Path,
        prefix: str = "page",
        dpi: int | None = None,
    ) -> list[Path]:
        """Render one PNG per page.

        Returns:
            Page images sorted by numeric page index.

        Raises:
            RasterizationError: If the rasterizer fails.
        """
