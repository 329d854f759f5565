"""PDF page rasterizer backed by poppler's ``pdftoppm``."""

import asyncio
import logging
import re
from pathlib import Path

from reportforge.core.config import Settings
from reportforge.interfaces.errors import RasterizationError
from reportforge.interfaces.office import BasePageRasterizer
from reportforge.strategies.office.soffice import communicate_within

logger = logging.getLogger(__name__)

PAGE_NUMBER = re.compile(r"-(\d+)\.png$", re.IGNORECASE)


def page_number(path: Path) -> int:
    match = PAGE_NUMBER.search(path.name)
    return int(match.group(1)) if match else 0


def sorted_pages(output_dir: Path, prefix: str) -> list[Path]:
    """Page images for ``prefix`` ordered by page index (page-10 after page-9)."""
    pages = [
        p
        for p in output_dir.iterdir()
        if p.name.startswith(f"{prefix}-") and p.name.lower().endswith(".png")
    ]
    return sorted(pages, key=page_number)


class PdftoppmRasterizer(BasePageRasterizer):
    """Renders one PNG per PDF page."""

    def __init__(self, executable: str = "pdftoppm", dpi: int = 200, timeout: float = 300.0) -> None:
        self.executable = executable
        self.dpi = dpi
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "PdftoppmRasterizer":
        return cls(
            executable=settings.pdftoppm_path,
            dpi=settings.appendix_dpi,
            timeout=settings.rasterizer_timeout_seconds,
        )

    async def rasterize(
        self,
        pdf_path: Path,
        output_dir: Path,
        prefix: str = "page",
        dpi: int | None = None,
    ) -> list[Path]:
        """Rasterize ``pdf_path`` into ``output_dir/<prefix>-N.png``.

        Raises:
            RasterizationError: If pdftoppm is missing, fails, times out or
                produces no pages.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        argv = [
            self.executable,
            "-png",
            "-r",
            str(dpi or self.dpi),
            str(pdf_path),
            str(output_dir / prefix),
        ]
        logger.info(f"Rasterizing {pdf_path.name} at {dpi or self.dpi} DPI")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise RasterizationError("pdftoppm not found", detail=str(e)) from e

        try:
            stdout, stderr = await communicate_within(process, self.timeout)
        except TimeoutError as e:
            raise RasterizationError("pdftoppm timed out", detail=f"exceeded {self.timeout:g}s") from e

        if process.returncode != 0:
            detail = (
                stderr.decode("utf-8", errors="replace").strip()
                or stdout.decode("utf-8", errors="replace").strip()
                or f"exit code {process.returncode}"
            )
            raise RasterizationError("pdftoppm failed", detail=detail)

        pages = sorted_pages(output_dir, prefix)
        if not pages:
            raise RasterizationError("pdftoppm produced no pages", detail=str(pdf_path))
        logger.info(f"Rasterized {len(pages)} page(s) from {pdf_path.name}")
        return pages
