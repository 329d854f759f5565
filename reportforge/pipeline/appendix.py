"""Appendix assembler.

Files uploaded appendix items under ``appendix/<reportId>/<itemId>/``
(``original<ext>``, ``thumb.jpg`` and, for PDFs, ``pages/page-N.png``),
keeps their order, deletes them safely and appends them to a rendered
package through the external renderer.
"""

import logging
import shutil
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from PIL import Image, ImageOps, UnidentifiedImageError

from reportforge.core.config import StoragePaths
from reportforge.interfaces.errors import ExternalRendererError, RasterizationError
from reportforge.interfaces.office import BaseDocumentRenderer, BasePageRasterizer
from reportforge.pipeline.artifacts import remove_path, unique_name
from reportforge.pipeline.models import AppendixItem, AppendixKind
from reportforge.strategies.office.soffice import FileUrlArgument, MacroCommand

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp"})
PDF_EXTENSIONS = frozenset({".pdf"})

THUMBNAIL_SIZE = (256, 256)
THUMBNAIL_QUALITY = 80


def appendix_kind_for(file_name: str) -> AppendixKind | None:
    """Kind of appendix item for an uploaded file name, None if not accepted."""
    ext = Path(file_name).suffix.lower()
    if ext in PDF_EXTENSIONS:
        return AppendixKind.PDF
    if ext in IMAGE_EXTENSIONS:
        return AppendixKind.IMAGE
    return None


def make_thumbnail(source: Path, destination: Path) -> Path:
    """Fit-inside JPEG thumbnail, aspect ratio preserved."""
    with Image.open(source) as img:
        img = ImageOps.exif_transpose(img)
        img.thumbnail(THUMBNAIL_SIZE)
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        img.save(destination, format="JPEG", quality=THUMBNAIL_QUALITY)
    return destination


def sort_items(items: Iterable[AppendixItem]) -> list[AppendixItem]:
    return sorted(items, key=lambda item: item.order)


def apply_order(items: Sequence[AppendixItem], updates: Iterable[Any]) -> list[AppendixItem]:
    """Apply ``{itemId, order}`` updates; only ``order`` ever changes.

    Unknown ids are ignored. The result is sorted by the new order.
    """
    by_id = {item.id: item for item in items}
    for update in updates:
        item_id = str(update.get("itemId") or update.get("item_id") or "")
        item = by_id.get(item_id)
        if item is None:
            continue
        try:
            item.order = int(update.get("order") or 0)
        except (TypeError, ValueError):
            item.order = 0
    return sort_items(by_id.values())


class AppendixAssembler:
    """Owns the on-disk appendix storage of every report.

    Args:
        storage: Storage layout (``storage.appendix`` is the appendix root).
        rasterizer: PDF page rasterizer.
        renderer: External renderer used to append images (optional).
        append_routine: Routine that appends one full-page image.
    """

    def __init__(
        self,
        storage: StoragePaths,
        rasterizer: BasePageRasterizer,
        renderer: BaseDocumentRenderer | None = None,
        append_routine: str = "Standard.Insert.InsertPhotoSaveAndClose_FitToPage",
    ) -> None:
        self.storage = storage
        self.rasterizer = rasterizer
        self.renderer = renderer
        self.append_routine = append_routine

    def report_root(self, report_id: str) -> Path:
        return (self.storage.appendix / str(report_id)).resolve()

    def to_url(self, path: str | None) -> str:
        """``/uploads/appendix/...`` URL of a stored file ("" if outside the root)."""
        if not path:
            return ""
        resolved = Path(path).resolve()
        root = self.storage.appendix.resolve()
        if not resolved.is_relative_to(root):
            return ""
        return "/uploads/appendix/" + resolved.relative_to(root).as_posix()

    async def ingest(
        self,
        report_id: str,
        upload: Path,
        original_name: str,
        order: int,
    ) -> AppendixItem | None:
        """File one uploaded file as a new appendix item.

        Unsupported extensions are discarded and yield None.

        Raises:
            RasterizationError: If a PDF cannot be rasterized; the item
                folder is removed first.
        """
        kind = appendix_kind_for(original_name)
        if kind is None:
            logger.info(f"Skipping unsupported appendix file: {original_name}")
            remove_path(upload)
            return None

        item_id = unique_name("item")
        item_dir = self.report_root(report_id) / item_id
        item_dir.mkdir(parents=True, exist_ok=True)
        original = item_dir / f"original{Path(original_name).suffix.lower()}"
        shutil.move(str(upload), original)

        item = AppendixItem(
            id=item_id,
            kind=kind,
            original_name=original_name,
            original_path=str(original),
            order=order,
        )

        thumb_source = original
        if kind == AppendixKind.PDF:
            try:
                pages = await self.rasterizer.rasterize(original, item_dir / "pages", prefix="page")
            except RasterizationError:
                remove_path(item_dir)
                raise
            item.page_images = [str(p) for p in pages]
            item.page_count = len(pages)
            thumb_source = pages[0]

        try:
            item.thumb_path = str(make_thumbnail(thumb_source, item_dir / "thumb.jpg"))
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Thumbnail failed for appendix item {item_id}: {e}")

        logger.info(f"Appendix item {item_id} stored for report {report_id} ({kind.value})")
        return item

    def delete_item(self, report_id: str, item: AppendixItem, remaining: int) -> None:
        """Remove an item's folder; the report folder goes with the last item.

        Only paths confirmed to sit inside the report's appendix root are
        removed recursively.
        """
        root = self.report_root(report_id)
        candidates = {(root / item.id).resolve()}
        for stored in (item.original_path, item.thumb_path):
            if stored:
                candidates.add(Path(stored).resolve().parent)

        for target in candidates:
            if target == root or not target.is_relative_to(root):
                logger.warning(f"Refusing to delete {target}: outside {root}")
                continue
            if target.exists():
                remove_path(target)

        if remaining == 0 and root.exists():
            remove_path(root)
        logger.info(f"Appendix item {item.id} deleted for report {report_id}")

    def delete_report(self, report_id: str) -> None:
        root = self.report_root(report_id)
        if root.is_relative_to(self.storage.appendix.resolve()) and root != self.storage.appendix.resolve():
            remove_path(root)

    async def append_to(self, docx_path: Path, items: Iterable[AppendixItem]) -> int:
        """Append every item, by ascending order, as full-page images.

        Failures are logged and stop the stage without aborting generation.

        Returns:
            Number of pages appended.
        """
        if self.renderer is None:
            return 0
        appended = 0
        try:
            for item in sort_items(items):
                for page in item.page_paths():
                    command = MacroCommand(
                        self.append_routine,
                        (FileUrlArgument(page), FileUrlArgument(docx_path)),
                    )
                    await self.renderer.run_macro(command)
                    appended += 1
        except (ExternalRendererError, ValueError) as e:
            logger.warning(f"Appendix append failed after {appended} page(s): {getattr(e, 'detail', e)}")
        return appended
