"""Image compositor.

Two ways of putting a report's picture into a package:

* Direct substitution replaces the bytes of an embedded media part with
  a cover-fitted copy of the picture and declares a matching source
  rectangle crop on every drawing that shows that part.
* Anchor replace asks LibreOffice to swap one occurrence of a literal
  anchor phrase for the picture, repeating until the phrase is gone.
"""

import io
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from lxml import etree
from PIL import Image, ImageOps, UnidentifiedImageError

from reportforge.interfaces.errors import (
    ExternalRendererError,
    ImageResolutionError,
    PackageError,
)
from reportforge.interfaces.office import BaseDocumentRenderer
from reportforge.strategies.imaging.sources import ImageSourceResolver
from reportforge.strategies.office.soffice import FileUrlArgument, MacroCommand, TextArgument
from reportforge.strategies.template_engine.analyzer import (
    A_BLIP,
    A_NS,
    R_EMBED,
    R_LINK,
    find_extent_for_target,
    relationship_ids_for_target,
)
from reportforge.strategies.template_engine.models import ImageExtent, TemplateVariable, VariableType
from reportforge.strategies.template_engine.package import DocxPackage
from reportforge.strategies.template_engine.text_runs import (
    package_contains_text,
    parse_xml,
    serialize_xml,
)

logger = logging.getLogger(__name__)

A_SRC_RECT = f"{{{A_NS}}}srcRect"

# srcRect offsets are expressed in 1/100000 of the image dimension
CROP_SCALE = 100000

PIL_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".webp": "WEBP",
}


@dataclass(frozen=True)
class SrcRect:
    """Symmetric source-rectangle crop in 1/100000 units."""

    l: int = 0
    t: int = 0
    r: int = 0
    b: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.l or self.t or self.r or self.b)


def compute_crop(frame_w: float, frame_h: float, img_w: float, img_h: float) -> SrcRect | None:
    """Crop that makes an ``img_w x img_h`` picture fill a ``frame_w x frame_h`` frame.

    A picture wider than the frame loses equal slices left and right, a
    taller one loses equal slices top and bottom. Returns None when any
    dimension is not positive.

    Example:
        ```python
        compute_crop(100, 100, 200, 100)  # SrcRect(l=25000, t=0, r=25000, b=0)
        ```
    """
    if min(frame_w, frame_h, img_w, img_h) <= 0:
        return None

    frame_ar = frame_w / frame_h
    img_ar = img_w / img_h
    horizontal = vertical = 0.0
    if img_ar > frame_ar:
        target_w = img_h * frame_ar
        horizontal = (img_w - target_w) / img_w / 2
    elif img_ar < frame_ar:
        target_h = img_w / frame_ar
        vertical = (img_h - target_h) / img_h / 2

    def scaled(value: float) -> int:
        return round(max(0.0, min(1.0, value)) * CROP_SCALE)

    return SrcRect(l=scaled(horizontal), t=scaled(vertical), r=scaled(horizontal), b=scaled(vertical))


def pick_format(target: str) -> str:
    """PIL format for re-encoding a media part, by its extension (PNG when unknown)."""
    return PIL_FORMATS.get(Path(target).suffix.lower(), "PNG")


def cover_fit(data: bytes, box: tuple[int, int] | None, image_format: str) -> tuple[bytes, tuple[int, int]]:
    """Scale-and-center-crop ``data`` to fill ``box`` exactly, then re-encode.

    Without a box the picture is only re-encoded.

    Returns:
        (encoded bytes, encoded pixel size)

    Raises:
        ImageResolutionError: If the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as source:
            source.load()
            img = ImageOps.exif_transpose(source)
            if box is not None:
                img = ImageOps.fit(img, box, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
            if image_format == "JPEG" and img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            buffer = io.BytesIO()
            img.save(buffer, format=image_format)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ImageResolutionError("Image data could not be decoded", detail=str(e)) from e
    return buffer.getvalue(), img.size


def apply_src_rect(package: DocxPackage, target: str, rect: SrcRect) -> int:
    """Declare ``rect`` on every blip fill that shows media ``target``.

    An existing ``a:srcRect`` is replaced; the new one goes right after
    the blip, ahead of the fill mode element.

    Returns:
        Number of blips updated.
    """
    updated = 0
    for part_name, rids in relationship_ids_for_target(package, target).items():
        data = package.read_bytes(part_name)
        if not data:
            continue
        try:
            tree = parse_xml(data)
        except PackageError:
            logger.warning(f"Skipping crop for unparsable part {part_name}")
            continue

        changed = False
        for blip in tree.getroot().iter(A_BLIP):
            if blip.get(R_EMBED) not in rids and blip.get(R_LINK) not in rids:
                continue
            fill = blip.getparent()
            if fill is None:
                continue
            for existing in fill.findall(A_SRC_RECT):
                fill.remove(existing)
            src_rect = etree.Element(A_SRC_RECT)
            for attr in ("l", "t", "r", "b"):
                src_rect.set(attr, str(getattr(rect, attr)))
            blip.addnext(src_rect)
            changed = True
            updated += 1

        if changed:
            package.write(part_name, serialize_xml(tree))
    return updated


def media_target_for(package: DocxPackage, variable: TemplateVariable) -> str | None:
    """Declared media part of a variable, else the package's first media part."""
    if variable.image_target and variable.image_target.startswith("word/"):
        if package.has_part(variable.image_target):
            return variable.image_target
    media = package.media_parts()
    return media[0] if media else None


class ImageCompositor:
    """Places report images into packages.

    Args:
        resolver: Turns image references into bytes or local files.
        renderer: External renderer for the anchor-replace routine (optional).
        replace_routine: Routine that replaces one anchor occurrence with an image.
        max_attempts: Upper bound of anchor-replace invocations per variable.
    """

    def __init__(
        self,
        resolver: ImageSourceResolver,
        renderer: BaseDocumentRenderer | None = None,
        replace_routine: str = "Standard.Insert.InsertPhotoReplaceText_FitToPage",
        max_attempts: int = 50,
    ) -> None:
        self.resolver = resolver
        self.renderer = renderer
        self.replace_routine = replace_routine
        self.max_attempts = max_attempts

    async def substitute_media(self, package: DocxPackage, variable: TemplateVariable, reference: Any) -> bool:
        """Replace the variable's media part with the referenced picture.

        Returns:
            True if a media part was rewritten.

        Raises:
            ImageResolutionError: If the picture cannot be fetched or decoded.
        """
        target = media_target_for(package, variable)
        if target is None:
            logger.info(f"No media part to substitute for {variable.name}")
            return False

        data = await self.resolver.fetch_bytes(reference)
        extent = variable.image_extent or find_extent_for_target(package, target)
        box = extent.to_pixels() if extent else None
        encoded, (img_w, img_h) = cover_fit(data, box, pick_format(target))
        package.write(target, encoded)

        if box is not None:
            rect = compute_crop(extent.cx, extent.cy, img_w, img_h)
            if rect is not None:
                apply_src_rect(package, target, rect)
        logger.info(f"Substituted {target} for image variable {variable.name}")
        return True

    async def insert_at_anchor(
        self,
        docx_path: Path,
        variable: TemplateVariable,
        reference: Any,
        work_dir: Path,
    ) -> bool:
        """Replace every occurrence of the variable's anchor text with the picture.

        Returns:
            True once the anchor no longer occurs in the package.

        Raises:
            ImageResolutionError: If the picture cannot be materialized.
            ExternalRendererError: If the routine invocation fails.
        """
        if self.renderer is None:
            return False
        anchor = variable.anchor_text
        image_path, _ = await self.resolver.materialize(reference, work_dir)

        command = MacroCommand(
            self.replace_routine,
            (FileUrlArgument(image_path), FileUrlArgument(docx_path), TextArgument(anchor)),
        )
        for attempt in range(1, self.max_attempts + 1):
            await self.renderer.run_macro(command)
            if not package_contains_text(DocxPackage.open(docx_path), anchor):
                logger.info(f"Anchor for {variable.name} replaced after {attempt} invocation(s)")
                return True
        logger.warning(f"Anchor for {variable.name} still present after {self.max_attempts} invocations")
        return False

    async def apply_anchor_images(
        self,
        docx_path: Path,
        variables: list[TemplateVariable],
        values: Mapping[str, Any],
        work_dir: Path,
    ) -> set[str]:
        """Anchor-replace stage over a working copy on disk.

        Variables bound to a media part, without a value, or whose anchor
        is absent are left for direct substitution. Failures skip the slot.

        Returns:
            Names of variables whose anchors were replaced.
        """
        handled: set[str] = set()
        if self.renderer is None:
            return handled

        for var in variables:
            if var.type != VariableType.IMAGE or var.image_target:
                continue
            reference = values.get(var.name)
            if not reference:
                continue
            try:
                if not package_contains_text(DocxPackage.open(docx_path), var.anchor_text):
                    continue
                if await self.insert_at_anchor(docx_path, var, reference, work_dir):
                    handled.add(var.name)
            except (ImageResolutionError, ExternalRendererError, PackageError, ValueError) as e:
                detail = getattr(e, "detail", str(e))
                logger.warning(f"Skipping anchor image for {var.name}: {detail}")
        return handled

    async def apply_direct_images(
        self,
        package: DocxPackage,
        variables: list[TemplateVariable],
        values: Mapping[str, Any],
        skip: set[str] | None = None,
    ) -> set[str]:
        """Direct substitution stage over an open package.

        Variables with a declared media part always qualify; others only
        when their anchor text does not occur in the package. Failures
        skip the slot.

        Returns:
            Names of variables whose media part was rewritten.
        """
        skip = skip or set()
        done: set[str] = set()
        for var in variables:
            if var.type != VariableType.IMAGE or var.name in skip:
                continue
            reference = values.get(var.name)
            if not reference:
                continue
            if not var.image_target and package_contains_text(package, var.anchor_text):
                continue
            try:
                if await self.substitute_media(package, var, reference):
                    done.add(var.name)
            except (ImageResolutionError, PackageError) as e:
                logger.warning(f"Skipping image substitution for {var.name}: {e.detail}")
        return done


def extent_for(variable: TemplateVariable, package: DocxPackage) -> ImageExtent | None:
    """Stored extent of an image variable, looked up in the package when missing."""
    if variable.image_extent:
        return variable.image_extent
    if variable.image_target:
        return find_extent_for_target(package, variable.image_target)
    return None
