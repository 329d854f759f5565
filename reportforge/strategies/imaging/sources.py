"""Image reference resolution.

Report values reference images as inline ``data:`` URLs, server-relative
``/uploads/images/<file>`` paths or absolute http(s) URLs. The resolver
turns any of them into raw bytes (for direct package substitution) or a
local file (for the anchor-replace routine).
"""

import base64
import binascii
import io
import logging
import re
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import httpx
from PIL import Image, UnidentifiedImageError

from reportforge.interfaces.errors import ImageResolutionError
from reportforge.pipeline.artifacts import unique_name

logger = logging.getLogger(__name__)

LOCAL_IMAGE_PREFIX = "/uploads/images/"
LOCAL_IMAGE_URL = re.compile(r"/uploads/images/[A-Za-z0-9._%-]+")


def normalize_local_image_url(value: Any) -> str:
    """Return the ``/uploads/images/<file>`` part of a reference, or ""."""
    if not isinstance(value, str):
        return ""
    text = value.strip()
    if not text:
        return ""
    match = LOCAL_IMAGE_URL.search(text)
    if match:
        return match.group(0)
    if text.startswith("uploads/images/"):
        return "/" + text
    return ""


def collect_local_image_urls(value: Any) -> set[str]:
    """Every local image URL referenced anywhere inside a nested value."""
    found: set[str] = set()

    def visit(item: Any) -> None:
        if item is None:
            return
        if isinstance(item, str):
            url = normalize_local_image_url(item)
            if url:
                found.add(url)
        elif isinstance(item, dict):
            for nested in item.values():
                visit(nested)
        elif isinstance(item, (list, tuple, set)):
            for nested in item:
                visit(nested)

    visit(value)
    return found


class ImageSourceResolver:
    """Resolves image references against the local images directory.

    Local references are confined to ``images_dir``; a reference that
    escapes it (``..`` segments, absolute paths) does not resolve.
    """

    def __init__(
        self,
        images_dir: Path,
        fetch_timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.images_dir = Path(images_dir).resolve()
        self.fetch_timeout = fetch_timeout
        self._transport = transport

    def local_path_for(self, reference: str) -> Path | None:
        """Filesystem path of a local image reference, confined to the images directory."""
        url = normalize_local_image_url(reference)
        if not url:
            return None
        file_name = unquote(url[len(LOCAL_IMAGE_PREFIX):])
        if not file_name:
            return None
        candidate = (self.images_dir / file_name).resolve()
        if not candidate.is_relative_to(self.images_dir) or candidate == self.images_dir:
            logger.warning(f"Rejected image reference outside images directory: {reference}")
            return None
        return candidate

    async def fetch_bytes(self, reference: Any) -> bytes:
        """Raw bytes for an image reference.

        Raises:
            ImageResolutionError: If the reference is empty, unsupported,
                missing on disk or cannot be downloaded.
        """
        if not isinstance(reference, str) or not reference.strip():
            raise ImageResolutionError("Empty image reference")
        reference = reference.strip()

        if reference.startswith("data:"):
            return self._decode_data_url(reference)

        if re.match(r"^https?://", reference, re.IGNORECASE):
            return await self._download(reference)

        path = self.local_path_for(reference)
        if path is None:
            raise ImageResolutionError("Unsupported image reference", detail=reference[:200])
        try:
            return path.read_bytes()
        except OSError as e:
            raise ImageResolutionError("Local image unreadable", detail=str(e)) from e

    async def materialize(self, reference: Any, work_dir: Path) -> tuple[Path, bool]:
        """A local file holding the referenced image.

        Existing local images are used in place. Inline and remote images
        are re-encoded as PNG into ``work_dir``.

        Returns:
            (path, created) where ``created`` tells the caller it owns the file.

        Raises:
            ImageResolutionError: If the reference cannot be resolved.
        """
        if isinstance(reference, str) and reference.strip().startswith(("/uploads/", "uploads/")):
            path = self.local_path_for(reference)
            if path is not None and path.is_file():
                return path, False

        data = await self.fetch_bytes(reference)
        work_dir.mkdir(parents=True, exist_ok=True)
        out = work_dir / unique_name("macro", ".png")
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.save(out, format="PNG")
        except (UnidentifiedImageError, OSError) as e:
            raise ImageResolutionError("Image data could not be decoded", detail=str(e)) from e
        return out, True

    @staticmethod
    def _decode_data_url(reference: str) -> bytes:
        header, _, payload = reference.partition(",")
        if not payload:
            raise ImageResolutionError("Data URL has no payload")
        try:
            if ";base64" in header:
                return base64.b64decode(payload, validate=False)
            return unquote(payload).encode("latin-1")
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            raise ImageResolutionError("Malformed data URL", detail=str(e)) from e

    async def _download(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self.fetch_timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise ImageResolutionError("Remote image fetch failed", detail=str(e)) from e
