"""Image upload API route.

Stores images referenced by report values under the images directory and
hands back the server-relative URL the values should carry.
"""

import logging
import secrets
import shutil
import time
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from reportforge.api.deps import get_app_settings
from reportforge.api.schemas import ImageUploadResponse
from reportforge.core.config import Settings
from reportforge.strategies.imaging.sources import LOCAL_IMAGE_PREFIX

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/uploads", tags=["uploads"])

ALLOWED_IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"})


def stored_image_name(original_name: str) -> str:
    """Timestamp plus random suffix, keeping the original extension."""
    ext = Path(original_name).suffix.lower()
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}{ext}"


@router.post("/image", response_model=ImageUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    settings: Settings = Depends(get_app_settings),
) -> ImageUploadResponse:
    """Store one image for use in report values."""
    ext = Path(file.filename or "").suffix.lower()
    if ext not in ALLOWED_IMAGE_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported image type: {ext or 'none'}",
        )

    file_name = stored_image_name(file.filename or "")
    destination = settings.storage.images / file_name
    with destination.open("wb") as fh:
        shutil.copyfileobj(file.file, fh)

    logger.info(f"Image stored: {file_name}")
    return ImageUploadResponse(url=f"{LOCAL_IMAGE_PREFIX}{file_name}", file_name=file_name)
