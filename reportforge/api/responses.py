"""Response helpers shared by the routers.

Streams generated documents and maps engine errors onto HTTP statuses.
"""

import logging

from fastapi import status
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from reportforge.interfaces.errors import (
    ConversionError,
    ExternalRendererError,
    PackageError,
    RasterizationError,
    RenderingError,
    ReportForgeError,
    TemplateSourceMissing,
)
from reportforge.pipeline.generation import GeneratedDocument

logger = logging.getLogger(__name__)

# (status, client-facing message) per engine error, most specific first
ERROR_RESPONSES: tuple[tuple[type[ReportForgeError], int, str], ...] = (
    (RenderingError, status.HTTP_400_BAD_REQUEST, "Template rendering failed"),
    (TemplateSourceMissing, status.HTTP_400_BAD_REQUEST, "Template source package not found"),
    (PackageError, status.HTTP_400_BAD_REQUEST, "Invalid document package"),
    (ConversionError, status.HTTP_500_INTERNAL_SERVER_ERROR, "PDF conversion failed"),
    (RasterizationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "PDF rasterization failed"),
    (ExternalRendererError, status.HTTP_500_INTERNAL_SERVER_ERROR, "External renderer failed"),
)


def error_status_for(exc: ReportForgeError) -> tuple[int, str]:
    """HTTP status and message for an engine error."""
    for error_type, status_code, message in ERROR_RESPONSES:
        if isinstance(exc, error_type):
            return status_code, message
    return status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message


def engine_error_response(exc: ReportForgeError) -> JSONResponse:
    """``{"message": ..., "detail": ...}`` body for an engine error."""
    status_code, message = error_status_for(exc)
    if status_code >= 500:
        logger.error(f"{message}: {exc.detail}")
    else:
        logger.warning(f"{message}: {exc.detail}")
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "detail": exc.detail},
    )


def stream_document(document: GeneratedDocument, inline: bool = False) -> StreamingResponse:
    """Stream a generated file; its artifacts are removed once the response is done."""
    disposition = "inline" if inline else "attachment"
    return StreamingResponse(
        document.stream(),
        media_type=document.media_type,
        headers={"Content-Disposition": f'{disposition}; filename="{document.filename}"'},
        background=BackgroundTask(document.cleanup),
    )
