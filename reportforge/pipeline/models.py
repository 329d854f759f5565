"""Pipeline domain models."""

import enum
from pathlib import Path

from pydantic import Field

from reportforge.strategies.template_engine.models import CamelModel

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MEDIA_TYPE = "application/pdf"


class ReportStatus(str, enum.Enum):
    """Forward-only report workflow."""

    DRAFT = "Draft"
    INITIAL_REVIEW = "Initial Review"
    FINAL_REVIEW = "Final Review"
    SUBMITTED = "Submitted"


class OutputFormat(str, enum.Enum):
    DOCX = "docx"
    PDF = "pdf"


class AppendixKind(str, enum.Enum):
    IMAGE = "image"
    PDF = "pdf"


class AppendixItem(CamelModel):
    """A user-supplied image or PDF appended after the rendered body.

    Paths are absolute filesystem paths; routers map them to
    ``/uploads/appendix/...`` URLs for clients.
    """

    id: str
    kind: AppendixKind
    original_name: str | None = None
    original_path: str
    thumb_path: str | None = None
    page_images: list[str] = Field(default_factory=list)
    page_count: int = 1
    order: int = 0

    def page_paths(self) -> list[Path]:
        """Images to append, one per output page."""
        if self.kind == AppendixKind.PDF:
            return [Path(p) for p in self.page_images]
        return [Path(self.original_path)]


class PipelineStage(str, enum.Enum):
    """Stages of a generation run, in execution order."""

    DRAFT = "draft"
    INLINE_IMAGES_INSERTED = "inline_images_inserted"
    TEXT_RENDERED = "text_rendered"
    FIELDS_REFRESHED = "fields_refreshed"
    APPENDIX_APPENDED = "appendix_appended"
    FORMAT_CONVERTED = "format_converted"
    STREAMED = "streamed"
    CLEANED_UP = "cleaned_up"
