"""API request and response schemas.

Pydantic v2 models for API serialization/deserialization. Wire names are
camelCase; Python attributes stay snake_case.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import Field

from reportforge.pipeline.models import AppendixKind, OutputFormat
from reportforge.strategies.template_engine.models import (
    CamelModel,
    DetectedToken,
    MediaPlaceholder,
    TemplateVariable,
    VariableGroup,
)


# =============================================================================
# Template Schemas
# =============================================================================


class AnalyzeDocxResponse(CamelModel):
    """Response of the analyze-docx endpoint."""

    file_name: str | None = None
    variables: list[DetectedToken] = Field(default_factory=list)
    media: list[MediaPlaceholder] = Field(default_factory=list)
    total_paragraphs: int = 0


class TemplateRead(CamelModel):
    """Response schema for a template."""

    id: uuid.UUID
    name: str
    description: str | None = None
    requires_kml: bool = False
    is_active: bool = True
    source_docx_path: str | None = None
    preview_pdf_url: str | None = None
    variables: list[TemplateVariable] = Field(default_factory=list)
    variable_groups: list[VariableGroup] = Field(default_factory=list)
    untokenized: list[str] = Field(
        default_factory=list, description="Variables whose token is missing from the package"
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TemplateListResponse(CamelModel):
    """Response for listing templates."""

    templates: list[TemplateRead]
    total: int


class FinalizeImportRequest(CamelModel):
    """Request schema for registering an already tokenized package."""

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    requires_kml: bool = False
    source_docx_path: str = Field(min_length=1, description="Tokenized package under the uploads root")
    variables: list[TemplateVariable] = Field(default_factory=list)
    variable_groups: list[VariableGroup] = Field(default_factory=list)


class TemplateUpdate(CamelModel):
    """Request schema for editing template metadata and variables.

    There is deliberately no way to change the source package here.
    """

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    requires_kml: bool | None = None
    is_active: bool | None = None
    variables: list[TemplateVariable] | None = None
    variable_groups: list[VariableGroup] | None = None


class GenerateRequest(CamelModel):
    """Request schema for generating from a template directly."""

    values: dict[str, Any] = Field(default_factory=dict)
    kml_data: dict[str, Any] | None = None
    output: OutputFormat = OutputFormat.DOCX


class PreviewHtmlRequest(CamelModel):
    """Request schema for the HTML preview."""

    values: dict[str, Any] = Field(default_factory=dict)
    kml_data: dict[str, Any] | None = None


class PreviewHtmlResponse(CamelModel):
    html: str


class ImageUploadResponse(CamelModel):
    """Response for an uploaded value image."""

    url: str = Field(description="Server-relative URL, /uploads/images/<file>")
    file_name: str


# =============================================================================
# Report Schemas
# =============================================================================


class ReportCreate(CamelModel):
    """Request schema for creating a report."""

    template_id: uuid.UUID
    name: str = Field(min_length=1, max_length=255)
    title: str | None = None
    values: dict[str, Any] = Field(default_factory=dict)
    kml_data: dict[str, Any] | None = None


class ReportUpdate(CamelModel):
    """Request schema for updating a report."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    title: str | None = None
    status: str | None = None
    values: dict[str, Any] | None = None
    kml_data: dict[str, Any] | None = None


class ReportRead(CamelModel):
    """Response schema for a report."""

    id: uuid.UUID
    template_id: uuid.UUID
    template_name: str = ""
    name: str
    title: str | None = None
    status: str
    values: dict[str, Any] = Field(default_factory=dict)
    kml_data: dict[str, Any] | None = None
    appendix_count: int = 0
    last_generated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ReportListResponse(CamelModel):
    """Response for listing reports."""

    reports: list[ReportRead]
    total: int


class ReportOutputRequest(CamelModel):
    """Optional body of the report generate endpoint."""

    output: OutputFormat = OutputFormat.DOCX


# =============================================================================
# Appendix Schemas
# =============================================================================


class AppendixItemRead(CamelModel):
    """An appendix item as clients see it: URLs, never filesystem paths."""

    id: str
    kind: AppendixKind
    original_name: str | None = None
    url: str
    thumb_url: str | None = None
    page_urls: list[str] = Field(default_factory=list)
    page_count: int = 1
    order: int = 0


class AppendixListResponse(CamelModel):
    items: list[AppendixItemRead]
    skipped: list[str] = Field(default_factory=list, description="Uploaded files that were not accepted")


class AppendixOrderEntry(CamelModel):
    item_id: str
    order: int


class AppendixOrderRequest(CamelModel):
    """Request schema for reordering appendix items."""

    items: list[AppendixOrderEntry]


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorResponse(CamelModel):
    """Standard error response."""

    detail: str
    error_code: str | None = None
    extra: dict[str, Any] | None = None
