"""Database models using SQLModel.

Defines the persisted documents the engine works with:
- Template: an imported, tokenized Word package plus its variable definitions
- Report: a template instance holding values, workflow status and appendix items

Variable lists, values and appendix items are JSON documents; PostgreSQL
stores them as JSONB, other backends as plain JSON.
"""

import datetime
import uuid
from typing import Any

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from reportforge.pipeline.models import ReportStatus

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _created_at() -> Any:
    return Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now()),
    )


def _updated_at() -> Any:
    return Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
        ),
    )


# =============================================================================
# Shared Models (for API responses, not database tables)
# =============================================================================


class TemplateBase(SQLModel):
    """Base template fields."""

    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2048)
    requires_kml: bool = Field(default=False)
    is_active: bool = Field(default=True)


class ReportBase(SQLModel):
    """Base report fields."""

    name: str = Field(min_length=1, max_length=255)
    title: str | None = Field(default=None, max_length=512)
    status: str = Field(default=ReportStatus.DRAFT.value, max_length=32)


# =============================================================================
# Database Models
# =============================================================================


class Template(TemplateBase, table=True):
    """An imported template.

    ``source_docx_path`` is fixed at import; later edits only touch
    metadata and variable definitions.
    """

    __tablename__ = "templates"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True),
    )
    source_docx_path: str | None = Field(default=None, max_length=1024)
    preview_pdf_path: str | None = Field(default=None, max_length=1024)
    variables: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSONDocument, nullable=False),
    )
    variable_groups: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSONDocument, nullable=False),
    )
    created_at: datetime.datetime = _created_at()
    updated_at: datetime.datetime = _updated_at()


class Report(ReportBase, table=True):
    """A report filled from a template.

    ``template_name`` is a snapshot taken at creation time.
    """

    __tablename__ = "reports"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True),
    )
    template_id: uuid.UUID = Field(
        sa_column=Column(
            Uuid(as_uuid=True),
            ForeignKey("templates.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    template_name: str = Field(default="", max_length=255)
    values: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSONDocument, nullable=False),
    )
    kml_data: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSONDocument),
    )
    appendix_items: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSONDocument, nullable=False),
    )
    last_generated_at: datetime.datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime.datetime = _created_at()
    updated_at: datetime.datetime = _updated_at()
