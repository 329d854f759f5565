"""Report API routes.

Reports are template instances moving through a forward-only review
workflow. This router also owns each report's appendix items and keeps
uploaded value images tidy when reports change or go away.
"""

import logging
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reportforge.api.deps import get_app_settings, get_components, get_db, load_report, load_template
from reportforge.api.responses import stream_document
from reportforge.api.schemas import (
    AppendixItemRead,
    AppendixListResponse,
    AppendixOrderRequest,
    ReportCreate,
    ReportListResponse,
    ReportOutputRequest,
    ReportRead,
    ReportUpdate,
)
from reportforge.api.templates import template_variables, values_with_kml
from reportforge.core.config import Settings
from reportforge.core.factory import ComponentFactory
from reportforge.db.models import Report
from reportforge.interfaces.errors import RasterizationError
from reportforge.pipeline.appendix import AppendixAssembler, apply_order, sort_items
from reportforge.pipeline.artifacts import remove_path, unique_name
from reportforge.pipeline.models import AppendixItem, OutputFormat, ReportStatus
from reportforge.pipeline.workflow import can_delete, can_generate, is_valid_next_status
from reportforge.strategies.imaging.sources import collect_local_image_urls
from reportforge.strategies.template_engine.models import VariableType
from reportforge.strategies.template_engine.renderer import stringify

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


# =============================================================================
# Helper Functions
# =============================================================================


def appendix_items(report: Report) -> list[AppendixItem]:
    return sort_items(AppendixItem.model_validate(i) for i in report.appendix_items or [])


def store_appendix_items(report: Report, items: list[AppendixItem]) -> None:
    report.appendix_items = [i.model_dump(mode="json", by_alias=True) for i in sort_items(items)]


def report_to_read(report: Report) -> ReportRead:
    return ReportRead(
        id=report.id,
        template_id=report.template_id,
        template_name=report.template_name,
        name=report.name,
        title=report.title,
        status=report.status,
        values=report.values or {},
        kml_data=report.kml_data,
        appendix_count=len(report.appendix_items or []),
        last_generated_at=report.last_generated_at,
        created_at=report.created_at,
        updated_at=report.updated_at,
    )


def appendix_to_read(item: AppendixItem, assembler: AppendixAssembler) -> AppendixItemRead:
    return AppendixItemRead(
        id=item.id,
        kind=item.kind,
        original_name=item.original_name,
        url=assembler.to_url(item.original_path),
        thumb_url=assembler.to_url(item.thumb_path) or None,
        page_urls=[assembler.to_url(p) for p in item.page_images],
        page_count=item.page_count,
        order=item.order,
    )


def appendix_response(items: list[AppendixItem], assembler: AppendixAssembler) -> AppendixListResponse:
    return AppendixListResponse(items=[appendix_to_read(i, assembler) for i in sort_items(items)])


def merge_kml_values(
    variables: list[Any],
    values: dict[str, Any],
    kml_data: dict[str, Any] | None,
) -> dict[str, Any]:
    """Copy KML fields into the values of the variables bound to them."""
    merged = dict(values or {})
    if not kml_data:
        return merged
    for var in variables:
        if var.type != VariableType.KML:
            continue
        value = kml_data.get(var.kml_field or var.name)
        if value is not None and value != "":
            merged[var.name] = stringify(value)
    return merged


async def purge_unreferenced_images(
    session: AsyncSession,
    candidates: set[str],
    factory: ComponentFactory,
    exclude_report_id: uuid.UUID,
) -> int:
    """Delete candidate image files that no other report still references.

    Returns:
        Number of files removed.
    """
    if not candidates:
        return 0

    others = await session.execute(select(Report.values).where(Report.id != exclude_report_id))
    still_used: set[str] = set()
    for (values,) in others:
        still_used |= collect_local_image_urls(values)

    resolver = factory.get_image_resolver()
    removed = 0
    for url in sorted(candidates - still_used):
        path = resolver.local_path_for(url)
        if path is not None and path.is_file() and remove_path(path):
            removed += 1
    if removed:
        logger.info(f"Removed {removed} unreferenced image(s)")
    return removed


async def _generate(
    session: AsyncSession,
    report: Report,
    factory: ComponentFactory,
    output: OutputFormat,
):
    template = await load_template(session, str(report.template_id))
    return await factory.get_generation_pipeline().generate(
        template.source_docx_path,
        template_variables(template),
        values_with_kml(report.values or {}, report.kml_data),
        output=output,
        appendix_items=appendix_items(report),
    )


# =============================================================================
# CRUD Endpoints
# =============================================================================


@router.post("", response_model=ReportRead, status_code=status.HTTP_201_CREATED)
async def create_report(
    request: ReportCreate,
    session: AsyncSession = Depends(get_db),
) -> ReportRead:
    """Create a Draft report from a template."""
    template = await load_template(session, str(request.template_id))

    report = Report(
        template_id=template.id,
        template_name=template.name,
        name=request.name.strip(),
        title=request.title,
        status=ReportStatus.DRAFT.value,
        values=merge_kml_values(template_variables(template), request.values, request.kml_data),
        kml_data=request.kml_data,
    )
    session.add(report)
    await session.commit()
    await session.refresh(report)

    logger.info(f"Report created: {report.id} from template {template.id}")
    return report_to_read(report)


@router.get("", response_model=ReportListResponse)
async def list_reports(
    template_id: uuid.UUID | None = Query(default=None, alias="templateId"),
    report_status: str | None = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_db),
) -> ReportListResponse:
    """List reports, newest first."""
    query = select(Report).order_by(Report.created_at.desc())
    if template_id is not None:
        query = query.where(Report.template_id == template_id)
    if report_status:
        query = query.where(Report.status == report_status)
    reports = (await session.execute(query)).scalars().all()
    return ReportListResponse(reports=[report_to_read(r) for r in reports], total=len(reports))


@router.get("/{report_id}", response_model=ReportRead)
async def get_report(
    report_id: str,
    session: AsyncSession = Depends(get_db),
) -> ReportRead:
    return report_to_read(await load_report(session, report_id))


@router.put("/{report_id}", response_model=ReportRead)
async def update_report(
    report_id: str,
    update: ReportUpdate,
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
) -> ReportRead:
    """Update a report; status may only move one step forward."""
    report = await load_report(session, report_id)

    if update.status is not None and not is_valid_next_status(report.status, update.status):
        logger.warning(f"Rejected status change {report.status!r} -> {update.status!r} for {report.id}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status transition from {report.status} to {update.status}",
        )

    dropped_images: set[str] = set()
    if update.name is not None:
        report.name = update.name.strip()
    if update.title is not None:
        report.title = update.title
    if update.status is not None:
        report.status = update.status
    if update.kml_data is not None:
        report.kml_data = update.kml_data
    if update.values is not None or update.kml_data is not None:
        template = await load_template(session, str(report.template_id))
        new_values = update.values if update.values is not None else report.values
        new_values = merge_kml_values(template_variables(template), new_values, report.kml_data)
        dropped_images = collect_local_image_urls(report.values) - collect_local_image_urls(new_values)
        report.values = new_values

    session.add(report)
    await session.commit()
    await session.refresh(report)

    await purge_unreferenced_images(session, dropped_images, factory, exclude_report_id=report.id)

    logger.info(f"Report updated: {report.id} ({report.status})")
    return report_to_read(report)


@router.delete("/{report_id}")
async def delete_report(
    report_id: str,
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
) -> dict[str, Any]:
    """Delete a report with its appendix folder and the images only it used."""
    report = await load_report(session, report_id)
    if not can_delete(report.status):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Submitted reports cannot be deleted",
        )

    deleted_id = report.id
    images = collect_local_image_urls(report.values)
    await session.delete(report)
    await session.commit()

    factory.get_appendix_assembler().delete_report(str(deleted_id))
    await purge_unreferenced_images(session, images, factory, exclude_report_id=deleted_id)

    logger.info(f"Report deleted: {deleted_id}")
    return {"message": "Report deleted", "id": str(deleted_id)}


# =============================================================================
# Generation Endpoints
# =============================================================================


@router.post("/{report_id}/generate")
async def generate_report(
    report_id: str,
    request: ReportOutputRequest | None = Body(default=None),
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
):
    """Produce the final document; the report becomes Submitted."""
    report = await load_report(session, report_id)
    if not can_generate(report.status):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reports can only be generated in Final Review or Submitted status",
        )

    output = request.output if request else OutputFormat.DOCX
    document = await _generate(session, report, factory, output)

    try:
        report.status = ReportStatus.SUBMITTED.value
        report.last_generated_at = datetime.now(timezone.utc)
        session.add(report)
        await session.commit()
    except Exception:
        document.cleanup()
        raise

    logger.info(f"Report generated: {report.id} ({output.value})")
    return stream_document(document)


@router.post("/{report_id}/preview-pdf")
async def preview_report_pdf(
    report_id: str,
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
):
    """PDF of the report as it stands, appendix included, in any status."""
    report = await load_report(session, report_id)
    document = await _generate(session, report, factory, OutputFormat.PDF)
    return stream_document(document, inline=True)


# =============================================================================
# Appendix Endpoints
# =============================================================================


@router.get("/{report_id}/appendix", response_model=AppendixListResponse)
async def list_appendix(
    report_id: str,
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
) -> AppendixListResponse:
    report = await load_report(session, report_id)
    return appendix_response(appendix_items(report), factory.get_appendix_assembler())


@router.post("/{report_id}/appendix/upload", response_model=AppendixListResponse)
async def upload_appendix(
    report_id: str,
    files: list[UploadFile] = File(...),
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    factory: ComponentFactory = Depends(get_components),
) -> AppendixListResponse:
    """Add images and PDFs after the existing items; other files are skipped."""
    report = await load_report(session, report_id)
    assembler = factory.get_appendix_assembler()
    items = appendix_items(report)
    next_order = max((i.order for i in items), default=-1) + 1

    skipped: list[str] = []
    for upload in files:
        original_name = upload.filename or "upload"
        landing = settings.storage.appendix_tmp / unique_name("upload", Path(original_name).suffix.lower())
        with landing.open("wb") as fh:
            shutil.copyfileobj(upload.file, fh)
        try:
            item = await assembler.ingest(str(report.id), landing, original_name, next_order)
        except RasterizationError as e:
            logger.warning(f"Appendix file {original_name} rejected: {e.detail}")
            item = None
        if item is None:
            skipped.append(original_name)
            continue
        items.append(item)
        next_order += 1

    store_appendix_items(report, items)
    session.add(report)
    await session.commit()

    response = appendix_response(items, assembler)
    response.skipped = skipped
    return response


@router.patch("/{report_id}/appendix/order", response_model=AppendixListResponse)
async def reorder_appendix(
    report_id: str,
    request: AppendixOrderRequest,
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
) -> AppendixListResponse:
    """Change item order; nothing else about an item changes."""
    report = await load_report(session, report_id)
    items = apply_order(
        appendix_items(report),
        [{"itemId": entry.item_id, "order": entry.order} for entry in request.items],
    )
    store_appendix_items(report, items)
    session.add(report)
    await session.commit()
    return appendix_response(items, factory.get_appendix_assembler())


@router.delete("/{report_id}/appendix/{item_id}", response_model=AppendixListResponse)
async def delete_appendix_item(
    report_id: str,
    item_id: str,
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
) -> AppendixListResponse:
    report = await load_report(session, report_id)
    items = appendix_items(report)
    target = next((i for i in items if i.id == item_id), None)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appendix item not found")

    remaining = [i for i in items if i.id != item_id]
    assembler = factory.get_appendix_assembler()
    assembler.delete_item(str(report.id), target, remaining=len(remaining))

    store_appendix_items(report, remaining)
    session.add(report)
    await session.commit()
    return appendix_response(remaining, assembler)
