"""Template management API routes.

Handles template analysis, token injection at import, template storage,
generation straight from a template and the HTML preview.
"""

import logging
import shutil
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reportforge.api.deps import get_app_settings, get_components, get_db, load_template
from reportforge.api.responses import stream_document
from reportforge.api.schemas import (
    AnalyzeDocxResponse,
    FinalizeImportRequest,
    GenerateRequest,
    PreviewHtmlRequest,
    PreviewHtmlResponse,
    TemplateListResponse,
    TemplateRead,
    TemplateUpdate,
)
from reportforge.core.config import Settings
from reportforge.core.factory import ComponentFactory
from reportforge.db.models import Template
from reportforge.interfaces.errors import PackageError
from reportforge.pipeline.artifacts import ArtifactScope, remove_path, unique_name
from reportforge.strategies.imaging.compositor import extent_for
from reportforge.strategies.template_engine.models import (
    TemplateVariable,
    VariableGroup,
    VariableType,
)
from reportforge.strategies.template_engine.package import DocxPackage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/templates", tags=["templates"])

_variables_adapter = TypeAdapter(list[TemplateVariable])
_groups_adapter = TypeAdapter(list[VariableGroup])


# =============================================================================
# Helper Functions
# =============================================================================


def dump_variables(variables: list[TemplateVariable]) -> list[dict[str, Any]]:
    return [v.model_dump(mode="json", by_alias=True) for v in variables]


def dump_groups(groups: list[VariableGroup]) -> list[dict[str, Any]]:
    return [g.model_dump(mode="json", by_alias=True) for g in groups]


def template_variables(template: Template) -> list[TemplateVariable]:
    return [TemplateVariable.model_validate(v) for v in template.variables or []]


def template_to_read(template: Template, settings: Settings) -> TemplateRead:
    """Build the API view of a stored template."""
    variables = template_variables(template)
    preview_url = None
    if template.preview_pdf_path:
        preview = Path(template.preview_pdf_path).resolve()
        previews_root = settings.storage.template_previews.resolve()
        if preview.is_relative_to(previews_root):
            preview_url = "/uploads/template-previews/" + preview.relative_to(previews_root).as_posix()

    return TemplateRead(
        id=template.id,
        name=template.name,
        description=template.description,
        requires_kml=template.requires_kml,
        is_active=template.is_active,
        source_docx_path=template.source_docx_path,
        preview_pdf_url=preview_url,
        variables=variables,
        variable_groups=[VariableGroup.model_validate(g) for g in template.variable_groups or []],
        untokenized=[v.name for v in variables if v.source_text and not v.tokenized],
        created_at=template.created_at,
        updated_at=template.updated_at,
    )


def with_image_extents(docx_path: Path, variables: list[TemplateVariable]) -> list[TemplateVariable]:
    """Fill in missing extents of image variables that name a media part."""
    pending = [
        v for v in variables
        if v.type == VariableType.IMAGE and v.image_target and v.image_extent is None
    ]
    if not pending:
        return variables
    try:
        package = DocxPackage.open(docx_path)
    except PackageError as e:
        logger.warning(f"Could not read extents from {docx_path}: {e.detail}")
        return variables

    enriched = []
    for var in variables:
        if var in pending:
            extent = extent_for(var, package)
            if extent is not None:
                var = var.model_copy(update={"image_extent": extent})
        enriched.append(var)
    return enriched


def values_with_kml(values: dict[str, Any], kml_data: dict[str, Any] | None) -> dict[str, Any]:
    """Raw values plus the ``kmlData`` object the renderer reads KML fields from."""
    merged = dict(values or {})
    if kml_data:
        merged["kmlData"] = kml_data
    return merged


def _parse_json_field(adapter: TypeAdapter, raw: str | None, label: str) -> list[Any]:
    if not raw:
        return []
    try:
        return adapter.validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Invalid {label} payload: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {label}: {e.errors(include_url=False)}",
        ) from e


async def _save_upload(upload: UploadFile, destination: Path) -> Path:
    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("wb") as fh:
        shutil.copyfileobj(upload.file, fh)
    return destination


def _require_docx(upload: UploadFile) -> None:
    if not upload.filename or not upload.filename.lower().endswith(".docx"):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Only .docx files are supported",
        )


# =============================================================================
# Import Endpoints
# =============================================================================


@router.post("/analyze-docx", response_model=AnalyzeDocxResponse)
async def analyze_docx(
    file: UploadFile = File(...),
    settings: Settings = Depends(get_app_settings),
    factory: ComponentFactory = Depends(get_components),
) -> AnalyzeDocxResponse:
    """List the tokens and embedded media of an uploaded package.

    An unreadable package is not an error: the response is simply empty.
    """
    _require_docx(file)
    logger.info(f"Analyzing uploaded package: {file.filename}")

    with ArtifactScope(settings.storage.work, label="analyze") as scope:
        upload = await _save_upload(file, scope.path("upload.docx"))
        analysis = await factory.get_template_analyzer().analyze(str(upload))

    logger.info(
        f"Analysis complete: {len(analysis.variables)} token(s), {len(analysis.media)} media part(s)"
    )
    return AnalyzeDocxResponse(
        file_name=file.filename,
        variables=analysis.variables,
        media=analysis.media,
        total_paragraphs=analysis.total_paragraphs,
    )


@router.post("/import-docx", response_model=TemplateRead, status_code=status.HTTP_201_CREATED)
async def import_docx(
    file: UploadFile = File(...),
    name: str = Form(...),
    description: str | None = Form(default=None),
    requires_kml: bool = Form(default=False, alias="requiresKml"),
    variables: str | None = Form(default=None),
    variable_groups: str | None = Form(default=None, alias="variableGroups"),
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    factory: ComponentFactory = Depends(get_components),
) -> TemplateRead:
    """Tokenize an uploaded package and store it as a new template.

    Each variable's ``sourceText`` is replaced by ``{{name}}`` throughout
    the package. The unfilled PDF preview is best effort.
    """
    _require_docx(file)
    if not name.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Template name is required")

    parsed_variables = _parse_json_field(_variables_adapter, variables, "variables")
    parsed_groups = _parse_json_field(_groups_adapter, variable_groups, "variableGroups")

    storage = settings.storage
    upload = await _save_upload(file, storage.templates / unique_name("upload", ".docx"))
    tokenized_path = storage.templates / unique_name("template", ".docx")
    try:
        result = await factory.get_template_injector().inject_tags(
            str(upload), parsed_variables, output_path=str(tokenized_path)
        )
    finally:
        remove_path(upload)

    template_vars = with_image_extents(tokenized_path, result.variables)
    preview = await factory.get_generation_pipeline().build_template_preview(tokenized_path)

    template = Template(
        name=name.strip(),
        description=description,
        requires_kml=requires_kml,
        source_docx_path=str(tokenized_path),
        preview_pdf_path=str(preview) if preview else None,
        variables=dump_variables(template_vars),
        variable_groups=dump_groups(parsed_groups),
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)

    logger.info(f"Template imported: {template.id} ({result.replacements} replacements)")
    return template_to_read(template, settings)


@router.post("/finalize-import", response_model=TemplateRead, status_code=status.HTTP_201_CREATED)
async def finalize_import(
    request: FinalizeImportRequest,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    factory: ComponentFactory = Depends(get_components),
) -> TemplateRead:
    """Register a package that already carries its tokens."""
    source = Path(request.source_docx_path).resolve()
    if not source.is_relative_to(settings.storage.root) or not source.is_file():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="sourceDocxPath must name an existing package under the uploads directory",
        )

    template_vars = with_image_extents(source, request.variables)
    template_vars = await factory.get_template_injector().verify(str(source), template_vars)
    preview = await factory.get_generation_pipeline().build_template_preview(source)

    template = Template(
        name=request.name.strip(),
        description=request.description,
        requires_kml=request.requires_kml,
        source_docx_path=str(source),
        preview_pdf_path=str(preview) if preview else None,
        variables=dump_variables(template_vars),
        variable_groups=dump_groups(request.variable_groups),
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)

    logger.info(f"Template finalized: {template.id}")
    return template_to_read(template, settings)


# =============================================================================
# CRUD Endpoints
# =============================================================================


@router.get("", response_model=TemplateListResponse)
async def list_templates(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> TemplateListResponse:
    """List templates, newest first."""
    query = select(Template).order_by(Template.created_at.desc())
    if not include_inactive:
        query = query.where(Template.is_active.is_(True))
    templates = (await session.execute(query)).scalars().all()
    return TemplateListResponse(
        templates=[template_to_read(t, settings) for t in templates],
        total=len(templates),
    )


@router.get("/{template_id}", response_model=TemplateRead)
async def get_template(
    template_id: str,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> TemplateRead:
    template = await load_template(session, template_id)
    return template_to_read(template, settings)


@router.put("/{template_id}", response_model=TemplateRead)
async def update_template(
    template_id: str,
    update: TemplateUpdate,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    factory: ComponentFactory = Depends(get_components),
) -> TemplateRead:
    """Edit metadata and variable definitions; the source package is never replaced."""
    template = await load_template(session, template_id)

    if update.name is not None:
        template.name = update.name.strip()
    if update.description is not None:
        template.description = update.description
    if update.requires_kml is not None:
        template.requires_kml = update.requires_kml
    if update.is_active is not None:
        template.is_active = update.is_active
    if update.variable_groups is not None:
        template.variable_groups = dump_groups(update.variable_groups)
    if update.variables is not None:
        template_vars = update.variables
        if template.source_docx_path:
            source = Path(template.source_docx_path)
            template_vars = with_image_extents(source, template_vars)
            template_vars = await factory.get_template_injector().verify(str(source), template_vars)
        template.variables = dump_variables(template_vars)

    session.add(template)
    await session.commit()
    await session.refresh(template)

    logger.info(f"Template updated: {template.id}")
    return template_to_read(template, settings)


@router.delete("/{template_id}")
async def delete_template(
    template_id: str,
    session: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Soft delete: the template is hidden but its reports keep working."""
    template = await load_template(session, template_id)
    template.is_active = False
    session.add(template)
    await session.commit()

    logger.info(f"Template deactivated: {template.id}")
    return {"message": "Template deactivated", "id": str(template.id)}


@router.patch("/{template_id}/reactivate", response_model=TemplateRead)
async def reactivate_template(
    template_id: str,
    session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> TemplateRead:
    template = await load_template(session, template_id)
    template.is_active = True
    session.add(template)
    await session.commit()
    await session.refresh(template)

    logger.info(f"Template reactivated: {template.id}")
    return template_to_read(template, settings)


# =============================================================================
# Generation Endpoints
# =============================================================================


@router.post("/{template_id}/generate")
async def generate_from_template(
    template_id: str,
    request: GenerateRequest,
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
):
    """Fill the template with the given values and stream the DOCX or PDF."""
    template = await load_template(session, template_id)
    logger.info(f"Generating {request.output.value} from template {template.id}")

    document = await factory.get_generation_pipeline().generate(
        template.source_docx_path,
        template_variables(template),
        values_with_kml(request.values, request.kml_data),
        output=request.output,
    )
    return stream_document(document)


@router.post("/{template_id}/preview-html", response_model=PreviewHtmlResponse)
async def preview_html(
    template_id: str,
    request: PreviewHtmlRequest,
    session: AsyncSession = Depends(get_db),
    factory: ComponentFactory = Depends(get_components),
) -> PreviewHtmlResponse:
    """Filled template as HTML (images included, no appendix)."""
    template = await load_template(session, template_id)
    html = await factory.get_generation_pipeline().preview_html(
        template.source_docx_path,
        template_variables(template),
        values_with_kml(request.values, request.kml_data),
    )
    return PreviewHtmlResponse(html=html)
