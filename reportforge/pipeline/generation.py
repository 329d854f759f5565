"""Generation pipeline.

Runs one generate or preview request from the template's stored package
to a finished DOCX, PDF or HTML preview:

    working copy -> anchor images -> direct images + text render
    -> refresh fields -> appendix -> optional PDF conversion

All intermediate files live in one ``ArtifactScope``. On failure the
scope is cleaned before the error propagates; on success the caller
owns the returned document and its scope until the response is sent.
"""

import asyncio
import io
import logging
import shutil
from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import mammoth

from reportforge.core.config import StoragePaths
from reportforge.interfaces.errors import (
    ConversionError,
    ExternalRendererError,
    PackageError,
    RenderingError,
    TemplateSourceMissing,
)
from reportforge.interfaces.office import BaseDocumentRenderer
from reportforge.interfaces.template import BaseTemplateRenderer
from reportforge.pipeline.appendix import AppendixAssembler
from reportforge.pipeline.artifacts import ArtifactScope, remove_path, unique_name
from reportforge.pipeline.models import (
    DOCX_MEDIA_TYPE,
    PDF_MEDIA_TYPE,
    AppendixItem,
    OutputFormat,
    PipelineStage,
)
from reportforge.strategies.imaging.compositor import ImageCompositor
from reportforge.strategies.office.soffice import MacroCommand, TextArgument
from reportforge.strategies.template_engine.models import TemplateVariable
from reportforge.strategies.template_engine.package import DocxPackage
from reportforge.strategies.template_engine.renderer import enable_update_fields_on_open

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024


@dataclass
class GeneratedDocument:
    """A finished output file and the scope that owns it."""

    path: Path
    media_type: str
    filename: str
    scope: ArtifactScope = field(repr=False)

    async def stream(self, chunk_size: int = STREAM_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the file in chunks; the scope is cleaned however iteration ends."""
        try:
            with self.path.open("rb") as fh:
                while chunk := await asyncio.to_thread(fh.read, chunk_size):
                    yield chunk
            logger.info(f"Pipeline stage: {PipelineStage.STREAMED.value} ({self.filename})")
        finally:
            self.cleanup()

    def cleanup(self) -> None:
        if not self.scope.closed:
            self.scope.cleanup()
            logger.info(f"Pipeline stage: {PipelineStage.CLEANED_UP.value}")


def _as_variables(variables: Iterable[Any]) -> list[TemplateVariable]:
    return [v if isinstance(v, TemplateVariable) else TemplateVariable.model_validate(v) for v in variables]


class GenerationPipeline:
    """Orchestrates rendering, image placement, appendix and conversion.

    Args:
        storage: Storage layout; per-request scopes are created under ``storage.work``.
        renderer: Template renderer (substitution map + token replacement).
        compositor: Image compositor for both insertion mechanisms.
        appendix: Appendix assembler.
        office: External document renderer.
        refresh_routine: Routine refreshing indexes on the output file ("" disables).
    """

    def __init__(
        self,
        storage: StoragePaths,
        renderer: BaseTemplateRenderer,
        compositor: ImageCompositor,
        appendix: AppendixAssembler,
        office: BaseDocumentRenderer,
        refresh_routine: str = "Standard.Module1.UpdateIndexes",
    ) -> None:
        self.storage = storage
        self.renderer = renderer
        self.compositor = compositor
        self.appendix = appendix
        self.office = office
        self.refresh_routine = refresh_routine

    @staticmethod
    def _stage(stage: PipelineStage, scope: ArtifactScope) -> None:
        logger.info(f"Pipeline stage: {stage.value} ({scope.root.name})")

    @staticmethod
    def _working_copy(source_docx_path: str | Path | None, scope: ArtifactScope) -> Path:
        if not source_docx_path or not Path(source_docx_path).is_file():
            raise TemplateSourceMissing(
                "Template source package not found",
                detail=str(source_docx_path or ""),
            )
        working = scope.path("working.docx")
        shutil.copyfile(source_docx_path, working)
        return working

    async def _fill(
        self,
        working: Path,
        variables: list[TemplateVariable],
        values: Mapping[str, Any],
        scope: ArtifactScope,
    ) -> DocxPackage:
        """Image stages and text render over the working copy.

        Raises:
            RenderingError: If the package cannot be loaded or rendered.
        """
        handled = await self.compositor.apply_anchor_images(working, variables, values, scope.mkdir("images"))
        self._stage(PipelineStage.INLINE_IMAGES_INSERTED, scope)

        try:
            package = DocxPackage.open(working)
        except PackageError as e:
            raise RenderingError("Template rendering failed", detail=e.detail) from e

        await self.compositor.apply_direct_images(package, variables, values, skip=handled)
        substitutions = self.renderer.build_substitutions(variables, values)
        self.renderer.render(package, substitutions)

        try:
            enable_update_fields_on_open(package)
        except PackageError as e:
            logger.warning(f"Could not flag fields for refresh: {e.detail}")
        self._stage(PipelineStage.TEXT_RENDERED, scope)
        return package

    async def _refresh_fields(self, docx_path: Path) -> None:
        if not self.refresh_routine:
            return
        try:
            command = MacroCommand(self.refresh_routine, (TextArgument(str(docx_path.resolve())),))
            await self.office.run_macro(command)
        except (ExternalRendererError, ValueError) as e:
            logger.warning(f"Index refresh skipped: {getattr(e, 'detail', e)}")

    async def generate(
        self,
        source_docx_path: str | Path | None,
        variables: Iterable[Any],
        values: Mapping[str, Any] | None,
        output: OutputFormat = OutputFormat.DOCX,
        appendix_items: Iterable[AppendixItem] = (),
    ) -> GeneratedDocument:
        """Produce a filled DOCX (or PDF) for one request.

        Args:
            source_docx_path: The template's tokenized package.
            variables: Template variable definitions.
            values: Raw report values (may include ``kmlData``).
            output: DOCX or PDF.
            appendix_items: Items appended after the body, by ascending order.

        Returns:
            GeneratedDocument whose scope the caller must clean after delivery.

        Raises:
            TemplateSourceMissing: If the source package does not exist.
            RenderingError: If the text render fails (no output is produced).
            ConversionError: If PDF conversion fails (the DOCX is deleted).
        """
        values = dict(values or {})
        parsed = _as_variables(variables)
        scope = ArtifactScope(self.storage.work, label="gen")
        try:
            working = self._working_copy(source_docx_path, scope)
            self._stage(PipelineStage.DRAFT, scope)

            package = await self._fill(working, parsed, values, scope)
            out_docx = package.save(scope.path("report.docx"))
            remove_path(working)

            await self._refresh_fields(out_docx)
            self._stage(PipelineStage.FIELDS_REFRESHED, scope)

            appended = await self.appendix.append_to(out_docx, appendix_items)
            if appended:
                logger.info(f"Appended {appended} appendix page(s)")
            self._stage(PipelineStage.APPENDIX_APPENDED, scope)

            if output != OutputFormat.PDF:
                return GeneratedDocument(out_docx, DOCX_MEDIA_TYPE, "report.docx", scope)

            pdf = await self._convert(out_docx, scope)
            self._stage(PipelineStage.FORMAT_CONVERTED, scope)
            return GeneratedDocument(pdf, PDF_MEDIA_TYPE, "report.pdf", scope)

        except BaseException:
            scope.cleanup()
            raise

    async def _convert(self, out_docx: Path, scope: ArtifactScope) -> Path:
        try:
            await self.office.check_available()
            return await self.office.convert_docx_to_pdf(out_docx, scope.mkdir("pdf"))
        except ConversionError:
            remove_path(out_docx)
            raise
        except ExternalRendererError as e:
            remove_path(out_docx)
            raise ConversionError(e.message, detail=e.detail) from e

    async def preview_html(
        self,
        source_docx_path: str | Path | None,
        variables: Iterable[Any],
        values: Mapping[str, Any] | None,
    ) -> str:
        """Fill the template (images and text, no appendix) and convert it to HTML.

        Raises:
            TemplateSourceMissing: If the source package does not exist.
            RenderingError: If the text render fails.
        """
        values = dict(values or {})
        parsed = _as_variables(variables)
        with ArtifactScope(self.storage.work, label="prev") as scope:
            working = self._working_copy(source_docx_path, scope)
            self._stage(PipelineStage.DRAFT, scope)
            package = await self._fill(working, parsed, values, scope)
            result = mammoth.convert_to_html(io.BytesIO(package.to_bytes()))
            for message in result.messages:
                logger.debug(f"Preview conversion: {message}")
            return result.value

    async def build_template_preview(self, docx_path: str | Path) -> Path | None:
        """Unfilled PDF preview of a template; failures are logged and yield None."""
        with ArtifactScope(self.storage.work, label="tpl") as scope:
            try:
                pdf = await self.office.convert_docx_to_pdf(Path(docx_path), scope.mkdir("pdf"))
            except (ConversionError, ExternalRendererError) as e:
                logger.warning(f"Template preview not built: {e.detail}")
                return None
            destination = self.storage.template_previews / unique_name("preview", ".pdf")
            shutil.move(str(pdf), destination)
        logger.info(f"Template preview built: {destination.name}")
        return destination
