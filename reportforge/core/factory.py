"""Component Factory for strategy instantiation.

Builds the document-assembly components from settings and caches them,
so routers and the application share one instance of each.
"""

import logging

from reportforge.core.config import Settings, get_settings
from reportforge.interfaces.office import BaseDocumentRenderer, BasePageRasterizer
from reportforge.interfaces.template import (
    BaseTemplateAnalyzer,
    BaseTemplateInjector,
    BaseTemplateRenderer,
)
from reportforge.pipeline.appendix import AppendixAssembler
from reportforge.pipeline.generation import GenerationPipeline
from reportforge.strategies.imaging import ImageCompositor, ImageSourceResolver
from reportforge.strategies.office import LibreOfficeRunner, PdftoppmRasterizer
from reportforge.strategies.template_engine import (
    TemplateAnalyzer,
    TemplateInjector,
    TemplateRenderer,
)

logger = logging.getLogger(__name__)


class ComponentFactory:
    """Factory for creating component instances based on configuration.

    Example:
        ```python
        factory = ComponentFactory(get_settings())

        injector = factory.get_template_injector()
        pipeline = factory.get_generation_pipeline()
        ```

    Tests swap external processes by assigning ``office_runner`` or
    ``rasterizer`` before the dependent components are first built.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        office_runner: BaseDocumentRenderer | None = None,
        rasterizer: BasePageRasterizer | None = None,
    ) -> None:
        """Initialize the factory with optional settings and process overrides.

        Args:
            settings: Application settings. If None, uses global settings.
            office_runner: Replacement for the LibreOffice runner.
            rasterizer: Replacement for the pdftoppm rasterizer.
        """
        self._settings = settings or get_settings()
        self._office_runner_cache = office_runner
        self._rasterizer_cache = rasterizer
        self._template_analyzer_cache: BaseTemplateAnalyzer | None = None
        self._template_injector_cache: BaseTemplateInjector | None = None
        self._template_renderer_cache: BaseTemplateRenderer | None = None
        self._image_resolver_cache: ImageSourceResolver | None = None
        self._compositor_cache: ImageCompositor | None = None
        self._appendix_cache: AppendixAssembler | None = None
        self._pipeline_cache: GenerationPipeline | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    def get_template_analyzer(self) -> BaseTemplateAnalyzer:
        """Get a template analyzer instance."""
        if self._template_analyzer_cache is None:
            logger.info("Instantiating template analyzer")
            self._template_analyzer_cache = TemplateAnalyzer()
        return self._template_analyzer_cache

    def get_template_injector(self) -> BaseTemplateInjector:
        """Get a template injector instance."""
        if self._template_injector_cache is None:
            logger.info("Instantiating template injector")
            self._template_injector_cache = TemplateInjector()
        return self._template_injector_cache

    def get_template_renderer(self) -> BaseTemplateRenderer:
        """Get a template renderer instance."""
        if self._template_renderer_cache is None:
            logger.info("Instantiating template renderer")
            self._template_renderer_cache = TemplateRenderer()
        return self._template_renderer_cache

    def get_office_runner(self) -> BaseDocumentRenderer:
        """Get the external document renderer.

        Returns:
            A BaseDocumentRenderer implementation instance.
        """
        if self._office_runner_cache is None:
            runner = LibreOfficeRunner.from_settings(self._settings)
            logger.info(f"Instantiating LibreOffice runner: {runner.executable}")
            self._office_runner_cache = runner
        return self._office_runner_cache

    def get_rasterizer(self) -> BasePageRasterizer:
        """Get the PDF page rasterizer."""
        if self._rasterizer_cache is None:
            logger.info(f"Instantiating rasterizer: {self._settings.pdftoppm_path}")
            self._rasterizer_cache = PdftoppmRasterizer.from_settings(self._settings)
        return self._rasterizer_cache

    def get_image_resolver(self) -> ImageSourceResolver:
        if self._image_resolver_cache is None:
            self._image_resolver_cache = ImageSourceResolver(
                images_dir=self._settings.storage.images,
                fetch_timeout=self._settings.image_fetch_timeout_seconds,
            )
        return self._image_resolver_cache

    def get_image_compositor(self) -> ImageCompositor:
        """Get the image compositor wired to the office runner."""
        if self._compositor_cache is None:
            logger.info("Instantiating image compositor")
            self._compositor_cache = ImageCompositor(
                resolver=self.get_image_resolver(),
                renderer=self.get_office_runner(),
                replace_routine=self._settings.macro_replace_text_with_image,
                max_attempts=self._settings.image_anchor_max_attempts,
            )
        return self._compositor_cache

    def get_appendix_assembler(self) -> AppendixAssembler:
        """Get the appendix assembler."""
        if self._appendix_cache is None:
            logger.info("Instantiating appendix assembler")
            self._appendix_cache = AppendixAssembler(
                storage=self._settings.storage,
                rasterizer=self.get_rasterizer(),
                renderer=self.get_office_runner(),
                append_routine=self._settings.macro_append_image,
            )
        return self._appendix_cache

    def get_generation_pipeline(self) -> GenerationPipeline:
        """Get the generation pipeline with every collaborator wired in."""
        if self._pipeline_cache is None:
            logger.info("Instantiating generation pipeline")
            self._pipeline_cache = GenerationPipeline(
                storage=self._settings.storage,
                renderer=self.get_template_renderer(),
                compositor=self.get_image_compositor(),
                appendix=self.get_appendix_assembler(),
                office=self.get_office_runner(),
                refresh_routine=self._settings.macro_refresh_indexes,
            )
        return self._pipeline_cache

    def clear_cache(self) -> None:
        """Clear all cached component instances.

        This forces new instances to be created on next access.
        Useful for testing or when settings change.
        """
        self._office_runner_cache = None
        self._rasterizer_cache = None
        self._template_analyzer_cache = None
        self._template_injector_cache = None
        self._template_renderer_cache = None
        self._image_resolver_cache = None
        self._compositor_cache = None
        self._appendix_cache = None
        self._pipeline_cache = None
        logger.debug("Component factory cache cleared")


# Global factory instance
_factory: ComponentFactory | None = None


def get_factory() -> ComponentFactory:
    """Get or create the global ComponentFactory instance.

    Returns:
        The singleton ComponentFactory instance.
    """
    global _factory
    if _factory is None:
        _factory = ComponentFactory()
    return _factory
