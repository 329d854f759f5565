"""Abstract base classes and errors of the document-assembly engine."""

from reportforge.interfaces.errors import (
    ConversionError,
    ExpressionError,
    ExternalRendererError,
    ExternalRendererNotFound,
    ExternalRendererTimeout,
    ImageResolutionError,
    PackageError,
    RasterizationError,
    RenderingError,
    ReportForgeError,
    TemplateSourceMissing,
)
from reportforge.interfaces.office import BaseDocumentRenderer, BasePageRasterizer
from reportforge.interfaces.template import (
    BaseTemplateAnalyzer,
    BaseTemplateInjector,
    BaseTemplateRenderer,
)

__all__ = [
    "BaseTemplateAnalyzer",
    "BaseTemplateInjector",
    "BaseTemplateRenderer",
    "BaseDocumentRenderer",
    "BasePageRasterizer",
    # Errors
    "ReportForgeError",
    "PackageError",
    "TemplateSourceMissing",
    "RenderingError",
    "ExpressionError",
    "ImageResolutionError",
    "ExternalRendererError",
    "ExternalRendererNotFound",
    "ExternalRendererTimeout",
    "ConversionError",
    "RasterizationError",
]
