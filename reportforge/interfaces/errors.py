"""Exceptions raised by the document-assembly engine.

Routers translate these into HTTP responses; internal helpers either
convert them into a silent fallback or let them propagate as a
structured error.
"""


class ReportForgeError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail if detail is not None else message


class PackageError(ReportForgeError):
    """Exception raised when a document package cannot be read or written."""

    pass


class TemplateSourceMissing(ReportForgeError):
    """Exception raised when a template has no usable source package."""

    pass


class RenderingError(ReportForgeError):
    """Exception raised when token substitution fails.

    Carries the underlying cause in ``detail``; no output file is
    produced when this is raised.
    """

    pass


class ExpressionError(ReportForgeError):
    """Exception raised when a calculated expression is rejected or fails."""

    pass


class ImageResolutionError(ReportForgeError):
    """Exception raised when an image reference cannot be turned into pixels."""

    pass


class ExternalRendererError(ReportForgeError):
    """Exception raised when an external renderer invocation fails."""

    pass


class ExternalRendererNotFound(ExternalRendererError):
    """Exception raised when the renderer executable cannot be started."""

    pass


class ExternalRendererTimeout(ExternalRendererError):
    """Exception raised when an invocation exceeds its timeout."""

    pass


class ConversionError(ReportForgeError):
    """Exception raised when DOCX to PDF conversion fails permanently."""

    pass


class RasterizationError(ReportForgeError):
    """Exception raised when a PDF cannot be rasterized into page images."""

    pass
