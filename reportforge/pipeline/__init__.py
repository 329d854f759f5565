"""Generation pipeline, appendix handling and artifact lifecycle."""

from reportforge.pipeline.artifacts import ArtifactScope, unique_name
from reportforge.pipeline.models import AppendixItem, OutputFormat, ReportStatus

__all__ = [
    "ArtifactScope",
    "unique_name",
    "AppendixItem",
    "OutputFormat",
    "ReportStatus",
]
