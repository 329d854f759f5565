"""Document-assembly engine for template-driven reports."""

__version__ = "0.1.0"
