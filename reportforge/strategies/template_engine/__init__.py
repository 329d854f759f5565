"""Template engine strategies.

Implements package access, token injection, analysis and rendering for
Word documents.
"""

from reportforge.strategies.template_engine.analyzer import TemplateAnalyzer
from reportforge.strategies.template_engine.injector import TemplateInjector
from reportforge.strategies.template_engine.package import DocxPackage
from reportforge.strategies.template_engine.renderer import TemplateRenderer

__all__ = [
    "DocxPackage",
    "TemplateAnalyzer",
    "TemplateInjector",
    "TemplateRenderer",
]
