"""External process strategies (LibreOffice, pdftoppm)."""

from reportforge.strategies.office.rasterizer import PdftoppmRasterizer
from reportforge.strategies.office.soffice import (
    FileUrlArgument,
    LibreOfficeRunner,
    MacroCommand,
    TextArgument,
)

__all__ = [
    "LibreOfficeRunner",
    "MacroCommand",
    "FileUrlArgument",
    "TextArgument",
    "PdftoppmRasterizer",
]
