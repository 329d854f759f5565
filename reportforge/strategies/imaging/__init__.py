"""Image resolution and compositing strategies."""

from reportforge.strategies.imaging.compositor import ImageCompositor, compute_crop
from reportforge.strategies.imaging.sources import ImageSourceResolver

__all__ = [
    "ImageCompositor",
    "ImageSourceResolver",
    "compute_crop",
]
