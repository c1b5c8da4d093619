"""Preview surfaces and editor annotations."""

from .annotations import Annotation, annotate
from .surface import PreviewSnapshot, PreviewSurface, WebPreviewSurface, ZoomableSurface, measure_png

__all__ = [
    "Annotation",
    "PreviewSnapshot",
    "PreviewSurface",
    "WebPreviewSurface",
    "ZoomableSurface",
    "annotate",
    "measure_png",
]
