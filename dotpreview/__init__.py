"""Live Graphviz previews: debounced rendering, diagnostics and sanitized output."""

from .errors import DotPreviewError, SchedulerClosedError
from .scheduler import RenderScheduler, SchedulerState

__version__ = "1.0.0"

__all__ = ["DotPreviewError", "RenderScheduler", "SchedulerClosedError", "SchedulerState", "__version__"]
