"""Exception hierarchy shared across the preview service."""

from __future__ import annotations


class DotPreviewError(RuntimeError):
    """Base exception for dotpreview failures."""


class SchedulerClosedError(DotPreviewError):
    """Raised when a preview is requested after the registry shut down."""


__all__ = ["DotPreviewError", "SchedulerClosedError"]
