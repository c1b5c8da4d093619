"""API routers for the dotpreview FastAPI application."""

from . import documents, files, logs, preview, status, validate

__all__ = [
    "documents",
    "files",
    "logs",
    "preview",
    "status",
    "validate",
]
