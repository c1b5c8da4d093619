"""Renderer-facing building blocks: process runner, diagnostics, sanitizer."""

from .diagnostics import classify, prioritize, summarize
from .models import (
    ActiveJob,
    CancellationToken,
    Cancelled,
    DiagnosticReport,
    Issue,
    OutputFormat,
    ProcessFailure,
    RenderOutcome,
    RenderRequest,
    Severity,
    Success,
    Timeout,
)
from .runner import ProcessRunner, resolve_executable
from .sanitizer import SanitizationError, sanitize_svg
from .validation import ValidationResult, validate

__all__ = [
    "ActiveJob",
    "CancellationToken",
    "Cancelled",
    "DiagnosticReport",
    "Issue",
    "OutputFormat",
    "ProcessFailure",
    "ProcessRunner",
    "RenderOutcome",
    "RenderRequest",
    "SanitizationError",
    "Severity",
    "Success",
    "Timeout",
    "ValidationResult",
    "classify",
    "prioritize",
    "resolve_executable",
    "sanitize_svg",
    "summarize",
    "validate",
]
