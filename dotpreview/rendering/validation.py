"""Syntax validation pass used for editor annotations.

Validation renders to ``canon`` with a shorter deadline than previews, so
that only parsing work is done, and folds every failure mode into the
returned issues instead of raising.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .diagnostics import classify
from .models import CancellationToken, Cancelled, Issue, OutputFormat, ProcessFailure, Severity, Success, Timeout
from .runner import DEFAULT_VALIDATION_TIMEOUT, ProcessRunner

logger = logging.getLogger(__name__)

MAX_SOURCE_CHARS = 500_000


@dataclass
class ValidationResult:
    issues: List[Issue] = field(default_factory=list)
    raw_text: str = ""
    exit_code: Optional[int] = None
    skipped: bool = False


async def validate(
    runner: ProcessRunner,
    source_text: str,
    timeout: float = DEFAULT_VALIDATION_TIMEOUT,
    *,
    token: Optional[CancellationToken] = None,
    max_chars: int = MAX_SOURCE_CHARS,
) -> ValidationResult:
    if len(source_text) > max_chars:
        logger.warning("Skipping validation for large source (%d chars)", len(source_text))
        return ValidationResult(skipped=True)

    outcome = await runner.run(source_text, OutputFormat.CANON, timeout, token=token)

    if isinstance(outcome, ProcessFailure):
        logger.error("Failed to execute 'dot' for validation: %s", outcome.cause)
        message = f"Failed to execute Graphviz 'dot'. Is it installed and in PATH? Error: {outcome.cause}"
        return ValidationResult(issues=[Issue(Severity.ERROR, 1, message, numbered=False)])

    if isinstance(outcome, Timeout):
        logger.warning("'dot' timed out during validation after %.1fs", outcome.seconds)
        issues = classify(outcome.diagnostic_text)
        issues.append(Issue(Severity.WARNING, 1, "Graphviz 'dot' validation timed out.", numbered=False))
        return ValidationResult(issues=issues, raw_text=outcome.diagnostic_text)

    if isinstance(outcome, Cancelled):
        return ValidationResult(skipped=True)

    assert isinstance(outcome, Success)
    issues = classify(outcome.diagnostic_text)
    if outcome.exit_code != 0 and not any(issue.severity is Severity.ERROR for issue in issues):
        message = f"Graphviz 'dot' failed with exit code {outcome.exit_code}."
        logger.warning("%s Stderr: %s", message, outcome.diagnostic_text.strip() or "<empty>")
        issues.append(Issue(Severity.ERROR, 1, message, numbered=False))
    return ValidationResult(issues=issues, raw_text=outcome.diagnostic_text, exit_code=outcome.exit_code)


__all__ = ["MAX_SOURCE_CHARS", "ValidationResult", "validate"]
