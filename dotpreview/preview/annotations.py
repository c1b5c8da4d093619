"""Map renderer issues onto the live document for gutter/underline marks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List

from ..rendering.diagnostics import prioritize
from ..rendering.models import Issue, Severity

logger = logging.getLogger(__name__)

MAX_ANNOTATION_MESSAGE = 120


@dataclass(frozen=True)
class Annotation:
    """Editor mark covering one whole line.

    ``line`` is 0-based; ``start`` and ``end`` are character offsets into
    the document text.
    """

    line: int
    start: int
    end: int
    severity: Severity
    message: str
    tooltip: str


def _line_offsets(text: str) -> List[int]:
    offsets = [0]
    for index, char in enumerate(text):
        if char == "\n":
            offsets.append(index + 1)
    return offsets


def annotate(issues: Iterable[Issue], document_text: str) -> List[Annotation]:
    """Return one annotation per line, dropping lines the document no longer has."""

    offsets = _line_offsets(document_text)
    line_count = len(offsets)
    annotations: List[Annotation] = []
    for issue in prioritize(issues):
        line = issue.line - 1
        if line < 0 or line >= line_count:
            logger.warning("Dropping issue for line %d; document has %d line(s)", issue.line, line_count)
            continue
        start = offsets[line]
        end = offsets[line + 1] - 1 if line + 1 < line_count else len(document_text)
        if end > start and document_text[end - 1] == "\r":
            end -= 1
        first_line = issue.message.splitlines()[0].strip() if issue.message.strip() else ""
        annotations.append(
            Annotation(
                line=line,
                start=start,
                end=end,
                severity=issue.severity,
                message=first_line[:MAX_ANNOTATION_MESSAGE] or "Graphviz issue",
                tooltip=issue.message,
            )
        )
    return annotations


__all__ = ["Annotation", "annotate"]
