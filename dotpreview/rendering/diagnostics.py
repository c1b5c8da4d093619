"""Turn the renderer's free-text stderr into structured issues.

Graphviz is not consistent about how it phrases locations ("in line 4",
"near line 4", "line 4:"), so parsing here is deliberately tolerant and
never raises: anything it cannot understand stays available in the raw
diagnostic text.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional

from .models import Issue, Severity

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r"^\s*(error|warning)\s*:", re.IGNORECASE)
LINE_PATTERN = re.compile(r"(?:\bnear\s+)?\bline\s*(\d+)", re.IGNORECASE)
DETAIL_PATTERN = re.compile(
    r"^\s*(error|warning)\s*:\s*(?:.*?:)?\s*.*?(?:\bnear\s+)?\bline\s*(\d+)(.*)$",
    re.IGNORECASE,
)

MAX_CONCISE_MESSAGE_LENGTH = 150


def classify(diagnostic_text: Optional[str]) -> List[Issue]:
    """Return one :class:`Issue` per ``Error:``/``Warning:`` line."""

    if not diagnostic_text:
        return []
    issues: List[Issue] = []
    for raw_line in diagnostic_text.splitlines():
        line = raw_line.strip()
        marker = MARKER_PATTERN.match(line)
        if marker is None:
            continue
        severity = Severity.from_marker(marker.group(1))
        number = LINE_PATTERN.search(line, marker.end())
        if number is None:
            issues.append(Issue(severity=severity, line=1, message=line, numbered=False))
            continue
        try:
            line_number = max(1, int(number.group(1)))
        except ValueError:
            logger.debug("Unparsable line number in %r", line)
            issues.append(Issue(severity=severity, line=1, message=line, numbered=False))
            continue
        issues.append(Issue(severity=severity, line=line_number, message=line))
    logger.debug("Classified %d issue(s) from %d char(s) of diagnostics", len(issues), len(diagnostic_text))
    return issues


def severity_rank(severity: Optional[Severity]) -> int:
    return int(severity) if severity is not None else 0


def prioritize(issues: Iterable[Issue]) -> List[Issue]:
    """Keep the most severe issue for every line, ordered by line.

    When several issues of the same severity share a line, the first one
    reported wins.
    """

    best: Dict[int, Issue] = {}
    for issue in issues:
        current = best.get(issue.line)
        if current is None or severity_rank(issue.severity) > severity_rank(current.severity):
            best[issue.line] = issue
    return [best[line] for line in sorted(best)]


def summarize(diagnostic_text: Optional[str], exit_code: Optional[int] = None) -> str:
    """Build a one-line message suitable for a status or error panel."""

    if not diagnostic_text or not diagnostic_text.strip():
        if exit_code:
            return f"Graphviz 'dot' failed with exit code {exit_code}"
        return "Unknown Graphviz error"

    first_issue = next(
        (line.strip() for line in diagnostic_text.splitlines() if MARKER_PATTERN.match(line)),
        None,
    )
    if first_issue is None:
        return diagnostic_text.strip()[:MAX_CONCISE_MESSAGE_LENGTH]

    match = DETAIL_PATTERN.match(first_issue)
    if match:
        kind = match.group(1).capitalize()
        details = match.group(3).strip() or "details unavailable"
        return f"{kind} on line {match.group(2)}: {details}"[:MAX_CONCISE_MESSAGE_LENGTH]
    return first_issue[:MAX_CONCISE_MESSAGE_LENGTH]


__all__ = ["classify", "prioritize", "severity_rank", "summarize"]
