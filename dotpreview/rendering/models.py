"""Value types shared by the runner, the classifier and the scheduler."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional, Tuple, Union


class OutputFormat(str, Enum):
    """Renderer output formats; the value is passed as ``-T<value>``."""

    RASTER = "png"
    VECTOR = "svg"
    CANON = "canon"

    @classmethod
    def parse(cls, value: Union[str, "OutputFormat"]) -> "OutputFormat":
        if isinstance(value, OutputFormat):
            return value
        candidate = (value or "").strip().lower()
        for member in cls:
            if candidate in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unsupported output format: {value!r}")


class Severity(IntEnum):
    WARNING = 1
    ERROR = 2

    @classmethod
    def from_marker(cls, marker: str) -> "Severity":
        return cls.ERROR if marker.strip().lower() == "error" else cls.WARNING


@dataclass(frozen=True)
class Issue:
    """A single error or warning reported by the renderer.

    ``line`` is 1-based, exactly as the tool reported it.  When no line
    number could be extracted the issue is attached to line 1 and
    ``numbered`` is ``False``.
    """

    severity: Severity
    line: int
    message: str
    numbered: bool = True


@dataclass(frozen=True)
class RenderRequest:
    source_text: str
    requested_format: OutputFormat
    sequence_id: int
    zoom_factor: float = 1.0
    force: bool = False


@dataclass(frozen=True)
class Success:
    payload: bytes
    exit_code: int
    diagnostic_text: str = ""
    diagnostics: Tuple[Issue, ...] = ()
    markup: Optional[str] = None
    rejection: Optional[str] = None

    @property
    def has_payload(self) -> bool:
        return bool(self.payload)


@dataclass(frozen=True)
class ProcessFailure:
    cause: str


@dataclass(frozen=True)
class Timeout:
    seconds: float
    partial_payload: bytes = b""
    diagnostic_text: str = ""


@dataclass(frozen=True)
class Cancelled:
    pass


RenderOutcome = Union[Success, ProcessFailure, Timeout, Cancelled]


class CancellationToken:
    """One-shot cancellation flag that can be awaited.

    The token must be created and awaited on the event loop that owns the
    job; ``cancel`` is idempotent and safe to call before anyone waits.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ActiveJob:
    request: RenderRequest
    token: CancellationToken = field(default_factory=CancellationToken)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def sequence_id(self) -> int:
        return self.request.sequence_id


@dataclass(frozen=True)
class DiagnosticReport:
    """Structured and raw diagnostics of one applied render."""

    sequence_id: int
    issues: Tuple[Issue, ...]
    raw_text: str


__all__ = [
    "ActiveJob",
    "CancellationToken",
    "Cancelled",
    "DiagnosticReport",
    "Issue",
    "OutputFormat",
    "ProcessFailure",
    "RenderOutcome",
    "RenderRequest",
    "Severity",
    "Success",
    "Timeout",
]
