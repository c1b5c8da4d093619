from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple
from xml.sax.saxutils import escape

import pytest
from PIL import Image

from dotpreview.rendering.models import (
    CancellationToken,
    Cancelled,
    OutputFormat,
    RenderOutcome,
    Success,
)


def png_bytes(size: Tuple[int, int] = (12, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, "white").save(buffer, format="PNG")
    return buffer.getvalue()


def svg_bytes(label: str) -> bytes:
    return (
        '<svg xmlns="http://www.w3.org/2000/svg" width="20pt" height="20pt">'
        f"<text>{escape(label)}</text></svg>"
    ).encode("utf-8")


@dataclass
class Call:
    text: str
    output_format: OutputFormat
    extra_args: Tuple[str, ...]
    token: Optional[CancellationToken]
    timeout: float


class FakeRunner:
    """Stands in for ProcessRunner; renders instantly unless a text is blocked."""

    def __init__(self) -> None:
        self.executable: Optional[str] = "/usr/bin/dot"
        self.calls: List[Call] = []
        self.outcomes: Dict[str, RenderOutcome] = {}
        self.honour_cancel = True
        self._blocked: Set[str] = set()
        self._gates: Dict[str, asyncio.Event] = {}

    def configure(self, executable: Optional[str]) -> None:
        self.executable = executable

    def block(self, text: str) -> None:
        self._blocked.add(text)

    def release(self, text: str) -> None:
        self._blocked.discard(text)
        gate = self._gates.get(text)
        if gate is not None:
            gate.set()

    def texts(self) -> List[str]:
        return [call.text for call in self.calls]

    async def run(
        self,
        source_text: str,
        output_format: OutputFormat,
        timeout: float = 10.0,
        token: Optional[CancellationToken] = None,
        extra_args=(),
    ) -> RenderOutcome:
        output_format = OutputFormat.parse(output_format)
        self.calls.append(Call(source_text, output_format, tuple(extra_args), token, timeout))
        if source_text in self._blocked:
            gate = self._gates.setdefault(source_text, asyncio.Event())
            waiters = [asyncio.ensure_future(gate.wait())]
            if token is not None and self.honour_cancel:
                waiters.append(asyncio.ensure_future(token.wait()))
            _, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for waiter in pending:
                waiter.cancel()
        if token is not None and token.cancelled and self.honour_cancel:
            return Cancelled()
        if source_text in self.outcomes:
            return self.outcomes[source_text]
        if output_format is OutputFormat.RASTER:
            payload = png_bytes()
        elif output_format is OutputFormat.VECTOR:
            payload = svg_bytes(source_text)
        else:
            payload = b""
        return Success(payload=payload, exit_code=0)


class RecordingSurface:
    def __init__(self) -> None:
        self.events: List[Tuple[str, object]] = []

    def of(self, kind: str) -> List[object]:
        return [value for name, value in self.events if name == kind]

    def show_image(self, payload: bytes) -> None:
        self.events.append(("image", payload))

    def show_markup(self, markup: str) -> None:
        self.events.append(("markup", markup))

    def show_status(self, message: str) -> None:
        self.events.append(("status", message))

    def show_error(self, message: str) -> None:
        self.events.append(("error", message))

    def apply_zoom(self, factor: float) -> None:
        self.events.append(("zoom", factor))

    def dispose(self) -> None:
        self.events.append(("dispose", None))


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()
