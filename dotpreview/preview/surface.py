from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Protocol, Tuple, runtime_checkable

from PIL import Image, UnidentifiedImageError

_LOGGER = logging.getLogger(__name__)


@runtime_checkable
class PreviewSurface(Protocol):
    """Display that the scheduler pushes final render state into.

    All methods are invoked from the scheduler's event loop only.
    """

    def show_image(self, payload: bytes) -> None:
        """Display a raster image (PNG bytes)."""

    def show_markup(self, markup: str) -> None:
        """Display already sanitized SVG markup."""

    def show_status(self, message: str) -> None:
        """Display a transient status such as ``Rendering...``."""

    def show_error(self, message: str) -> None:
        """Display a user-visible failure."""

    def dispose(self) -> None:
        """Release everything; no further calls follow."""


@runtime_checkable
class ZoomableSurface(Protocol):
    def apply_zoom(self, factor: float) -> None:
        """Rescale displayed markup without a new render."""


@dataclass(frozen=True)
class PreviewSnapshot:
    """Serialisable view of what a preview currently shows."""

    kind: str
    status: Optional[str]
    error: Optional[str]
    image: Optional[bytes]
    image_size: Optional[Tuple[int, int]]
    markup: Optional[str]
    zoom: float
    updated_at: datetime
    revision: int
    disposed: bool = False

    def iso_timestamp(self) -> str:
        return self.updated_at.isoformat(timespec="seconds")


def _blank_snapshot() -> PreviewSnapshot:
    return PreviewSnapshot(
        kind="empty",
        status="Waiting for data...",
        error=None,
        image=None,
        image_size=None,
        markup=None,
        zoom=1.0,
        updated_at=datetime.now(),
        revision=0,
    )


def measure_png(payload: bytes) -> Tuple[int, int]:
    """Return the pixel size of ``payload``, raising ``ValueError`` if it is not an image."""

    try:
        with Image.open(io.BytesIO(payload)) as image:
            image.verify()
            return image.size
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValueError(f"Renderer output is not a valid image: {exc}") from exc


class WebPreviewSurface:
    """Thread-safe in-memory surface served by the HTTP preview routes."""

    def __init__(self, name: str = "preview") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._snapshot = _blank_snapshot()

    def snapshot(self) -> PreviewSnapshot:
        with self._lock:
            return self._snapshot

    def _update(self, **changes: object) -> None:
        with self._lock:
            self._snapshot = replace(
                self._snapshot,
                updated_at=datetime.now(),
                revision=self._snapshot.revision + 1,
                **changes,
            )

    def show_image(self, payload: bytes) -> None:
        try:
            size = measure_png(payload)
        except ValueError as exc:
            _LOGGER.warning("Preview %s rejected raster output: %s", self.name, exc)
            self.show_error(str(exc))
            return
        self._update(
            kind="image",
            image=bytes(payload),
            image_size=size,
            markup=None,
            error=None,
            status="Rendering completed successfully",
        )
        _LOGGER.debug("Preview %s shows %dx%d image", self.name, size[0], size[1])

    def show_markup(self, markup: str) -> None:
        self._update(
            kind="markup",
            markup=markup,
            image=None,
            image_size=None,
            error=None,
            status="Rendering completed successfully",
        )

    def show_status(self, message: str) -> None:
        self._update(status=message)
        _LOGGER.debug("Preview %s status: %s", self.name, message)

    def show_error(self, message: str) -> None:
        self._update(kind="error", error=message, image=None, image_size=None, markup=None, status=None)
        _LOGGER.debug("Preview %s error: %s", self.name, message)

    def apply_zoom(self, factor: float) -> None:
        self._update(zoom=float(factor))

    def dispose(self) -> None:
        self._update(kind="empty", image=None, image_size=None, markup=None, status=None, error=None, disposed=True)


__all__ = ["PreviewSnapshot", "PreviewSurface", "WebPreviewSurface", "ZoomableSurface", "measure_png"]
