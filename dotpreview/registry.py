"""Open previews keyed by document id, plus their file bindings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import SchedulerClosedError
from .models.config import PreviewSettings
from .preview.surface import WebPreviewSurface
from .rendering.models import DiagnosticReport, OutputFormat
from .rendering.runner import ProcessRunner
from .scheduler import RenderScheduler

logger = logging.getLogger(__name__)

GRAPH_SUFFIXES = (".dot", ".gv")


@dataclass
class PreviewHandle:
    document_id: str
    scheduler: RenderScheduler
    surface: WebPreviewSurface
    path: Optional[Path] = None
    text: Optional[str] = None


def is_graph_file(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in GRAPH_SUFFIXES


class PreviewRegistry:
    """Create, look up and dispose previews.

    Must only be used from the event loop that runs the schedulers.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        settings: Optional[PreviewSettings] = None,
        *,
        workspace: Optional[Path] = None,
    ) -> None:
        self.runner = runner
        self.settings = settings or PreviewSettings()
        self.workspace = Path(workspace) if workspace else None
        self._handles: Dict[str, PreviewHandle] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._handles

    def handles(self) -> List[PreviewHandle]:
        return list(self._handles.values())

    def get(self, document_id: str) -> Optional[PreviewHandle]:
        return self._handles.get(document_id)

    def resolve_path(self, path: Union[str, Path]) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute() and self.workspace is not None:
            candidate = self.workspace / candidate
        return candidate.resolve(strict=False)

    async def open(
        self,
        document_id: str,
        *,
        path: Optional[Union[str, Path]] = None,
        output_format: Optional[Union[OutputFormat, str]] = None,
    ) -> PreviewHandle:
        if self._closed:
            raise SchedulerClosedError("Preview registry has been shut down")
        handle = self._handles.get(document_id)
        if handle is None:
            handle = await self._create(document_id, output_format)
            self._handles[document_id] = handle
            logger.info("Opened preview %s (%s)", document_id, handle.scheduler.output_format.value)
        if path is not None:
            handle.path = self.resolve_path(path)
        return handle

    async def update(
        self,
        document_id: str,
        text: str,
        *,
        force: bool = False,
        path: Optional[Union[str, Path]] = None,
        output_format: Optional[Union[OutputFormat, str]] = None,
    ) -> PreviewHandle:
        handle = await self.open(document_id, path=path, output_format=output_format)
        handle.text = text
        handle.scheduler.request_update(text, force=force)
        return handle

    async def close(self, document_id: str) -> bool:
        handle = self._handles.pop(document_id, None)
        if handle is None:
            return False
        await handle.scheduler.stop()
        logger.info("Closed preview %s", document_id)
        return True

    def documents_for_path(self, path: Union[str, Path]) -> List[PreviewHandle]:
        target = self.resolve_path(path)
        return [handle for handle in self._handles.values() if handle.path == target]

    def apply_settings(self, settings: PreviewSettings) -> None:
        """Push reloaded settings into the runner and every open scheduler."""

        self.settings = settings
        self.runner.configure(settings.renderer.executable)
        for handle in self._handles.values():
            handle.scheduler.update_timings(
                debounce_seconds=settings.debounce_seconds,
                initial_delay_seconds=settings.initial_delay_seconds,
                render_timeout=settings.renderer.render_timeout,
            )
        logger.info("Applied settings to %d preview(s)", len(self._handles))

    async def shutdown(self) -> None:
        self._closed = True
        for document_id in list(self._handles):
            try:
                await self.close(document_id)
            except Exception:  # pragma: no cover - keep closing the rest
                logger.exception("Failed to close preview %s", document_id)

    async def _create(
        self,
        document_id: str,
        output_format: Optional[Union[OutputFormat, str]],
    ) -> PreviewHandle:
        settings = self.settings
        surface = WebPreviewSurface(document_id)

        def _log_report(report: DiagnosticReport) -> None:
            if report.issues:
                logger.debug("Preview %s job #%d reported %d issue(s)", document_id, report.sequence_id, len(report.issues))

        scheduler = RenderScheduler(
            surface,
            self.runner,
            output_format=output_format or settings.renderer.format,
            debounce_seconds=settings.debounce_seconds,
            initial_delay_seconds=settings.initial_delay_seconds,
            render_timeout=settings.renderer.render_timeout,
            zoom_factor=settings.preview.default_zoom_percent / 100.0,
            on_diagnostics=_log_report,
            name=document_id,
        )
        await scheduler.start()
        if scheduler.zoom_factor != 1.0:
            surface.apply_zoom(scheduler.zoom_factor)
        return PreviewHandle(document_id=document_id, scheduler=scheduler, surface=surface)


__all__ = ["GRAPH_SUFFIXES", "PreviewHandle", "PreviewRegistry", "is_graph_file"]
