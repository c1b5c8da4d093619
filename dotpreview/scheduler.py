from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from .preview.surface import PreviewSurface, ZoomableSurface
from .rendering.diagnostics import classify, summarize
from .rendering.models import (
    ActiveJob,
    Cancelled,
    DiagnosticReport,
    OutputFormat,
    ProcessFailure,
    RenderOutcome,
    RenderRequest,
    Success,
    Timeout,
)
from .rendering.runner import DEFAULT_RENDER_TIMEOUT, ProcessRunner, zoom_arguments
from .rendering.sanitizer import SanitizationError, sanitize_svg

LOGGER = logging.getLogger("dotpreview.scheduler")

DEBOUNCE_JOB_ID = "debounce"
DEFAULT_DEBOUNCE_SECONDS = 0.5
DEFAULT_INITIAL_DELAY_SECONDS = 0.3

DiagnosticsCallback = Callable[[DiagnosticReport], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    RUNNING = "running"
    DISPOSED = "disposed"


def prepare_outcome(request: RenderRequest, outcome: Success) -> Success:
    """Classify diagnostics and sanitize vector output (runs on a worker thread)."""

    issues = tuple(classify(outcome.diagnostic_text))
    markup: Optional[str] = None
    rejection: Optional[str] = None
    if request.requested_format is OutputFormat.VECTOR and outcome.has_payload:
        try:
            markup = sanitize_svg(outcome.payload)
        except SanitizationError as exc:
            rejection = str(exc)
    return replace(outcome, diagnostics=issues, markup=markup, rejection=rejection)


class RenderScheduler:
    """Debounces edits and delivers only the newest render to a surface.

    Every method that touches scheduling state runs on the event loop the
    scheduler was started on; worker tasks hand their outcome back to
    :meth:`_complete` on that loop instead of writing shared fields.
    """

    def __init__(
        self,
        surface: PreviewSurface,
        runner: ProcessRunner,
        *,
        output_format: Union[OutputFormat, str] = OutputFormat.VECTOR,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        initial_delay_seconds: float = DEFAULT_INITIAL_DELAY_SECONDS,
        render_timeout: float = DEFAULT_RENDER_TIMEOUT,
        zoom_factor: float = 1.0,
        on_diagnostics: Optional[DiagnosticsCallback] = None,
        name: str = "preview",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._surface = surface
        self._runner = runner
        self._format = OutputFormat.parse(output_format)
        self._debounce_seconds = max(0.0, float(debounce_seconds))
        self._initial_delay_seconds = max(0.0, float(initial_delay_seconds))
        self._render_timeout = float(render_timeout)
        self._zoom_factor = float(zoom_factor)
        self._on_diagnostics = on_diagnostics
        self.name = name
        self._logger = logger or LOGGER

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[AsyncIOScheduler] = None
        self._started = False
        self._disposed = False

        self._sequence = 0
        self._latest_sequence = 0
        self._active: Optional[ActiveJob] = None
        self._active_task: Optional[asyncio.Task] = None
        self._debounce: Optional[tuple[str, bool]] = None
        self._pending: Optional[str] = None
        self._first_request = True
        self._last_text: Optional[str] = None
        self._last_rendered_text: Optional[str] = None
        self._executions = 0
        self.last_report: Optional[DiagnosticReport] = None

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    @property
    def started(self) -> bool:
        return self._started

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def state(self) -> SchedulerState:
        if self._disposed:
            return SchedulerState.DISPOSED
        if self._active is not None:
            return SchedulerState.RUNNING
        if self._debounce is not None:
            return SchedulerState.DEBOUNCING
        return SchedulerState.IDLE

    @property
    def output_format(self) -> OutputFormat:
        return self._format

    @property
    def zoom_factor(self) -> float:
        return self._zoom_factor

    @property
    def executions(self) -> int:
        return self._executions

    @property
    def latest_sequence_id(self) -> int:
        return self._latest_sequence

    async def start(self) -> None:
        if self._started or self._disposed:
            return
        self._loop = asyncio.get_running_loop()
        self._timer = AsyncIOScheduler(event_loop=self._loop)
        try:
            self._timer.start()
        except Exception:
            self._logger.exception("Unable to start timers for %s", self.name)
            raise
        self._started = True
        self._surface.show_status("Waiting for data...")
        self._logger.debug("Scheduler %s started", self.name)

    async def stop(self) -> None:
        self.dispose()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._cancel_debounce()
        self._pending = None
        if self._active is not None:
            self._active.token.cancel()
            self._active = None
        if self._timer is not None and self._started:
            try:
                self._timer.shutdown(wait=False)
            except Exception:
                self._logger.exception("Failed to stop timers for %s", self.name)
        self._started = False
        try:
            self._surface.dispose()
        finally:
            self._logger.info("Scheduler %s disposed after %d render(s)", self.name, self._executions)

    def update_timings(
        self,
        *,
        debounce_seconds: Optional[float] = None,
        initial_delay_seconds: Optional[float] = None,
        render_timeout: Optional[float] = None,
    ) -> None:
        if debounce_seconds is not None:
            self._debounce_seconds = max(0.0, float(debounce_seconds))
        if initial_delay_seconds is not None:
            self._initial_delay_seconds = max(0.0, float(initial_delay_seconds))
        if render_timeout is not None:
            self._render_timeout = float(render_timeout)

    # ------------------------------------------------------------------
    # requests
    # ------------------------------------------------------------------
    def request_update(self, source_text: str, force: bool = False) -> None:
        """Schedule a render of ``source_text`` after the debounce delay."""

        if self._disposed:
            self._logger.debug("Ignoring update for disposed scheduler %s", self.name)
            return
        if not self._started or self._timer is None:
            raise RuntimeError(f"Scheduler {self.name} has not been started")

        self._last_text = source_text
        if self._first_request:
            self._first_request = False
            force = True
            delay = self._initial_delay_seconds
        else:
            delay = self._debounce_seconds

        if not force and source_text == self._expected_text():
            if self._debounce is not None and self._debounce[1]:
                self._debounce = (source_text, True)
            else:
                self._cancel_debounce()
            self._pending = None
            self._logger.debug("Skipping render for %s: text unchanged", self.name)
            return

        previous_force = self._debounce[1] if self._debounce is not None else False
        self._debounce = (source_text, force or previous_force)
        self._timer.add_job(
            self._on_debounce_elapsed,
            trigger=DateTrigger(run_date=datetime.now() + timedelta(seconds=delay)),
            id=DEBOUNCE_JOB_ID,
            name=f"{self.name}:debounce",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
        )
        self._logger.debug("Armed debounce for %s (%.3fs, force=%s)", self.name, delay, self._debounce[1])

    def submit(self, source_text: str, force: bool = False) -> None:
        """Thread-safe variant of :meth:`request_update`."""

        if self._loop is None:
            raise RuntimeError(f"Scheduler {self.name} has not been started")
        self._loop.call_soon_threadsafe(self.request_update, source_text, force)

    def set_zoom(self, percent: float) -> None:
        if percent is None or percent <= 0:
            raise ValueError("Zoom percentage must be greater than zero")
        factor = float(percent) / 100.0
        if factor == self._zoom_factor:
            return
        self._zoom_factor = factor
        if self._format is OutputFormat.VECTOR:
            if isinstance(self._surface, ZoomableSurface):
                self._surface.apply_zoom(factor)
            return
        if self._last_text is not None and not self._disposed:
            self.request_update(self._last_text, force=True)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "format": self._format.value,
            "zoom": self._zoom_factor,
            "latest_sequence_id": self._latest_sequence,
            "pending": self._pending is not None,
            "executions": self._executions,
            "last_rendered_chars": len(self._last_rendered_text) if self._last_rendered_text is not None else None,
        }

    # ------------------------------------------------------------------
    # coordinator internals
    # ------------------------------------------------------------------
    def _expected_text(self) -> Optional[str]:
        if self._pending is not None:
            return self._pending
        if self._active is not None:
            return self._active.request.source_text
        return self._last_rendered_text

    def _cancel_debounce(self) -> None:
        self._debounce = None
        if self._timer is None or not self._started:
            return
        try:
            self._timer.remove_job(DEBOUNCE_JOB_ID)
        except JobLookupError:
            pass

    async def _on_debounce_elapsed(self) -> None:
        if self._disposed or self._debounce is None:
            return
        source_text, force = self._debounce
        self._debounce = None

        if self._active is None:
            self._dispatch(source_text, force)
            return
        if force:
            self._logger.debug(
                "Forced render supersedes job #%d for %s", self._active.sequence_id, self.name
            )
            self._dispatch(source_text, force)
            return
        if source_text == self._active.request.source_text:
            self._pending = None
        else:
            self._pending = source_text
        self._logger.debug("Coalesced update for %s while job #%d runs", self.name, self._active.sequence_id)

    def _dispatch(self, source_text: str, force: bool) -> None:
        assert self._loop is not None
        if self._active is not None:
            self._active.token.cancel()
        self._pending = None
        self._sequence += 1
        request = RenderRequest(
            source_text=source_text,
            requested_format=self._format,
            sequence_id=self._sequence,
            zoom_factor=self._zoom_factor,
            force=force,
        )
        job = ActiveJob(request=request)
        self._active = job
        self._latest_sequence = request.sequence_id
        self._executions += 1
        self._surface.show_status("Rendering...")
        self._active_task = self._loop.create_task(self._execute(job))
        self._logger.debug("Dispatched job #%d for %s (force=%s)", request.sequence_id, self.name, force)

    async def _execute(self, job: ActiveJob) -> None:
        request = job.request
        try:
            outcome: RenderOutcome = await self._runner.run(
                request.source_text,
                request.requested_format,
                self._render_timeout,
                token=job.token,
                extra_args=zoom_arguments(request.requested_format, request.zoom_factor),
            )
            if isinstance(outcome, Success) and not job.token.cancelled:
                outcome = await asyncio.to_thread(prepare_outcome, request, outcome)
        except asyncio.CancelledError:
            self._logger.debug("Job #%d for %s was interrupted", job.sequence_id, self.name)
            return
        except Exception as exc:  # pragma: no cover
            self._logger.exception("Job #%d for %s failed: %s", job.sequence_id, self.name, exc)
            outcome = ProcessFailure(cause=f"Unexpected renderer error: {exc}")
        self._complete(job, outcome)

    def _complete(self, job: ActiveJob, outcome: RenderOutcome) -> None:
        current = job.sequence_id == self._latest_sequence and not job.token.cancelled
        self._logger.debug(
            "Job #%d for %s finished in %.3fs (%s)",
            job.sequence_id,
            self.name,
            time.monotonic() - job.started_at,
            type(outcome).__name__,
        )
        if self._active is job:
            self._active = None
        if self._disposed:
            return
        if current:
            self._apply(job.request, outcome)
        else:
            self._logger.debug(
                "Dropped %s for stale job #%d (latest #%d) in %s",
                type(outcome).__name__,
                job.sequence_id,
                self._latest_sequence,
                self.name,
            )

        if self._active is None and self._pending is not None:
            follow_up = self._pending
            self._pending = None
            if follow_up != self._last_rendered_text:
                self._dispatch(follow_up, False)

    def _apply(self, request: RenderRequest, outcome: RenderOutcome) -> None:
        if isinstance(outcome, Cancelled):
            return
        if isinstance(outcome, ProcessFailure):
            self._logger.warning("Renderer unavailable for %s: %s", self.name, outcome.cause)
            # the error replaces whatever was shown, so no text counts as rendered
            self._last_rendered_text = None
            self._surface.show_error(
                f"Failed to execute Graphviz 'dot'. Is it installed and in PATH? Error: {outcome.cause}"
            )
            return
        if isinstance(outcome, Timeout):
            if outcome.diagnostic_text:
                issues = tuple(classify(outcome.diagnostic_text))
                self._publish(DiagnosticReport(request.sequence_id, issues, outcome.diagnostic_text))
            self._surface.show_status(
                f"Rendering timed out after {outcome.seconds:g}s; the next edit will retry"
            )
            return

        self._last_rendered_text = request.source_text
        self._publish(DiagnosticReport(request.sequence_id, outcome.diagnostics, outcome.diagnostic_text))

        if outcome.rejection is not None:
            self._logger.warning("Rejected SVG output for %s: %s", self.name, outcome.rejection)
            self._surface.show_error(f"Rendered SVG was rejected: {outcome.rejection}")
        elif not outcome.has_payload:
            detail = summarize(outcome.diagnostic_text, outcome.exit_code)
            self._surface.show_error(f"No output produced. {detail}")
        elif request.requested_format is OutputFormat.VECTOR:
            self._surface.show_markup(outcome.markup or "")
        else:
            self._surface.show_image(outcome.payload)
        self._logger.info(
            "Applied job #%d for %s (exit=%d, %d issue(s))",
            request.sequence_id,
            self.name,
            outcome.exit_code,
            len(outcome.diagnostics),
        )

    def _publish(self, report: DiagnosticReport) -> None:
        self.last_report = report
        if self._on_diagnostics is None:
            return
        try:
            self._on_diagnostics(report)
        except Exception:  # pragma: no cover - safeguard user callbacks
            self._logger.exception("Diagnostics callback for %s raised", self.name)


__all__ = [
    "DEFAULT_DEBOUNCE_SECONDS",
    "DEFAULT_INITIAL_DELAY_SECONDS",
    "RenderScheduler",
    "SchedulerState",
    "prepare_outcome",
]
