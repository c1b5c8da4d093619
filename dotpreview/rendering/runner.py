"""Run the Graphviz ``dot`` executable with a hard deadline.

The runner never raises for renderer problems: spawn failures, deadlines
and cancellation are all reported as :data:`RenderOutcome` values so the
scheduler can decide what the user gets to see.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

from .models import (
    CancellationToken,
    Cancelled,
    OutputFormat,
    ProcessFailure,
    RenderOutcome,
    Success,
    Timeout,
)

logger = logging.getLogger(__name__)

DEFAULT_RENDER_TIMEOUT = 10.0
DEFAULT_VALIDATION_TIMEOUT = 5.0
# time granted to the readers to hand over partial output after a kill
PARTIAL_OUTPUT_GRACE = 0.5
BASE_DPI = 96.0

WINDOWS_FALLBACK = r"C:\Program Files\Graphviz\bin\dot.exe"
MACOS_FALLBACKS = ("/opt/homebrew/bin/dot", "/usr/local/bin/dot")
LINUX_FALLBACK = "/usr/bin/dot"


def resolve_executable(configured: Optional[Union[str, Path]] = None) -> Optional[str]:
    """Locate the renderer: configured path, ``PATH`` lookup, OS defaults."""

    if configured is not None and str(configured).strip():
        return str(configured).strip()

    found = shutil.which("dot")
    if found:
        return found

    if sys.platform.startswith("win"):
        return WINDOWS_FALLBACK
    if sys.platform == "darwin":
        for candidate in MACOS_FALLBACKS:
            if Path(candidate).exists():
                return candidate
        return MACOS_FALLBACKS[-1]
    if sys.platform.startswith("linux"):
        return LINUX_FALLBACK
    return None


def zoom_arguments(output_format: OutputFormat, zoom_factor: float) -> Sequence[str]:
    if output_format is not OutputFormat.RASTER or zoom_factor <= 0 or zoom_factor == 1.0:
        return ()
    return (f"-Gdpi={BASE_DPI * zoom_factor:g}",)


class ProcessRunner:
    """Execute the renderer as a subprocess, one call per render."""

    def __init__(
        self,
        executable: Optional[Union[str, Path]] = None,
        *,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self._configured = str(executable) if executable else None
        self._resolved: Optional[str] = None
        self._log = log or logger

    @property
    def executable(self) -> Optional[str]:
        if self._resolved is None:
            self._resolved = resolve_executable(self._configured)
        return self._resolved

    def configure(self, executable: Optional[Union[str, Path]]) -> None:
        """Switch to another executable; the next run resolves it again."""

        self._configured = str(executable) if executable else None
        self._resolved = None

    def command(self, output_format: OutputFormat, extra_args: Iterable[str] = ()) -> list[str]:
        executable = self.executable
        if not executable:
            raise FileNotFoundError("Graphviz 'dot' executable could not be located")
        return [executable, f"-T{output_format.value}", *extra_args]

    async def run(
        self,
        source_text: str,
        output_format: Union[OutputFormat, str],
        timeout: float = DEFAULT_RENDER_TIMEOUT,
        token: Optional[CancellationToken] = None,
        extra_args: Iterable[str] = (),
    ) -> RenderOutcome:
        output_format = OutputFormat.parse(output_format)
        token = token or CancellationToken()
        if token.cancelled:
            return Cancelled()

        try:
            command = self.command(output_format, extra_args)
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self._log.warning("Unable to start renderer %s: %s", self._configured or self._resolved, exc)
            return ProcessFailure(cause=str(exc) or exc.__class__.__name__)

        self._log.debug("Started %s (pid=%s)", " ".join(command), process.pid)
        writer = asyncio.create_task(self._feed(process, source_text.encode("utf-8")))
        reader = asyncio.create_task(process.stdout.read())  # type: ignore[union-attr]
        diagnostics = asyncio.create_task(process.stderr.read())  # type: ignore[union-attr]
        completion = asyncio.gather(writer, reader, diagnostics, process.wait())
        cancelled = asyncio.create_task(token.wait())

        try:
            done, _ = await asyncio.wait(
                {completion, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            self._kill(process)
            self._abandon(writer, reader, diagnostics, completion)
            self._close(process)
            raise
        finally:
            cancelled.cancel()

        if completion in done:
            try:
                _, payload, stderr, exit_code = completion.result()
            except OSError as exc:
                self._log.warning("I/O with renderer pid %s failed: %s", process.pid, exc)
                self._kill(process)
                self._abandon(writer, reader, diagnostics)
                self._close(process)
                return ProcessFailure(cause=str(exc) or exc.__class__.__name__)
            return Success(
                payload=payload,
                exit_code=exit_code,
                diagnostic_text=_decode(stderr),
            )

        self._kill(process)

        if token.cancelled:
            self._log.debug("Render cancelled; abandoning pid %s", process.pid)
            self._abandon(writer, reader, diagnostics, completion)
            self._close(process)
            return Cancelled()

        self._log.warning("Renderer exceeded %.1fs deadline; killed pid %s", timeout, process.pid)
        await asyncio.wait({reader, diagnostics}, timeout=PARTIAL_OUTPUT_GRACE)
        partial = _result_or(reader, b"")
        stderr = _result_or(diagnostics, b"")
        self._abandon(writer, reader, diagnostics, completion)
        self._close(process)
        return Timeout(seconds=timeout, partial_payload=partial, diagnostic_text=_decode(stderr))

    async def _feed(self, process: asyncio.subprocess.Process, data: bytes) -> None:
        stdin = process.stdin
        if stdin is None:
            return
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            # the exit code and stderr describe why the tool stopped reading
            self._log.debug("Renderer closed stdin early: %s", exc)
        finally:
            try:
                stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass

    @staticmethod
    def _close(process: asyncio.subprocess.Process) -> None:
        # a grandchild may still hold the pipes open after the kill
        transport = getattr(process, "_transport", None)
        if transport is not None:
            transport.close()

    @staticmethod
    def _abandon(*tasks: "asyncio.Future") -> None:
        for task in tasks:
            if task.done():
                if not task.cancelled():
                    task.exception()
                continue
            task.cancel()
            task.add_done_callback(_swallow_result)


def _swallow_result(task: "asyncio.Future") -> None:
    if not task.cancelled():
        task.exception()


def _result_or(task: "asyncio.Future", default: bytes) -> bytes:
    if task.done() and not task.cancelled() and task.exception() is None:
        return task.result()
    return default


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


__all__ = [
    "DEFAULT_RENDER_TIMEOUT",
    "DEFAULT_VALIDATION_TIMEOUT",
    "ProcessRunner",
    "resolve_executable",
    "zoom_arguments",
]
