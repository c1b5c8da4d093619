from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from fastapi import FastAPI, Request

from .config import SettingsLoader
from .models.config import PreviewSettings
from .registry import PreviewRegistry
from .rendering.runner import ProcessRunner

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_WORKSPACE = Path(".")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    workspace: Path = DEFAULT_WORKSPACE
    config_path: Optional[Path] = None
    log_path: Optional[Path] = None
    watch_config: bool = True


@dataclass
class AppState:
    """Container for FastAPI state shared across request handlers."""

    config: ServerConfig
    settings: PreviewSettings
    runner: ProcessRunner
    registry: PreviewRegistry
    loader: Optional[SettingsLoader] = None

    @property
    def log_file(self) -> Optional[Path]:
        return self.config.log_path

    def apply_settings(self, settings: PreviewSettings) -> None:
        self.settings = settings
        self.registry.apply_settings(settings)


def get_app_state(request: Request) -> AppState:
    state = getattr(request.app.state, "dotpreview", None)
    if state is None:
        raise RuntimeError("Application state has not been initialised")
    return state


def configure_logging(level: Union[int, str] = logging.INFO, log_path: Optional[Path] = None) -> None:
    """Send log records to stderr and, when configured, to ``log_path``."""

    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(getattr(handler, "_dotpreview", False) for handler in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        stream._dotpreview = True  # type: ignore[attr-defined]
        root.addHandler(stream)

    if log_path is not None:
        target = Path(log_path).resolve()
        existing = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == target
        ]
        if not existing:
            target.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(target, encoding="utf-8")
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    # APScheduler logs every debounce job at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def _load_settings(config: ServerConfig) -> tuple[PreviewSettings, Optional[SettingsLoader]]:
    if config.config_path is None:
        return PreviewSettings(), None
    loader = SettingsLoader(config.config_path)
    return loader.load(), loader


def create_app(
    config: Optional[ServerConfig] = None,
    settings: Optional[PreviewSettings] = None,
    runner: Optional[ProcessRunner] = None,
) -> FastAPI:
    config = config or ServerConfig()
    loader: Optional[SettingsLoader] = None
    if settings is None:
        settings, loader = _load_settings(config)

    runner = runner or ProcessRunner(settings.renderer.executable)
    registry = PreviewRegistry(runner, settings, workspace=config.workspace)
    state = AppState(config=config, settings=settings, runner=runner, registry=registry, loader=loader)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        loop = asyncio.get_running_loop()
        if state.loader is not None and config.watch_config:

            def _on_change(new_settings: PreviewSettings) -> None:
                logger.info("Settings file %s changed", config.config_path)
                loop.call_soon_threadsafe(state.apply_settings, new_settings)

            state.loader.start(_on_change)
        try:
            yield
        finally:
            if state.loader is not None:
                state.loader.stop()
            await state.registry.shutdown()

    app = FastAPI(title="DOT Preview", version="1.0.0", lifespan=lifespan)
    app.state.dotpreview = state

    from .api import documents, files, logs, preview, status, validate

    app.include_router(status.router)
    app.include_router(documents.router)
    app.include_router(preview.router)
    app.include_router(files.router)
    app.include_router(validate.router)
    app.include_router(logs.router)

    return app


__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "AppState",
    "ServerConfig",
    "configure_logging",
    "create_app",
    "get_app_state",
]
