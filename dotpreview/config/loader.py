"""Read ``settings.yaml`` and reload it when the file changes on disk."""

from __future__ import annotations

import logging
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml
from pydantic import ValidationError

from ..errors import DotPreviewError
from ..models.config import PreviewSettings

logger = logging.getLogger(__name__)

SettingsCallback = Callable[[PreviewSettings], None]

# flat keys accepted from older settings files: key -> (section, field)
_LEGACY_KEYS = {
    "dot_path": ("renderer", "executable"),
    "render_timeout": ("renderer", "render_timeout"),
    "validation_timeout": ("renderer", "validation_timeout"),
    "debounce_ms": ("scheduler", "debounce_ms"),
}


class ConfigError(DotPreviewError):
    """Base exception for loader errors."""


class ConfigValidationError(ConfigError):
    """Raised when the configuration on disk is invalid."""

    def __init__(self, message: str, errors: Any) -> None:
        super().__init__(message)
        self.errors = errors


def deep_merge(base: Mapping[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``update`` into ``base`` without mutating either."""

    merged: Dict[str, Any] = deepcopy(dict(base))
    for key, value in update.items():
        if key in merged and isinstance(merged[key], Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def normalise_settings_payload(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Move legacy flat keys into their nested sections.

    A nested value always wins over the flat one.
    """

    data: Dict[str, Any] = deepcopy(dict(raw))
    for key, (section, name) in _LEGACY_KEYS.items():
        if key not in data:
            continue
        value = data.pop(key)
        target = dict(data.get(section) or {})
        target.setdefault(name, value)
        data[section] = target
    return data


def read_settings(path: Path) -> PreviewSettings:
    """Parse ``path`` into :class:`PreviewSettings`; a missing file gives the defaults."""

    if not path.exists():
        return PreviewSettings()
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Could not parse settings file {path}: {exc}") from exc
    if raw is None:
        return PreviewSettings()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Settings file {path} must contain a YAML mapping")

    merged = deep_merge(PreviewSettings().model_dump(), normalise_settings_payload(raw))
    try:
        return PreviewSettings.model_validate(merged)
    except ValidationError as exc:
        raise ConfigValidationError("Settings do not match the schema", exc.errors()) from exc


def _signature(path: Path) -> Optional[Tuple[float, int]]:
    try:
        stat = path.stat()
    except FileNotFoundError:
        return None
    return stat.st_mtime, stat.st_size


class SettingsLoader:
    """Keeps the last good :class:`PreviewSettings` read from one file.

    :meth:`poll` re-reads the file when its mtime or size moved and returns
    the new settings only when they differ from the current ones. A broken
    edit is logged and the previous settings stay in force. :meth:`start`
    runs the poll on a daemon thread.
    """

    def __init__(self, path: Path, poll_interval: float = 2.0, log: Optional[logging.Logger] = None) -> None:
        self.path = Path(path)
        self.poll_interval = poll_interval
        self.current: Optional[PreviewSettings] = None
        self._signature: Optional[Tuple[float, int]] = None
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._log = log or logger

    def load(self) -> PreviewSettings:
        with self._lock:
            self._signature = _signature(self.path)
            self.current = read_settings(self.path)
            return self.current

    def poll(self) -> Optional[PreviewSettings]:
        with self._lock:
            signature = _signature(self.path)
            if signature == self._signature:
                return None
            self._signature = signature
            try:
                settings = read_settings(self.path)
            except ConfigError as exc:
                self._log.warning("Keeping previous settings, %s is invalid: %s", self.path, exc)
                return None
            if settings == self.current:
                return None
            self.current = settings
            return settings

    def start(self, callback: SettingsCallback) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._watch_loop, args=(callback,), name="settings-watch", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None

    def _watch_loop(self, callback: SettingsCallback) -> None:
        self._log.debug("Watching %s every %.1fs", self.path, self.poll_interval)
        while not self._stop.wait(self.poll_interval):
            settings = self.poll()
            if settings is None:
                continue
            try:
                callback(settings)
            except Exception:  # pragma: no cover - safeguard user callbacks
                self._log.exception("Settings callback raised an error")


__all__ = [
    "ConfigError",
    "ConfigValidationError",
    "SettingsLoader",
    "deep_merge",
    "normalise_settings_payload",
    "read_settings",
]
