from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class RendererConfig(BaseModel):
    """How the Graphviz executable is located and invoked."""

    executable: Optional[str] = Field(
        default=None,
        description="Path to the dot executable; PATH and OS defaults are used when empty",
    )
    render_timeout: float = Field(
        10.0,
        gt=0,
        le=600,
        description="Seconds a preview render may take before it is killed",
    )
    validation_timeout: float = Field(
        5.0,
        gt=0,
        le=600,
        description="Seconds a validation pass may take before it is killed",
    )
    format: Literal["png", "svg"] = Field(
        "svg",
        description="Output format for new previews",
    )


class SchedulerConfig(BaseModel):
    """Debounce timings applied to every preview."""

    debounce_ms: int = Field(
        500,
        ge=0,
        le=60_000,
        description="Quiet period after an edit before rendering",
    )
    initial_delay_ms: int = Field(
        300,
        ge=0,
        le=60_000,
        description="Delay before the first render of a newly opened preview",
    )


class PreviewConfig(BaseModel):
    default_zoom_percent: float = Field(100.0, gt=0, le=1000)
    max_source_chars: int = Field(
        500_000,
        ge=1,
        description="Sources above this size are not validated",
    )


class PreviewSettings(BaseModel):
    """Runtime settings read from the YAML configuration file."""

    renderer: RendererConfig = Field(default_factory=RendererConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    preview: PreviewConfig = Field(default_factory=PreviewConfig)

    @property
    def debounce_seconds(self) -> float:
        return self.scheduler.debounce_ms / 1000.0

    @property
    def initial_delay_seconds(self) -> float:
        return self.scheduler.initial_delay_ms / 1000.0
