from .config import PreviewConfig, PreviewSettings, RendererConfig, SchedulerConfig

__all__ = ["PreviewConfig", "PreviewSettings", "RendererConfig", "SchedulerConfig"]
