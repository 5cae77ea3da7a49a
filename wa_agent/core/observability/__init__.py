from .metrics import DurationRecorder, MetricsCollector, timed

__all__ = [
    "DurationRecorder",
    "MetricsCollector",
    "timed",
]
