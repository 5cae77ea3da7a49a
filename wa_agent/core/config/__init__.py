from .constants import CircuitState
from .settings import Settings, get_settings, reload_settings

__all__ = [
    "CircuitState",
    "Settings",
    "get_settings",
    "reload_settings",
]
