"""Device automation backends."""

from .base import (
    AutomationBackend,
    AutomationError,
    DeviceTarget,
    FlowResult,
    IosDevice,
)
from .maestro_backend import MaestroBackend, is_maestro_installed, maestro_version

__all__ = [
    "AutomationBackend",
    "AutomationError",
    "DeviceTarget",
    "FlowResult",
    "IosDevice",
    "MaestroBackend",
    "is_maestro_installed",
    "maestro_version",
]
