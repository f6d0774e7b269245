"""Automation backend interface shared by the loop and the translator."""

from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

DEFAULT_DRIVER_PORT = 6001


class AutomationError(RuntimeError):
    """Raised when a device command or screen capture fails."""


@dataclass(slots=True, frozen=True)
class IosDevice:
    """Physical iOS device driven through ``maestro-ios-device``."""

    udid: str
    team_id: str
    app_file: str
    driver_port: int = DEFAULT_DRIVER_PORT


@dataclass(slots=True, frozen=True)
class DeviceTarget:
    """Which device a backend talks to; neither field means the default device."""

    device_id: str | None = None
    ios_device: IosDevice | None = None

    @property
    def label(self) -> str:
        if self.ios_device is not None:
            return f"ios:{self.ios_device.udid}"
        return self.device_id or "default"


@dataclass(slots=True)
class FlowResult:
    """Result of running one automation flow."""

    flow: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    duration_seconds: float = 0.0


class AutomationBackend(abc.ABC):
    """Gestures, text entry, app lifecycle and screen capture for one device.

    Coordinates are percentages of the screen (0-100), never pixels.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly backend name."""

    @abc.abstractmethod
    def launch(self, app_id: str) -> None:
        """Launch the app under test."""

    @abc.abstractmethod
    def launch_app(self, app_id: str) -> None:
        """Bring another app to the foreground during a run."""

    @abc.abstractmethod
    def stop_app(self, app_id: str) -> None: ...

    @abc.abstractmethod
    def tap(self, x: float, y: float) -> None: ...

    @abc.abstractmethod
    def tap_text(self, text: str) -> None: ...

    @abc.abstractmethod
    def double_tap(self, x: float, y: float) -> None: ...

    @abc.abstractmethod
    def long_press(self, x: float, y: float) -> None: ...

    @abc.abstractmethod
    def long_press_text(self, text: str) -> None: ...

    @abc.abstractmethod
    def input_text(self, text: str) -> None: ...

    @abc.abstractmethod
    def erase_text(self, chars: int) -> None: ...

    @abc.abstractmethod
    def scroll(self) -> None: ...

    @abc.abstractmethod
    def swipe(self, start_x: float, start_y: float, end_x: float, end_y: float) -> None: ...

    @abc.abstractmethod
    def back(self) -> None: ...

    @abc.abstractmethod
    def hide_keyboard(self) -> None: ...

    @abc.abstractmethod
    def open_link(self, url: str) -> None: ...

    @abc.abstractmethod
    def press_key(self, key: str) -> None: ...

    @abc.abstractmethod
    def wait_for_animation(self, timeout_ms: int) -> None: ...

    @abc.abstractmethod
    def screenshot(self, step: int | None = None) -> str:
        """Capture the screen and return it as a base64-encoded PNG."""

    def log_request(self, flow: str, *, timeout: float | None) -> None:
        LOGGER.info(
            "flow_request",
            extra={
                "backend": self.name,
                "flow": flow,
                "timeout": timeout,
            },
        )

    def log_result(self, result: FlowResult) -> None:
        LOGGER.info(
            "flow_result",
            extra={
                "backend": self.name,
                "returncode": result.returncode,
                "timed_out": result.timed_out,
                "duration_seconds": round(result.duration_seconds, 4),
                "stdout_length": len(result.stdout),
                "stderr_length": len(result.stderr),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()
