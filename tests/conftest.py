from __future__ import annotations

import pytest

from mobileuse.maestro import AutomationBackend, AutomationError


class RecordingBackend(AutomationBackend):
    """Backend that records calls instead of driving a device."""

    def __init__(self) -> None:
        self.calls: list[tuple[object, ...]] = []
        self.failing: set[str] = set()
        self.screenshot_failures: set[int] = set()
        self.launch_error: str | None = None

    @property
    def name(self) -> str:
        return "recording"

    def _record(self, method: str, *args: object) -> None:
        self.calls.append((method, *args))
        if method in self.failing:
            msg = f"Maestro command failed: {method} rejected"
            raise AutomationError(msg)

    def launch(self, app_id: str) -> None:
        self.calls.append(("launch", app_id))
        if self.launch_error:
            raise AutomationError(self.launch_error)

    def launch_app(self, app_id: str) -> None:
        self._record("launch_app", app_id)

    def stop_app(self, app_id: str) -> None:
        self._record("stop_app", app_id)

    def tap(self, x: float, y: float) -> None:
        self._record("tap", x, y)

    def tap_text(self, text: str) -> None:
        self._record("tap_text", text)

    def double_tap(self, x: float, y: float) -> None:
        self._record("double_tap", x, y)

    def long_press(self, x: float, y: float) -> None:
        self._record("long_press", x, y)

    def long_press_text(self, text: str) -> None:
        self._record("long_press_text", text)

    def input_text(self, text: str) -> None:
        self._record("input_text", text)

    def erase_text(self, chars: int) -> None:
        self._record("erase_text", chars)

    def scroll(self) -> None:
        self._record("scroll")

    def swipe(self, start_x: float, start_y: float, end_x: float, end_y: float) -> None:
        self._record("swipe", start_x, start_y, end_x, end_y)

    def back(self) -> None:
        self._record("back")

    def hide_keyboard(self) -> None:
        self._record("hide_keyboard")

    def open_link(self, url: str) -> None:
        self._record("open_link", url)

    def press_key(self, key: str) -> None:
        self._record("press_key", key)

    def wait_for_animation(self, timeout_ms: int) -> None:
        self._record("wait_for_animation", timeout_ms)

    def screenshot(self, step: int | None = None) -> str:
        self.calls.append(("screenshot", step))
        if step in self.screenshot_failures:
            msg = "Screenshot failed: device offline"
            raise AutomationError(msg)
        return "aW1hZ2U="

    def gestures(self) -> list[tuple[object, ...]]:
        return [call for call in self.calls if call[0] not in {"screenshot", "launch"}]


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()
