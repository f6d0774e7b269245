"""Translate typed actions into automation backend primitives."""

from __future__ import annotations

import logging

from mobileuse.agent.models import (
    Action,
    Back,
    Done,
    DoubleTap,
    EraseText,
    Failed,
    HideKeyboard,
    InputText,
    LaunchApp,
    LongPress,
    OpenLink,
    PressKey,
    Scroll,
    StopApp,
    Swipe,
    Tap,
    TapText,
    UnknownAction,
    Wait,
)
from mobileuse.maestro import AutomationBackend, AutomationError

LOGGER = logging.getLogger(__name__)

# Edge swipe used when the platform has no native back command (iOS).
BACK_GESTURE = (1.0, 50.0, 80.0, 50.0)
SUMMARY_TEXT_LIMIT = 20


class ActionTranslator:
    """Runs exactly one logical backend operation per action."""

    def __init__(self, backend: AutomationBackend) -> None:
        self.backend = backend

    def dispatch(self, action: Action) -> None:
        backend = self.backend
        if isinstance(action, Tap):
            backend.tap(action.x, action.y)
        elif isinstance(action, TapText):
            backend.tap_text(action.text)
        elif isinstance(action, DoubleTap):
            backend.double_tap(action.x, action.y)
        elif isinstance(action, LongPress):
            if action.text:
                backend.long_press_text(action.text)
            else:
                backend.long_press(action.x, action.y)
        elif isinstance(action, InputText):
            backend.input_text(action.text)
        elif isinstance(action, EraseText):
            backend.erase_text(action.chars)
        elif isinstance(action, Scroll):
            backend.scroll()
        elif isinstance(action, Swipe):
            backend.swipe(action.start_x, action.start_y, action.end_x, action.end_y)
        elif isinstance(action, Back):
            self._back()
        elif isinstance(action, HideKeyboard):
            backend.hide_keyboard()
        elif isinstance(action, OpenLink):
            backend.open_link(action.url)
        elif isinstance(action, PressKey):
            backend.press_key(action.key)
        elif isinstance(action, Wait):
            backend.wait_for_animation(action.timeout_ms)
        elif isinstance(action, LaunchApp):
            if action.app_id:
                backend.launch_app(action.app_id)
        elif isinstance(action, StopApp):
            if action.app_id:
                backend.stop_app(action.app_id)
        elif isinstance(action, (Done, Failed)):
            msg = f"terminal action cannot be dispatched: {type(action).__name__}"
            raise ValueError(msg)
        elif isinstance(action, UnknownAction):
            LOGGER.warning("unknown_action", extra={"action": action.kind})
        else:
            LOGGER.warning("unknown_action", extra={"action": type(action).__name__})

    def _back(self) -> None:
        try:
            self.backend.back()
        except AutomationError as exc:
            LOGGER.info("back_fallback_gesture", extra={"error": str(exc)})
            self.backend.swipe(*BACK_GESTURE)


def summarize(action: Action) -> str:
    """One-line history entry for an executed action."""
    if isinstance(action, Tap):
        return f"tap({_coord(action.x)},{_coord(action.y)})"
    if isinstance(action, DoubleTap):
        return f"doubleTap({_coord(action.x)},{_coord(action.y)})"
    if isinstance(action, LongPress):
        if action.text:
            return "longPress"
        return f"longPress({_coord(action.x)},{_coord(action.y)})"
    if isinstance(action, TapText):
        return f'tapText("{action.text[:SUMMARY_TEXT_LIMIT]}")'
    if isinstance(action, InputText):
        return f'inputText("{action.text[:SUMMARY_TEXT_LIMIT]}")'
    if isinstance(action, Swipe):
        return (
            f"swipe({_coord(action.start_x)},{_coord(action.start_y)}"
            f"->{_coord(action.end_x)},{_coord(action.end_y)})"
        )
    if isinstance(action, LaunchApp):
        return f'launchApp("{action.app_id}")' if action.app_id else "launchApp"
    if isinstance(action, StopApp):
        return f'stopApp("{action.app_id}")' if action.app_id else "stopApp"
    if isinstance(action, UnknownAction):
        return action.kind
    return _ACTION_NAMES.get(type(action), type(action).__name__)


_ACTION_NAMES: dict[type, str] = {
    EraseText: "eraseText",
    Scroll: "scroll",
    Back: "back",
    HideKeyboard: "hideKeyboard",
    OpenLink: "openLink",
    PressKey: "pressKey",
    Wait: "wait",
    Done: "done",
    Failed: "failed",
}


def _coord(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"
