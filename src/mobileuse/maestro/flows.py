"""Builders for single-command Maestro flow documents."""

from __future__ import annotations

from typing import Union

import yaml

FlowCommand = Union[str, dict[str, object]]


def render_flow(command: FlowCommand, *, app_id: str | None = None) -> str:
    """Render a flow with an optional ``appId`` header and one command."""
    header = yaml.safe_dump({"appId": app_id}, sort_keys=False) if app_id else ""
    body = yaml.safe_dump(
        [command],
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=10_000,
    )
    return f"{header}---\n{body}"


def point(x: float, y: float) -> str:
    return f"{_percent(x)}%, {_percent(y)}%"


def launch_command() -> FlowCommand:
    return "launchApp"


def launch_app_command(app_id: str) -> FlowCommand:
    return {"launchApp": {"appId": app_id}}


def stop_app_command(app_id: str) -> FlowCommand:
    return {"stopApp": {"appId": app_id}}


def tap_command(x: float, y: float) -> FlowCommand:
    return {"tapOn": {"point": point(x, y)}}


def tap_text_command(text: str) -> FlowCommand:
    return {"tapOn": {"text": text}}


def double_tap_command(x: float, y: float) -> FlowCommand:
    return {"doubleTapOn": {"point": point(x, y)}}


def long_press_command(x: float, y: float) -> FlowCommand:
    return {"longPressOn": {"point": point(x, y)}}


def long_press_text_command(text: str) -> FlowCommand:
    return {"longPressOn": {"text": text}}


def input_text_command(text: str) -> FlowCommand:
    return {"inputText": text}


def erase_text_command(chars: int) -> FlowCommand:
    return {"eraseText": chars}


def swipe_command(start_x: float, start_y: float, end_x: float, end_y: float) -> FlowCommand:
    return {"swipe": {"start": point(start_x, start_y), "end": point(end_x, end_y)}}


def open_link_command(url: str) -> FlowCommand:
    return {"openLink": url}


def press_key_command(key: str) -> FlowCommand:
    return {"pressKey": key}


def wait_command(timeout_ms: int) -> FlowCommand:
    return {"waitForAnimationToEnd": {"timeout": timeout_ms}}


def screenshot_command(name: str) -> FlowCommand:
    return {"takeScreenshot": name}


def _percent(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"
