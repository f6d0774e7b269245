"""Data models used by the mobile automation loop."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Union

ACTION_KINDS: tuple[str, ...] = (
    "tap",
    "tapText",
    "doubleTap",
    "longPress",
    "inputText",
    "eraseText",
    "scroll",
    "swipe",
    "back",
    "hideKeyboard",
    "openLink",
    "pressKey",
    "wait",
    "launchApp",
    "stopApp",
    "done",
    "failed",
)

ParamValue = Union[int, float, str, bool, None]

DEFAULT_POINT = 50.0
DEFAULT_SWIPE = (50.0, 50.0, 50.0, 20.0)
DEFAULT_ERASE_CHARS = 50
DEFAULT_KEY = "enter"
DEFAULT_WAIT_MS = 3000


@dataclass(slots=True, frozen=True)
class Tap:
    x: float = DEFAULT_POINT
    y: float = DEFAULT_POINT


@dataclass(slots=True, frozen=True)
class TapText:
    text: str = ""


@dataclass(slots=True, frozen=True)
class DoubleTap:
    x: float = DEFAULT_POINT
    y: float = DEFAULT_POINT


@dataclass(slots=True, frozen=True)
class LongPress:
    """Long press by visible text when ``text`` is set, else by coordinates."""

    x: float = DEFAULT_POINT
    y: float = DEFAULT_POINT
    text: str | None = None


@dataclass(slots=True, frozen=True)
class InputText:
    text: str = ""


@dataclass(slots=True, frozen=True)
class EraseText:
    chars: int = DEFAULT_ERASE_CHARS


@dataclass(slots=True, frozen=True)
class Scroll:
    pass


@dataclass(slots=True, frozen=True)
class Swipe:
    start_x: float = DEFAULT_SWIPE[0]
    start_y: float = DEFAULT_SWIPE[1]
    end_x: float = DEFAULT_SWIPE[2]
    end_y: float = DEFAULT_SWIPE[3]


@dataclass(slots=True, frozen=True)
class Back:
    pass


@dataclass(slots=True, frozen=True)
class HideKeyboard:
    pass


@dataclass(slots=True, frozen=True)
class OpenLink:
    url: str = ""


@dataclass(slots=True, frozen=True)
class PressKey:
    key: str = DEFAULT_KEY


@dataclass(slots=True, frozen=True)
class Wait:
    timeout_ms: int = DEFAULT_WAIT_MS


@dataclass(slots=True, frozen=True)
class LaunchApp:
    app_id: str | None = None


@dataclass(slots=True, frozen=True)
class StopApp:
    app_id: str | None = None


@dataclass(slots=True, frozen=True)
class Done:
    pass


@dataclass(slots=True, frozen=True)
class Failed:
    pass


@dataclass(slots=True, frozen=True)
class UnknownAction:
    """An action kind outside the supported vocabulary."""

    kind: str


Action = Union[
    Tap,
    TapText,
    DoubleTap,
    LongPress,
    InputText,
    EraseText,
    Scroll,
    Swipe,
    Back,
    HideKeyboard,
    OpenLink,
    PressKey,
    Wait,
    LaunchApp,
    StopApp,
    Done,
    Failed,
    UnknownAction,
]


@dataclass(slots=True)
class ActionIntent:
    """A single decision returned by the model.

    ``params`` is kept exactly as the model produced it. Use :meth:`to_action`
    to get the typed variant with defaults applied for missing fields.
    """

    kind: str
    params: dict[str, ParamValue] = field(default_factory=dict)
    rationale: str = ""
    progress_estimate: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.kind in {"done", "failed"}

    def to_action(self) -> Action:
        params = self.params
        kind = self.kind
        if kind == "tap":
            return Tap(x=_number(params, "x", DEFAULT_POINT), y=_number(params, "y", DEFAULT_POINT))
        if kind == "tapText":
            return TapText(text=_text(params, "text", ""))
        if kind == "doubleTap":
            return DoubleTap(
                x=_number(params, "x", DEFAULT_POINT), y=_number(params, "y", DEFAULT_POINT)
            )
        if kind == "longPress":
            return LongPress(
                x=_number(params, "x", DEFAULT_POINT),
                y=_number(params, "y", DEFAULT_POINT),
                text=_text(params, "text", "") or None,
            )
        if kind == "inputText":
            return InputText(text=_text(params, "text", ""))
        if kind == "eraseText":
            return EraseText(chars=_integer(params, "chars", DEFAULT_ERASE_CHARS))
        if kind == "scroll":
            return Scroll()
        if kind == "swipe":
            return Swipe(
                start_x=_number(params, "startX", DEFAULT_SWIPE[0]),
                start_y=_number(params, "startY", DEFAULT_SWIPE[1]),
                end_x=_number(params, "endX", DEFAULT_SWIPE[2]),
                end_y=_number(params, "endY", DEFAULT_SWIPE[3]),
            )
        if kind == "back":
            return Back()
        if kind == "hideKeyboard":
            return HideKeyboard()
        if kind == "openLink":
            return OpenLink(url=_text(params, "url", ""))
        if kind == "pressKey":
            return PressKey(key=_text(params, "key", DEFAULT_KEY) or DEFAULT_KEY)
        if kind == "wait":
            return Wait(timeout_ms=_integer(params, "timeout", DEFAULT_WAIT_MS))
        if kind == "launchApp":
            return LaunchApp(app_id=_text(params, "appId", "") or None)
        if kind == "stopApp":
            return StopApp(app_id=_text(params, "appId", "") or None)
        if kind == "done":
            return Done()
        if kind == "failed":
            return Failed()
        return UnknownAction(kind=kind)


@dataclass(slots=True, frozen=True)
class TaskConfig:
    """What a single run should accomplish and within which budget."""

    task: str
    max_steps: int = 100
    model: str = "gpt-4o"
    bundle_id: str | None = None
    success_criteria: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.max_steps <= 0:
            msg = f"max_steps must be a positive integer, got {self.max_steps}"
            raise ValueError(msg)


@dataclass(slots=True, frozen=True)
class DecisionContext:
    """Context handed to the model alongside each screenshot."""

    step: int
    max_steps: int
    history: tuple[str, ...]
    success_criteria: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    stuck_hint: str | None = None


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """Terminal outcome of one run."""

    success: bool
    reason: str
    steps: int


@dataclass(slots=True)
class RunState:
    """Mutable state owned by a single loop invocation."""

    steps: int = 0
    history: list[str] = field(default_factory=list)
    result: ExecutionResult | None = None

    @property
    def finished(self) -> bool:
        return self.result is not None

    def finish(self, *, success: bool, reason: str) -> ExecutionResult:
        if self.finished:
            msg = "run already finished"
            raise RuntimeError(msg)
        self.result = ExecutionResult(success=success, reason=reason, steps=self.steps)
        return self.result


@dataclass(slots=True, frozen=True)
class Pacing:
    """Fixed delays (seconds) between phases of a run."""

    launch_settle: float = 3.0
    no_app_settle: float = 1.0
    error_backoff: float = 2.0
    inter_step: float = 1.5

    @classmethod
    def none(cls) -> Pacing:
        return cls(launch_settle=0.0, no_app_settle=0.0, error_backoff=0.0, inter_step=0.0)


def _number(params: dict[str, ParamValue], key: str, default: float) -> float:
    value = params.get(key)
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float, str)):
        try:
            parsed = float(value.strip().rstrip("%") if isinstance(value, str) else value)
        except (OverflowError, ValueError):
            return default
    else:
        return default
    return parsed if math.isfinite(parsed) else default


def _integer(params: dict[str, ParamValue], key: str, default: int) -> int:
    value = params.get(key)
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    # json.loads accepts Infinity, NaN and 1e999.
    return int(parsed) if math.isfinite(parsed) else default


def _text(params: dict[str, ParamValue], key: str, default: str) -> str:
    value = params.get(key)
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return default
    return str(value)
