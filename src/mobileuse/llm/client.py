"""Vision model client that picks the next device action."""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from urllib import request
from urllib.error import HTTPError, URLError

from mobileuse.agent.models import ActionIntent, DecisionContext, ParamValue

LOGGER = logging.getLogger(__name__)

MAX_CONVERSATION_EXCHANGES = 4
RECENT_HISTORY_LIMIT = 5
DEFAULT_INSTRUCTION = (
    "Analyze the screenshot. What is the ONE best action to progress toward the task goal?"
)
STUCK_INSTRUCTION = "Analyze the screenshot. What DIFFERENT action should you try?"

_JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

COORDINATE_GUIDE = """COORDINATE ESTIMATION GUIDE
You see the screenshot. Estimate tap positions as PERCENTAGES (0-100):
- 0% = left/top edge, 50% = center, 100% = right/bottom edge

Common UI patterns:
- Floating Action Button (FAB, usually "+"): typically at {x: 85, y: 85} NOT {x: 90, y: 90}
- Navigation back arrow: {x: 5-10, y: 6-8}
- Top-right action button: {x: 90-95, y: 6-8}
- Tab bar items: y: 92-96, x varies by position
- Center of screen: {x: 50, y: 50}
- Text fields: estimate center of the field visually

CRITICAL: Don't use exact corners (0, 100). Buttons have padding."""

ACTION_PRIORITY = """ACTION PRIORITY
1. tapText - BEST when you see readable text on a button. Use EXACT visible text.
2. tap - For icons or when tapText might fail. Estimate coordinates carefully.
3. inputText - ONLY after tapping a text field (you should see cursor/keyboard)
4. scroll - To reveal content below the fold
5. wait - After navigation actions"""

ACTION_CATALOG = """AVAILABLE ACTIONS

tap: Tap at coordinates
  {"action": "tap", "params": {"x": 85, "y": 85}, "reasoning": "...", "progress": N}

tapText: Tap by visible text (preferred when text is visible)
  {"action": "tapText", "params": {"text": "Add Note"}, "reasoning": "...", "progress": N}

doubleTap: Double tap at coordinates
  {"action": "doubleTap", "params": {"x": 50, "y": 40}, "reasoning": "...", "progress": N}

longPress: Long press by visible text or coordinates
  {"action": "longPress", "params": {"text": "Photo"}, "reasoning": "...", "progress": N}

inputText: Type into focused field
  {"action": "inputText", "params": {"text": "Your text here"}, "reasoning": "...", "progress": N}
  For long text (>200 chars): use multiple inputText calls

eraseText: Delete characters from the focused field
  {"action": "eraseText", "params": {"chars": 50}, "reasoning": "...", "progress": N}

scroll: Scroll down
  {"action": "scroll", "params": {}, "reasoning": "...", "progress": N}

swipe: Swipe gesture
  {"action": "swipe", "params": {"startX": 50, "startY": 80, "endX": 50, "endY": 20}, "reasoning": "...", "progress": N}

back: Navigate back
  {"action": "back", "params": {}, "reasoning": "...", "progress": N}

hideKeyboard: Dismiss keyboard
  {"action": "hideKeyboard", "params": {}, "reasoning": "...", "progress": N}

openLink: Open a URL or deep link
  {"action": "openLink", "params": {"url": "https://example.com"}, "reasoning": "...", "progress": N}

pressKey: Press a hardware or keyboard key
  {"action": "pressKey", "params": {"key": "enter"}, "reasoning": "...", "progress": N}

wait: Wait for animations
  {"action": "wait", "params": {}, "reasoning": "...", "progress": N}

launchApp: Switch to a different app (for multi-app tasks)
  {"action": "launchApp", "params": {"appId": "com.example.app"}, "reasoning": "...", "progress": N}

stopApp: Close/stop an app
  {"action": "stopApp", "params": {"appId": "com.example.app"}, "reasoning": "...", "progress": N}

done: Task complete (only when VERIFIED on screen)
  {"action": "done", "params": {}, "reasoning": "...", "progress": 100}

failed: Cannot complete (only after 10+ different attempts)
  {"action": "failed", "params": {}, "reasoning": "...", "progress": N}"""

STUCK_ADVICE = """WHEN STUCK (same action 2+ times with no change):
1. Your coordinates are probably WRONG - shift by 5-10%
2. Try tapText instead of tap coordinates
3. Try scroll to reveal hidden elements
4. Try a completely different element"""


class DecisionError(RuntimeError):
    """Raised when the model call fails or returns no usable action."""


Message = dict[str, object]


@dataclass(slots=True)
class Conversation:
    """Rolling window of prior model exchanges for one run."""

    max_exchanges: int = MAX_CONVERSATION_EXCHANGES
    messages: list[Message] = field(default_factory=list)

    def record(self, user_message: Message, reply: str) -> None:
        self.messages.append(user_message)
        self.messages.append({"role": "assistant", "content": reply})
        self.trim()

    def trim(self) -> None:
        keep = max(self.max_exchanges, 0) * 2
        if len(self.messages) > keep:
            del self.messages[: len(self.messages) - keep]

    def reset(self) -> None:
        self.messages.clear()


class LLMClient:
    """Small HTTP client for screenshot-driven action decisions."""

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        api_url: str = "https://api.openai.com/v1/responses",
        timeout: float = 60.0,
        image_detail: str = "high",
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.timeout = timeout
        self.image_detail = image_detail

    def decide(
        self,
        screenshot: str,
        task: str,
        context: DecisionContext,
        conversation: Conversation,
    ) -> ActionIntent:
        user_message = self._build_user_message(screenshot, context.stuck_hint)
        payload = self._build_payload(task, context, conversation, user_message)
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        LOGGER.debug(
            "llm_request_prepared",
            extra={
                "api_url": self.api_url,
                "model": self.model,
                "payload_bytes": len(body),
                "step": context.step,
                "history_messages": len(conversation.messages),
                "stuck_hint": context.stuck_hint is not None,
            },
        )

        req = request.Request(self.api_url, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"Model request failed with HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise DecisionError(details) from exc
        except URLError as exc:
            LOGGER.error(
                "llm_request_transport_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "reason": str(exc.reason),
                },
            )
            msg = f"Model request transport error: {exc.reason}"
            raise DecisionError(msg) from exc
        except TimeoutError as exc:
            LOGGER.error(
                "llm_request_timeout",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "timeout_seconds": self.timeout,
                },
            )
            msg = f"Model request timed out after {self.timeout:.1f}s"
            raise DecisionError(msg) from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "llm_response_parse_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "error": str(exc),
                },
            )
            msg = f"Model response parsing error: {exc}"
            raise DecisionError(msg) from exc

        raw = self._coerce_object_dict(raw_response)
        if raw is None:
            msg = "Model response parsing error: expected top-level object"
            raise DecisionError(msg)

        reply = self._extract_output_text(raw)
        if reply is None:
            msg = "No structured output returned"
            raise DecisionError(msg)

        intent = self._to_action_intent(self._extract_json_object(reply))
        conversation.record(user_message, reply)
        return intent

    def _build_payload(
        self,
        task: str,
        context: DecisionContext,
        conversation: Conversation,
        user_message: Message,
    ) -> dict[str, object]:
        input_messages: list[Message] = [
            {"role": "system", "content": self._build_system_prompt(task, context)},
            *conversation.messages,
            user_message,
        ]
        return {
            "model": self.model,
            "input": input_messages,
            "text": {"format": {"type": "json_object"}},
        }

    def _build_user_message(self, screenshot: str, stuck_hint: str | None) -> Message:
        instruction = f"{stuck_hint}\n\n{STUCK_INSTRUCTION}" if stuck_hint else DEFAULT_INSTRUCTION
        return {
            "role": "user",
            "content": [
                {
                    "type": "input_image",
                    "image_url": f"data:image/png;base64,{screenshot}",
                    "detail": self.image_detail,
                },
                {"type": "input_text", "text": instruction},
            ],
        }

    @staticmethod
    def _build_system_prompt(task: str, context: DecisionContext) -> str:
        """Assemble objective, guidance, action catalog and progress."""
        sections = [
            "You are an AI agent controlling a mobile app to complete a task.",
            f"OBJECTIVE: {task}",
        ]
        if context.success_criteria:
            sections.append(_numbered("SUCCESS CRITERIA", context.success_criteria))
        if context.constraints:
            sections.append(_numbered("CONSTRAINTS", context.constraints))
        recent = " -> ".join(context.history[-RECENT_HISTORY_LIMIT:]) or "none"
        sections.extend(
            [
                COORDINATE_GUIDE,
                ACTION_PRIORITY,
                ACTION_CATALOG,
                STUCK_ADVICE,
                f"PROGRESS: Step {context.step}/{context.max_steps}\nRecent: {recent}",
                "Respond with ONLY valid JSON (no markdown):",
            ]
        )
        return "\n\n".join(sections)

    @staticmethod
    def _coerce_object_dict(value: object) -> dict[str, object] | None:
        if not isinstance(value, dict):
            return None
        return {str(key): raw_value for key, raw_value in value.items()}

    @classmethod
    def _extract_output_text(cls, payload: dict[str, object]) -> str | None:
        output_items = payload.get("output")
        if not isinstance(output_items, list):
            return None

        for item in output_items:
            item_object = cls._coerce_object_dict(item)
            if item_object is None:
                continue
            content_items = item_object.get("content")
            if not isinstance(content_items, list):
                continue
            for content in content_items:
                content_object = cls._coerce_object_dict(content)
                if content_object is None:
                    continue
                content_text = content_object.get("text")
                if content_object.get("type") == "output_text" and isinstance(content_text, str):
                    return content_text
        return None

    @classmethod
    def _extract_json_object(cls, text: str) -> dict[str, object]:
        match = _JSON_OBJECT_PATTERN.search(text)
        if match is None:
            msg = "No JSON found in AI response"
            raise DecisionError(msg)
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            msg = f"Model structured output parsing error: {exc}"
            raise DecisionError(msg) from exc
        parsed_object = cls._coerce_object_dict(parsed)
        if parsed_object is None:
            msg = "Model structured output parsing error: expected an object"
            raise DecisionError(msg)
        return parsed_object

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt

    @staticmethod
    def _to_action_intent(parsed: dict[str, object]) -> ActionIntent:
        action = parsed.get("action")
        params = parsed.get("params")
        reasoning = parsed.get("reasoning")
        progress = parsed.get("progress", 0)

        if not isinstance(action, str) or not action.strip():
            msg = "Model response is missing an action"
            raise DecisionError(msg)
        normalized_params: dict[str, ParamValue] = {}
        if isinstance(params, dict):
            for key, value in params.items():
                if value is None or isinstance(value, (str, int, float, bool)):
                    normalized_params[str(key)] = value
        if not isinstance(reasoning, str):
            reasoning = ""
        if isinstance(progress, bool) or not isinstance(progress, (int, float)):
            progress = 0
        elif isinstance(progress, float) and not math.isfinite(progress):
            progress = 0

        return ActionIntent(
            kind=action.strip(),
            params=normalized_params,
            rationale=reasoning,
            progress_estimate=min(max(int(progress), 0), 100),
        )


def _numbered(title: str, items: Sequence[str]) -> str:
    lines = [f"{index}. {item}" for index, item in enumerate(items, start=1)]
    return "\n".join([f"{title}:", *lines])
