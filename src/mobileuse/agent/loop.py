"""Capture/decide/act orchestration loop for mobile tasks."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from mobileuse.agent.models import (
    ActionIntent,
    DecisionContext,
    ExecutionResult,
    Pacing,
    RunState,
    TaskConfig,
)
from mobileuse.agent.stuck import detect_stuck_pattern
from mobileuse.agent.translator import ActionTranslator, summarize
from mobileuse.llm.client import MAX_CONVERSATION_EXCHANGES, Conversation, DecisionError
from mobileuse.maestro import AutomationBackend, AutomationError

LOGGER = logging.getLogger(__name__)

LAUNCHED_MARKER = "launched"
READY_MARKER = "ready"
ERROR_MARKER = "error"
TIMEOUT_REASON = "Timeout - max steps exceeded"

Report = Callable[[str], None]
Sleep = Callable[[float], None]


class DecisionClient(Protocol):
    def decide(
        self,
        screenshot: str,
        task: str,
        context: DecisionContext,
        conversation: Conversation,
    ) -> ActionIntent: ...


class AgentLoop:
    """Runs the capture/decide/act cycle until done, failed or out of steps."""

    def __init__(
        self,
        *,
        client: DecisionClient,
        backend: AutomationBackend,
        log_dir: str | Path | None = None,
        pacing: Pacing | None = None,
        sleep: Sleep = time.sleep,
        report: Report | None = None,
        conversation_window: int = MAX_CONVERSATION_EXCHANGES,
    ) -> None:
        self.client = client
        self.backend = backend
        self.translator = ActionTranslator(backend)
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.pacing = pacing or Pacing()
        self.sleep = sleep
        self.report = report
        self.conversation_window = conversation_window

    def run(self, config: TaskConfig) -> ExecutionResult:
        state = RunState()
        conversation = Conversation(max_exchanges=self.conversation_window)

        if config.bundle_id:
            try:
                self.backend.launch(config.bundle_id)
            except AutomationError as exc:
                LOGGER.error(
                    "app_launch_failed",
                    extra={"bundle_id": config.bundle_id, "error": str(exc)},
                )
                self._report(f"Failed to launch app: {exc}")
                result = state.finish(success=False, reason=str(exc))
                self._append_log(config, event="finished", step_index=0, result=result)
                return result
            self._report("App launched")
            state.history.append(LAUNCHED_MARKER)
            self.sleep(self.pacing.launch_settle)
        else:
            self._report("Skipping app launch (working with foreground app)")
            state.history.append(READY_MARKER)
            self.sleep(self.pacing.no_app_settle)

        while state.steps < config.max_steps:
            state.steps += 1
            step = state.steps
            self._report(f"Step {step}/{config.max_steps}")

            try:
                screenshot = self.backend.screenshot(step)
            except AutomationError as exc:
                LOGGER.warning("screenshot_failed", extra={"step": step, "error": str(exc)})
                self._report(f"  Screenshot failed: {exc}")
                self.sleep(self.pacing.error_backoff)
                continue

            context = DecisionContext(
                step=step,
                max_steps=config.max_steps,
                history=tuple(state.history),
                success_criteria=config.success_criteria,
                constraints=config.constraints,
                stuck_hint=detect_stuck_pattern(state.history),
            )
            try:
                intent = self.client.decide(screenshot, config.task, context, conversation)
            except DecisionError as exc:
                LOGGER.warning("decision_failed", extra={"step": step, "error": str(exc)})
                self._report(f"  AI decision failed: {exc}")
                self.sleep(self.pacing.error_backoff)
                continue

            self._report(f"  Reasoning: {intent.rationale}")
            self._report(f"  Progress: {intent.progress_estimate}%")
            self._report(
                f"  Action: {intent.kind}"
                + (f" {json.dumps(intent.params)}" if intent.params else "")
            )

            if intent.is_terminal:
                result = state.finish(success=intent.kind == "done", reason=intent.rationale)
                self._append_log(
                    config, event="finished", step_index=step, intent=intent, result=result
                )
                return result

            action = intent.to_action()
            try:
                self.translator.dispatch(action)
            except AutomationError as exc:
                LOGGER.warning(
                    "action_failed",
                    extra={"step": step, "action": intent.kind, "error": str(exc)},
                )
                self._report(f"  Action failed: {exc}")
                state.history.append(ERROR_MARKER)
                self._append_log(
                    config,
                    event="action_failed",
                    step_index=step,
                    intent=intent,
                    summary=ERROR_MARKER,
                    error=str(exc),
                )
            else:
                summary = summarize(action)
                state.history.append(summary)
                self._append_log(
                    config,
                    event="action_executed",
                    step_index=step,
                    intent=intent,
                    summary=summary,
                )

            self.sleep(self.pacing.inter_step)

        self._report("Max steps reached")
        result = state.finish(success=False, reason=TIMEOUT_REASON)
        self._append_log(config, event="finished", step_index=state.steps, result=result)
        return result

    def _report(self, message: str) -> None:
        if self.report is not None:
            self.report(message)

    def _append_log(
        self,
        config: TaskConfig,
        *,
        event: str,
        step_index: int,
        intent: ActionIntent | None = None,
        summary: str | None = None,
        error: str | None = None,
        result: ExecutionResult | None = None,
    ) -> None:
        if self.log_dir is None:
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        day_file = self.log_dir / f"run-{datetime.now(timezone.utc).date().isoformat()}.log"
        entry = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "task": config.task,
            "bundle_id": config.bundle_id,
            "model": config.model,
            "backend": getattr(self.backend, "name", self.backend.__class__.__name__),
            "step_index": step_index,
            "max_steps": config.max_steps,
            "action": intent.kind if intent else None,
            "params": intent.params if intent else None,
            "rationale": intent.rationale if intent else None,
            "progress_estimate": intent.progress_estimate if intent else None,
            "summary": summary,
            "error": error,
            "success": result.success if result else None,
            "reason": result.reason if result else None,
        }
        with day_file.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")
