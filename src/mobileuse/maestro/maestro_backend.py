"""Maestro CLI backend implementation."""

from __future__ import annotations

import base64
import locale
import shutil
import subprocess
import tempfile
import time
from pathlib import Path

from . import flows
from .base import AutomationBackend, AutomationError, DeviceTarget, FlowResult

ERROR_EXCERPT_CHARS = 200
SCREENSHOT_ERROR_EXCERPT_CHARS = 300


class MaestroBackend(AutomationBackend):
    """Runs every primitive as a one-command flow via ``maestro test``."""

    def __init__(
        self,
        *,
        app_id: str | None = None,
        target: DeviceTarget | None = None,
        executable: str = "maestro",
        flow_timeout: float = 30.0,
        screenshot_timeout: float = 15.0,
        save_eval_screens: bool = False,
        eval_screens_dir: str | Path = "eval-screens",
    ) -> None:
        self.app_id = app_id
        self.target = target or DeviceTarget()
        self.executable = executable
        self.flow_timeout = flow_timeout
        self.screenshot_timeout = screenshot_timeout
        self.save_eval_screens = save_eval_screens
        self.eval_screens_dir = Path(eval_screens_dir)

    @property
    def name(self) -> str:
        return "maestro"

    def build_command(self, flow_path: str | Path) -> list[str]:
        args = [self.executable]
        ios_device = self.target.ios_device
        if ios_device is not None:
            args.extend(
                [
                    "--driver-host-port",
                    str(ios_device.driver_port),
                    "--device",
                    ios_device.udid,
                    "--app-file",
                    ios_device.app_file,
                ]
            )
        elif self.target.device_id:
            args.extend(["--device", self.target.device_id])
        args.extend(["test", str(flow_path)])
        return args

    def launch(self, app_id: str) -> None:
        self._run(flows.render_flow(flows.launch_command(), app_id=app_id))

    def launch_app(self, app_id: str) -> None:
        self._run_command(flows.launch_app_command(app_id))

    def stop_app(self, app_id: str) -> None:
        self._run_command(flows.stop_app_command(app_id))

    def tap(self, x: float, y: float) -> None:
        self._run_command(flows.tap_command(x, y))

    def tap_text(self, text: str) -> None:
        self._run_command(flows.tap_text_command(text))

    def double_tap(self, x: float, y: float) -> None:
        self._run_command(flows.double_tap_command(x, y))

    def long_press(self, x: float, y: float) -> None:
        self._run_command(flows.long_press_command(x, y))

    def long_press_text(self, text: str) -> None:
        self._run_command(flows.long_press_text_command(text))

    def input_text(self, text: str) -> None:
        self._run_command(flows.input_text_command(text))

    def erase_text(self, chars: int) -> None:
        self._run_command(flows.erase_text_command(chars))

    def scroll(self) -> None:
        self._run_command("scroll")

    def swipe(self, start_x: float, start_y: float, end_x: float, end_y: float) -> None:
        self._run_command(flows.swipe_command(start_x, start_y, end_x, end_y))

    def back(self) -> None:
        self._run_command("back")

    def hide_keyboard(self) -> None:
        self._run_command("hideKeyboard")

    def open_link(self, url: str) -> None:
        self._run_command(flows.open_link_command(url))

    def press_key(self, key: str) -> None:
        self._run_command(flows.press_key_command(key))

    def wait_for_animation(self, timeout_ms: int) -> None:
        self._run_command(flows.wait_command(timeout_ms))

    def screenshot(self, step: int | None = None) -> str:
        name = f"screen-{time.time_ns()}"
        try:
            with tempfile.TemporaryDirectory(prefix="maestro-eval-") as temp_dir:
                flow = flows.render_flow(flows.screenshot_command(name), app_id=self.app_id)
                flow_path = Path(temp_dir) / "flow.yaml"
                flow_path.write_text(flow, encoding="utf-8")
                self._execute(
                    flow,
                    flow_path,
                    timeout=self.screenshot_timeout,
                    cwd=temp_dir,
                )
                screenshot_path = Path(temp_dir) / f"{name}.png"
                if not screenshot_path.is_file():
                    msg = f"Screenshot not found at {screenshot_path}"
                    raise AutomationError(msg)
                payload = screenshot_path.read_bytes()
                if self.save_eval_screens and step is not None:
                    self.eval_screens_dir.mkdir(parents=True, exist_ok=True)
                    shutil.copyfile(
                        screenshot_path,
                        self.eval_screens_dir / f"step-{step:03d}-before.png",
                    )
        except (AutomationError, OSError) as exc:
            detail = str(exc) or "Unknown error"
            msg = f"Screenshot failed: {detail[:SCREENSHOT_ERROR_EXCERPT_CHARS]}"
            raise AutomationError(msg) from exc
        return base64.b64encode(payload).decode("ascii")

    def _run_command(self, command: flows.FlowCommand) -> FlowResult:
        return self._run(flows.render_flow(command, app_id=self.app_id))

    def _run(self, flow: str) -> FlowResult:
        flow_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                prefix="maestro-flow-",
                suffix=".yaml",
                delete=False,
            ) as handle:
                flow_path = Path(handle.name)
                handle.write(flow)
        except OSError as exc:
            if flow_path is not None:
                flow_path.unlink(missing_ok=True)
            detail = f"could not write flow file: {exc}"
            msg = f"Maestro command failed: {detail[:ERROR_EXCERPT_CHARS]}"
            raise AutomationError(msg) from exc
        try:
            return self._execute(flow, flow_path, timeout=self.flow_timeout)
        finally:
            flow_path.unlink(missing_ok=True)

    def _execute(
        self,
        flow: str,
        flow_path: Path,
        *,
        timeout: float,
        cwd: str | None = None,
    ) -> FlowResult:
        self.log_request(flow, timeout=timeout)
        started = self.monotonic_now()
        try:
            process = subprocess.run(
                self.build_command(flow_path),
                capture_output=True,
                cwd=cwd,
                timeout=timeout,
                check=False,
                text=False,
            )
            result = FlowResult(
                flow=flow,
                returncode=process.returncode,
                stdout=_normalize_output(process.stdout),
                stderr=_normalize_output(process.stderr),
                duration_seconds=self.monotonic_now() - started,
            )
        except subprocess.TimeoutExpired as exc:
            result = FlowResult(
                flow=flow,
                returncode=124,
                stdout=_normalize_output(exc.stdout),
                stderr=_normalize_output(exc.stderr) or f"timed out after {timeout:.1f}s",
                timed_out=True,
                duration_seconds=self.monotonic_now() - started,
            )
        except FileNotFoundError as exc:
            msg = f"{self.name} executable not found: {self.executable}"
            raise AutomationError(msg) from exc
        except OSError as exc:
            msg = f"Maestro command failed: {str(exc)[:ERROR_EXCERPT_CHARS]}"
            raise AutomationError(msg) from exc

        self.log_result(result)
        if result.returncode != 0:
            output = result.stdout or result.stderr or "Unknown error"
            msg = f"Maestro command failed: {output[:ERROR_EXCERPT_CHARS]}"
            raise AutomationError(msg)
        return result


def is_maestro_installed(executable: str = "maestro") -> bool:
    return maestro_version(executable) is not None


def maestro_version(executable: str = "maestro") -> str | None:
    """Return the installed Maestro version, or ``None`` when unavailable."""
    try:
        process = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            timeout=30,
            check=False,
            text=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if process.returncode != 0:
        return None
    return _normalize_output(process.stdout).strip() or None


def _normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False)):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
