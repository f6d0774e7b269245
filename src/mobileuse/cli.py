"""Command-line interface for mobileuse."""

from __future__ import annotations

import argparse
import logging
from typing import cast

from .agent.loop import AgentLoop
from .agent.models import ExecutionResult, TaskConfig
from .config import AppConfig
from .llm.client import LLMClient
from .maestro import (
    DeviceTarget,
    IosDevice,
    MaestroBackend,
    is_maestro_installed,
    maestro_version,
)
from .maestro.base import DEFAULT_DRIVER_PORT

LOGGER = logging.getLogger(__name__)


class CLIArgs(argparse.Namespace):
    bundle_id: str | None
    task_arg: str | None
    task: str | None
    max_steps: int | None
    model: str | None
    device: str | None
    ios_device: str | None
    team_id: str | None
    app_file: str | None
    driver_port: int
    criteria: list[str] | None
    constraint: list[str] | None
    check: bool


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mobileuse",
        description="AI-powered mobile task automation using Maestro",
    )
    parser.add_argument(
        "bundle_id",
        nargs="?",
        help="App bundle ID (omit to work with the foreground app)",
    )
    parser.add_argument("task_arg", nargs="?", metavar="task", help="Task to execute")
    parser.add_argument(
        "-t",
        "--task",
        help="Task to execute (use when running without a bundle ID)",
    )
    parser.add_argument("-m", "--max-steps", type=int, help="Maximum steps before timeout")
    parser.add_argument("--model", help="Model used to choose actions")
    parser.add_argument("--device", help="Target device ID (Android device or emulator)")
    parser.add_argument("--ios-device", help="Physical iOS device UDID")
    parser.add_argument("--team-id", help="Apple Developer Team ID (required for --ios-device)")
    parser.add_argument("--app-file", help="Path to .ipa file (required for --ios-device)")
    parser.add_argument(
        "--driver-port",
        type=int,
        default=DEFAULT_DRIVER_PORT,
        help="Driver host port for an iOS device",
    )
    parser.add_argument("--criteria", nargs="+", help="Success criteria")
    parser.add_argument("--constraint", nargs="+", help="Constraints")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check that Maestro and an API key are available, then exit",
    )
    return parser


def resolve_task(args: CLIArgs) -> tuple[str | None, str | None]:
    """Return ``(bundle_id, task)`` from the positional arguments and ``--task``."""
    if args.task:
        return args.bundle_id, args.task
    if args.bundle_id and args.task_arg:
        return args.bundle_id, args.task_arg
    if args.bundle_id:
        return None, args.bundle_id
    return None, None


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    config = AppConfig.from_env()

    if args.check:
        return _run_check(config)

    bundle_id, task = resolve_task(args)
    if not task:
        print("No task provided.")
        parser.print_usage()
        return 1

    if args.ios_device and not (args.team_id and args.app_file):
        print("--ios-device requires --team-id and --app-file")
        return 1

    if not is_maestro_installed(config.maestro_executable):
        print("Maestro is not installed. See https://maestro.mobile.dev to install it.")
        return 1

    if not config.api_key:
        print("API key not found. Set OPENAI_API_KEY or MOBILEUSE_OPENAI_API_KEY.")
        return 1

    max_steps = args.max_steps if args.max_steps is not None else config.max_steps
    if max_steps <= 0:
        print(f"Invalid max steps: {max_steps}")
        return 1

    task_config = TaskConfig(
        task=task,
        max_steps=max_steps,
        model=args.model or config.model,
        bundle_id=bundle_id,
        success_criteria=tuple(args.criteria or ()),
        constraints=tuple(args.constraint or ()),
    )
    target = DeviceTarget(
        device_id=args.device,
        ios_device=(
            IosDevice(
                udid=args.ios_device,
                team_id=cast(str, args.team_id),
                app_file=cast(str, args.app_file),
                driver_port=args.driver_port,
            )
            if args.ios_device
            else None
        ),
    )
    backend = MaestroBackend(
        app_id=bundle_id,
        target=target,
        executable=config.maestro_executable,
        flow_timeout=config.flow_timeout,
        screenshot_timeout=config.screenshot_timeout,
        save_eval_screens=config.save_eval_screens,
        eval_screens_dir=config.eval_screens_dir,
    )
    client = LLMClient(api_key=config.api_key, model=task_config.model, api_url=config.api_url)
    loop = AgentLoop(
        client=client,
        backend=backend,
        log_dir=config.log_dir,
        pacing=config.pacing,
        report=print,
        conversation_window=config.conversation_window,
    )

    print(_render_header(task_config, target))
    try:
        result = loop.run(task_config)
    except KeyboardInterrupt:
        print("\nInterrupted. Shutting down.")
        return 130

    print(_render_result(result))
    LOGGER.debug("run_finished", extra={"success": result.success, "steps": result.steps})
    return 0 if result.success else 1


def _run_check(config: AppConfig) -> int:
    version = maestro_version(config.maestro_executable)
    all_good = True
    if version:
        print(f"[ok] Maestro {version}")
    else:
        print(f"[missing] Maestro executable: {config.maestro_executable}")
        all_good = False
    if config.api_key:
        print("[ok] API key configured")
    else:
        print("[missing] API key (OPENAI_API_KEY or MOBILEUSE_OPENAI_API_KEY)")
        all_good = False
    print("All checks passed." if all_good else "Some checks failed.")
    return 0 if all_good else 1


def _render_header(config: TaskConfig, target: DeviceTarget) -> str:
    lines = [
        f"Task: {config.task}",
        f"App: {config.bundle_id or '(foreground app)'}",
        f"Device: {target.label}",
    ]
    if target.ios_device is not None:
        lines.append(f"App file: {target.ios_device.app_file}")
    lines.append(f"Max steps: {config.max_steps}")
    return "\n".join(lines)


def _render_result(result: ExecutionResult) -> str:
    rule = "=" * 50
    return "\n".join(
        [
            rule,
            "SUCCESS" if result.success else "FAILED",
            f"Steps: {result.steps}",
            f"Reason: {result.reason}",
            rule,
        ]
    )


if __name__ == "__main__":
    raise SystemExit(main())
