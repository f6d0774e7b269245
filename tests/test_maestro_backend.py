import base64
import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest
import yaml

from mobileuse.maestro import (
    AutomationError,
    DeviceTarget,
    IosDevice,
    MaestroBackend,
    is_maestro_installed,
    maestro_version,
)
from mobileuse.maestro.flows import render_flow, swipe_command, tap_command

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


class FakeMaestro:
    """Stands in for ``subprocess.run`` and keeps what each flow asked for."""

    def __init__(self, *, returncode: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.commands: list[list[str]] = []
        self.documents: list[list[object]] = []
        self.flow_paths: list[Path] = []
        self.write_screenshot = True

    def __call__(self, args: list[str], **kwargs: object) -> SimpleNamespace:
        flow_path = Path(args[-1])
        self.commands.append(list(args))
        self.flow_paths.append(flow_path)
        documents = list(yaml.safe_load_all(flow_path.read_text(encoding="utf-8")))
        self.documents.append(documents)
        steps = documents[-1]
        for step in steps:
            if isinstance(step, dict) and "takeScreenshot" in step and self.write_screenshot:
                cwd = Path(str(kwargs["cwd"]))
                (cwd / f"{step['takeScreenshot']}.png").write_bytes(PNG_BYTES)
        return SimpleNamespace(returncode=self.returncode, stdout=self.stdout, stderr=self.stderr)


@pytest.fixture
def maestro(monkeypatch: pytest.MonkeyPatch) -> FakeMaestro:
    fake = FakeMaestro()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


def test_render_flow_with_app_header() -> None:
    flow = render_flow(tap_command(85, 12.5), app_id="com.example.notes")

    header, body = yaml.safe_load_all(flow)
    assert header == {"appId": "com.example.notes"}
    assert body == [{"tapOn": {"point": "85%, 12.5%"}}]


def test_render_flow_without_app_header() -> None:
    flow = render_flow(swipe_command(50, 50, 50, 20))

    assert flow.startswith("---\n")
    assert list(yaml.safe_load_all(flow)) == [
        [{"swipe": {"start": "50%, 50%", "end": "50%, 20%"}}]
    ]


def test_build_command_for_default_device() -> None:
    backend = MaestroBackend()

    assert backend.build_command("flow.yaml") == ["maestro", "test", "flow.yaml"]


def test_build_command_for_selected_device() -> None:
    backend = MaestroBackend(target=DeviceTarget(device_id="emulator-5554"))

    assert backend.build_command("flow.yaml") == [
        "maestro",
        "--device",
        "emulator-5554",
        "test",
        "flow.yaml",
    ]


def test_build_command_for_physical_ios_device() -> None:
    device = IosDevice(udid="00008110-ABC", team_id="TEAM123", app_file="/tmp/Driver.app")
    backend = MaestroBackend(
        executable="/opt/maestro/bin/maestro",
        target=DeviceTarget(device_id="ignored", ios_device=device),
    )

    assert backend.build_command("flow.yaml") == [
        "/opt/maestro/bin/maestro",
        "--driver-host-port",
        "6001",
        "--device",
        "00008110-ABC",
        "--app-file",
        "/tmp/Driver.app",
        "test",
        "flow.yaml",
    ]


def test_device_target_label() -> None:
    ios = IosDevice(udid="UDID", team_id="T", app_file="a.app")

    assert DeviceTarget().label == "default"
    assert DeviceTarget(device_id="emulator-5554").label == "emulator-5554"
    assert DeviceTarget(ios_device=ios).label == "ios:UDID"


def test_launch_writes_app_header_and_launch_command(maestro: FakeMaestro) -> None:
    MaestroBackend().launch("com.example.notes")

    assert maestro.documents == [[{"appId": "com.example.notes"}, ["launchApp"]]]


@pytest.mark.parametrize(
    ("invoke", "expected"),
    [
        (lambda b: b.tap(80, 80), {"tapOn": {"point": "80%, 80%"}}),
        (lambda b: b.tap_text("Add Note"), {"tapOn": {"text": "Add Note"}}),
        (lambda b: b.double_tap(10, 20), {"doubleTapOn": {"point": "10%, 20%"}}),
        (lambda b: b.long_press(30.5, 40), {"longPressOn": {"point": "30.5%, 40%"}}),
        (lambda b: b.long_press_text("Photo"), {"longPressOn": {"text": "Photo"}}),
        (lambda b: b.input_text("hello: world"), {"inputText": "hello: world"}),
        (lambda b: b.erase_text(50), {"eraseText": 50}),
        (lambda b: b.scroll(), "scroll"),
        (
            lambda b: b.swipe(50, 50, 50, 20),
            {"swipe": {"start": "50%, 50%", "end": "50%, 20%"}},
        ),
        (lambda b: b.back(), "back"),
        (lambda b: b.hide_keyboard(), "hideKeyboard"),
        (lambda b: b.open_link("https://example.com"), {"openLink": "https://example.com"}),
        (lambda b: b.press_key("enter"), {"pressKey": "enter"}),
        (lambda b: b.wait_for_animation(3000), {"waitForAnimationToEnd": {"timeout": 3000}}),
        (lambda b: b.launch_app("com.example.mail"), {"launchApp": {"appId": "com.example.mail"}}),
        (lambda b: b.stop_app("com.example.mail"), {"stopApp": {"appId": "com.example.mail"}}),
    ],
)
def test_primitives_render_one_command_flows(maestro: FakeMaestro, invoke, expected) -> None:
    invoke(MaestroBackend(app_id="com.example.notes"))

    assert maestro.documents == [[{"appId": "com.example.notes"}, [expected]]]
    assert maestro.commands[0][-2] == "test"


def test_flow_file_is_removed_after_run(maestro: FakeMaestro) -> None:
    MaestroBackend().scroll()

    assert maestro.flow_paths[0].suffix == ".yaml"
    assert not maestro.flow_paths[0].exists()


def test_nonzero_exit_raises_with_output_excerpt(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = FakeMaestro(returncode=1, stdout=b"x" * 500)
    monkeypatch.setattr(subprocess, "run", fake)

    with pytest.raises(AutomationError) as excinfo:
        MaestroBackend().tap(50, 50)

    assert str(excinfo.value) == "Maestro command failed: " + "x" * 200
    assert not fake.flow_paths[0].exists()


def test_nonzero_exit_falls_back_to_stderr(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "run", FakeMaestro(returncode=1, stderr=b"Element not found"))

    with pytest.raises(AutomationError, match="Element not found"):
        MaestroBackend().tap_text("Save")


def test_nonzero_exit_without_output(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "run", FakeMaestro(returncode=1))

    with pytest.raises(AutomationError, match="Unknown error"):
        MaestroBackend().back()


def test_timeout_is_reported_as_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise subprocess.TimeoutExpired(cmd=args[0], timeout=1, output=b"", stderr=b"")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(AutomationError, match="timed out after 2.0s"):
        MaestroBackend(flow_timeout=2.0).scroll()


def test_missing_executable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise FileNotFoundError("maestro")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(AutomationError, match="executable not found: maestro"):
        MaestroBackend().scroll()


def test_screenshot_returns_base64_png(maestro: FakeMaestro) -> None:
    encoded = MaestroBackend(app_id="com.example.notes").screenshot()

    assert base64.b64decode(encoded) == PNG_BYTES
    header, steps = maestro.documents[0]
    assert header == {"appId": "com.example.notes"}
    assert list(steps[0]) == ["takeScreenshot"]
    assert not maestro.flow_paths[0].exists()


def test_screenshot_saves_eval_copy(maestro: FakeMaestro, tmp_path: Path) -> None:
    backend = MaestroBackend(save_eval_screens=True, eval_screens_dir=tmp_path / "screens")

    backend.screenshot(step=7)

    assert (tmp_path / "screens" / "step-007-before.png").read_bytes() == PNG_BYTES


def test_screenshot_skips_eval_copy_by_default(maestro: FakeMaestro, tmp_path: Path) -> None:
    backend = MaestroBackend(eval_screens_dir=tmp_path / "screens")

    backend.screenshot(step=7)

    assert not (tmp_path / "screens").exists()


def test_screenshot_without_artifact_fails(maestro: FakeMaestro) -> None:
    maestro.write_screenshot = False

    with pytest.raises(AutomationError, match="^Screenshot failed: Screenshot not found"):
        MaestroBackend().screenshot()


def test_screenshot_wraps_command_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "run", FakeMaestro(returncode=1, stdout=b"no device"))

    with pytest.raises(AutomationError) as excinfo:
        MaestroBackend().screenshot()

    message = str(excinfo.value)
    assert message.startswith("Screenshot failed: Maestro command failed: no device")
    assert len(message) <= len("Screenshot failed: ") + 300


def test_maestro_version(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[list[str]] = []

    def fake_run(args: list[str], **kwargs: object) -> SimpleNamespace:
        calls.append(args)
        return SimpleNamespace(returncode=0, stdout=b"1.39.0\n", stderr=b"")

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert maestro_version() == "1.39.0"
    assert is_maestro_installed()
    assert calls[0] == ["maestro", "--version"]


def test_maestro_version_when_not_installed(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise FileNotFoundError("maestro")

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert maestro_version() is None
    assert not is_maestro_installed()


def test_maestro_version_nonzero_exit(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda *_a, **_k: SimpleNamespace(returncode=1, stdout=b"", stderr=b"boom"),
    )

    assert maestro_version("/usr/local/bin/maestro") is None


def test_permission_error_is_reported_as_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise PermissionError(13, "Permission denied", "maestro")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(AutomationError, match="^Maestro command failed: .*Permission denied"):
        MaestroBackend(app_id="com.example.notes").launch("com.example.notes")


def test_flow_file_write_failure_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_tempfile(*args: object, **kwargs: object) -> object:
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(
        "mobileuse.maestro.maestro_backend.tempfile.NamedTemporaryFile", broken_tempfile
    )

    with pytest.raises(AutomationError, match="could not write flow file"):
        MaestroBackend().scroll()
