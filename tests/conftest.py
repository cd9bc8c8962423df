"""Shared pytest fixtures for GifCapture tests."""

import os
import time

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from PySide6.QtCore import QObject, Signal
from PySide6.QtGui import QGuiApplication

from gifcapture.commands import PLATFORM_SPECS
from gifcapture.models import CaptureRequest, ClipboardResult, OutputFormat
from gifcapture.pipeline import CapturePipeline
from gifcapture.process_supervisor import ProcessResult


# ── Qt application ─────────────────────────────────────────────────

@pytest.fixture(scope="session", autouse=True)
def qapp():
    """One offscreen QGuiApplication for the whole run."""
    app = QGuiApplication.instance() or QGuiApplication([])
    yield app


@pytest.fixture
def wait_until(qapp):
    """Spin the event loop until *predicate* is true (or fail on timeout)."""

    def _wait(predicate, timeout: float = 10.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met before timeout")
            qapp.processEvents()
            time.sleep(0.01)

    return _wait


# ── Fakes ───────────────────────────────────────────────────────────

class FakeSupervisor(QObject):
    """Stands in for ProcessSupervisor; the test decides how ffmpeg behaves."""

    output = Signal(str)
    finished = Signal(object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.program = ""
        self.arguments: list[str] = []
        self.running = False
        self.cancel_calls = 0
        self.stop_calls = 0

    @property
    def is_running(self) -> bool:
        return self.running

    @property
    def target(self) -> str:
        """The file ffmpeg would write (last argument)."""
        return self.arguments[-1]

    def run(self, program: str, args) -> None:
        self.program = program
        self.arguments = list(args)
        self.running = True

    def cancel(self) -> None:
        self.cancel_calls += 1

    def stop(self, timeout_ms: int = 2000) -> None:
        self.stop_calls += 1
        if self.running:
            self.exit(255)

    # test controls

    def say(self, text: str) -> None:
        self.output.emit(text)

    def write_target(self, data: bytes = b"\x00" * 64) -> None:
        with open(self.target, "wb") as f:
            f.write(data)

    def exit(self, code: int = 0) -> None:
        self.running = False
        self.finished.emit(ProcessResult(exit_code=code))

    def succeed(self, seconds: float = 2.0) -> None:
        """Write the target file, report full progress and exit 0."""
        self.write_target()
        self.say(f"frame=   30 fps= 15 q=-1.0 size=     256kB time=00:00:{seconds:05.2f} bitrate= 1.0kbits/s\n")
        self.exit(0)

    def fail_to_start(self, reason: str = "No such file or directory") -> None:
        self.running = False
        self.finished.emit(ProcessResult(exit_code=None, spawn_error=reason))


class SupervisorFactory:
    """Creates FakeSupervisors and remembers them in order."""

    def __init__(self) -> None:
        self.created: list[FakeSupervisor] = []

    def __call__(self, parent: QObject) -> FakeSupervisor:
        sup = FakeSupervisor(parent)
        self.created.append(sup)
        return sup

    @property
    def last(self) -> FakeSupervisor:
        return self.created[-1]


class FakeEncoder:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.reason = "" if available else "ffmpeg not found"
        self.checks = 0

    def executable(self) -> str:
        return "ffmpeg"

    def is_available(self) -> bool:
        self.checks += 1
        return self.available


class FakeSaveLocation:
    def __init__(self, directory: str) -> None:
        self.directory = directory

    def output_dir(self) -> str:
        return self.directory


class FakeClipboardWriter:
    def __init__(self, result: ClipboardResult | None = None) -> None:
        self.result = result or ClipboardResult("image", "native")
        self.written: list[str] = []

    def write(self, path: str) -> ClipboardResult:
        self.written.append(path)
        return self.result


class FakeClipboard:
    """Minimal QClipboard: remembers the last QMimeData set on it."""

    def __init__(self, reject: bool = False) -> None:
        self.reject = reject
        self._mime = None
        self.set_calls = 0

    def setMimeData(self, mime) -> None:
        self.set_calls += 1
        if self.reject:
            raise RuntimeError("clipboard locked")
        self._mime = mime

    def mimeData(self):
        return self._mime


# ── Fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def supervisors() -> SupervisorFactory:
    return SupervisorFactory()


@pytest.fixture
def clipboard_writer() -> FakeClipboardWriter:
    return FakeClipboardWriter()


@pytest.fixture
def output_dir(tmp_path) -> str:
    d = tmp_path / "captures"
    d.mkdir()
    return str(d)


@pytest.fixture
def make_pipeline(supervisors, clipboard_writer, output_dir):
    """Build a pipeline wired to fakes, with no settle/clipboard delays."""

    def _make(encoder: FakeEncoder | None = None, **kwargs) -> CapturePipeline:
        options = dict(
            encoder=encoder or FakeEncoder(),
            save_location=FakeSaveLocation(output_dir),
            clipboard_writer=clipboard_writer,
            platform_spec=PLATFORM_SPECS["windows"],
            supervisor_factory=supervisors,
            settle_ms=0,
            clipboard_delay_ms=0,
        )
        options.update(kwargs)
        return CapturePipeline(**options)

    return _make


@pytest.fixture
def gif_request() -> CaptureRequest:
    """A 2-second, 15 fps, 640 px wide GIF with no region."""
    return CaptureRequest(duration_seconds=2, frame_rate=15, output_width=640, format=OutputFormat.GIF)


@pytest.fixture
def events():
    """Record every signal a pipeline emits, in order."""

    class Recorder:
        def __init__(self) -> None:
            self.log: list[tuple] = []

        def attach(self, pipeline: CapturePipeline) -> CapturePipeline:
            pipeline.started.connect(lambda: self.log.append(("started",)))
            pipeline.progress.connect(lambda p: self.log.append(("progress", p)))
            pipeline.completed.connect(lambda path: self.log.append(("completed", path)))
            pipeline.error.connect(lambda msg: self.log.append(("error", msg)))
            pipeline.cancelled.connect(lambda: self.log.append(("cancelled",)))
            pipeline.finished.connect(lambda o: self.log.append(("finished", o)))
            return pipeline

        def names(self) -> list[str]:
            return [e[0] for e in self.log]

        def progress(self) -> list[int]:
            return [e[1] for e in self.log if e[0] == "progress"]

        def outcome(self):
            finished = [e[1] for e in self.log if e[0] == "finished"]
            return finished[-1] if finished else None

    return Recorder()
