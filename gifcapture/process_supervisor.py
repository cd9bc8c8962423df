"""Run one ffmpeg process on the Qt event loop and report how it ended.

``QProcess`` delivers stderr incrementally and signals exit without a
helper thread, so the pipeline can react to progress while ffmpeg is
still running.
"""

import logging
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence

from PySide6.QtCore import QObject, QProcess, QTimer, Signal

from .utils import decode_output

logger = logging.getLogger(__name__)

# How long a cancelled process gets to exit before it is killed
DEFAULT_KILL_AFTER_MS = 5000

_CREATE_NO_WINDOW = 0x08000000


@dataclass(frozen=True)
class ProcessResult:
    """How a supervised process ended.

    *spawn_error* is set when the process never started; *crashed* when
    it died from a signal / unhandled exception (no meaningful exit code).
    """

    exit_code: Optional[int]
    spawn_error: str = ""
    crashed: bool = False

    @property
    def ok(self) -> bool:
        return not self.spawn_error and not self.crashed and self.exit_code == 0


class ProcessSupervisor(QObject):
    """Spawns one process, streams its stderr, and reports its exit."""

    output = Signal(str)       # decoded stderr chunk
    finished = Signal(object)  # ProcessResult, emitted exactly once

    def __init__(self, parent: QObject | None = None,
                 kill_after_ms: int = DEFAULT_KILL_AFTER_MS) -> None:
        super().__init__(parent)
        self._proc: Optional[QProcess] = None
        self._done = False
        self._kill_timer = QTimer(self)
        self._kill_timer.setSingleShot(True)
        self._kill_timer.setInterval(kill_after_ms)
        self._kill_timer.timeout.connect(self._kill)
        self.program: str = ""
        self.arguments: List[str] = []

    # ── public API ──────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.state() != QProcess.ProcessState.NotRunning

    def run(self, program: str, args: Sequence[str]) -> None:
        """Start *program* asynchronously; ``finished`` reports the end."""
        if self._proc is not None:
            raise RuntimeError("ProcessSupervisor instances run a single process")
        self.program = program
        self.arguments = list(args)

        proc = QProcess(self)
        proc.setProgram(program)
        proc.setArguments(self.arguments)
        proc.setStandardOutputFile(QProcess.nullDevice())
        if sys.platform == "win32":
            proc.setCreateProcessArgumentsModifier(_hide_console_window)
        proc.readyReadStandardError.connect(self._on_stderr)
        proc.errorOccurred.connect(self._on_error)
        proc.finished.connect(self._on_finished)
        self._proc = proc

        logger.info("Launching ffmpeg: %s %s", program, " ".join(self.arguments))
        proc.start()

    def cancel(self) -> None:
        """Ask the process to stop.  Returns immediately; wait for ``finished``."""
        if not self.is_running:
            return
        logger.info("Stopping ffmpeg (pid %s)", self._proc.processId())
        # "q" is ffmpeg's own quit key: it finalizes the container cleanly
        self._proc.write(b"q")
        self._proc.closeWriteChannel()
        self._proc.terminate()
        self._kill_timer.start()

    def stop(self, timeout_ms: int = 2000) -> None:
        """Terminate synchronously (application shutdown)."""
        if not self.is_running:
            return
        self._proc.terminate()
        if not self._proc.waitForFinished(timeout_ms):
            self._proc.kill()
            self._proc.waitForFinished(timeout_ms)

    # ── internal ────────────────────────────────────────────────────

    def _on_stderr(self) -> None:
        data = bytes(self._proc.readAllStandardError())
        if not data:
            return
        text = decode_output(data)
        logger.debug("ffmpeg stderr: %s", text.rstrip())
        self.output.emit(text)

    def _on_error(self, error: QProcess.ProcessError) -> None:
        # Every other error is followed by finished()
        if error == QProcess.ProcessError.FailedToStart:
            reason = self._proc.errorString() if self._proc else "failed to start"
            logger.error("ffmpeg failed to start: %s", reason)
            self._finish(ProcessResult(exit_code=None, spawn_error=reason))

    def _on_finished(self, exit_code: int, exit_status: QProcess.ExitStatus) -> None:
        self._on_stderr()
        crashed = exit_status == QProcess.ExitStatus.CrashExit
        self._finish(ProcessResult(exit_code=None if crashed else exit_code, crashed=crashed))

    def _finish(self, result: ProcessResult) -> None:
        if self._done:
            return
        self._done = True
        self._kill_timer.stop()
        logger.info("ffmpeg exited: code=%s crashed=%s", result.exit_code, result.crashed)
        self.finished.emit(result)

    def _kill(self) -> None:
        if self.is_running:
            logger.warning("ffmpeg did not exit after terminate, killing it")
            self._proc.kill()


def _hide_console_window(args) -> None:
    """QProcess create-process modifier: no console window on Windows."""
    args.flags |= _CREATE_NO_WINDOW
