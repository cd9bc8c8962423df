"""Error kinds surfaced by the capture pipeline.

Errors are returned to the triggering caller inside an ``Outcome`` and
emitted as ``error`` signals; the pipeline never lets them escape its
slots.
"""

from typing import Optional


class CaptureError(Exception):
    """Base class for every pipeline error."""

    kind = "capture_error"

    def __init__(self, message: str = "", phase: Optional[str] = None) -> None:
        super().__init__(message or self.kind)
        self.phase = phase

    @property
    def message(self) -> str:
        return str(self)


class AlreadyRunning(CaptureError):
    kind = "already_running"

    def __init__(self) -> None:
        super().__init__("A capture is already in progress")


class NotRunning(CaptureError):
    kind = "not_running"

    def __init__(self, message: str = "No capture in progress") -> None:
        super().__init__(message)


class EncoderUnavailable(CaptureError):
    kind = "encoder_unavailable"

    def __init__(self, reason: str = "") -> None:
        msg = "ffmpeg is not available"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class SpawnFailed(CaptureError):
    """The OS refused to start the encoder process."""

    kind = "spawn_failed"

    def __init__(self, phase: str, reason: str = "") -> None:
        msg = f"Could not start ffmpeg ({phase})"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg, phase=phase)
        self.reason = reason


class ProcessFailed(CaptureError):
    """A capture or transcode stage exited with a non-zero code."""

    kind = "process_failed"

    def __init__(self, phase: str, exit_code: Optional[int]) -> None:
        code = "crashed" if exit_code is None else str(exit_code)
        super().__init__(f"ffmpeg {phase} failed, exit code: {code}", phase=phase)
        self.exit_code = exit_code


class ClipboardUnavailable(CaptureError):
    """Every clipboard strategy failed; the path was copied instead."""

    kind = "clipboard_unavailable"

    def __init__(self, message: str = "Could not place the image on the clipboard") -> None:
        super().__init__(message, phase="clipboard")


class InternalError(CaptureError):
    kind = "internal_error"

    def __init__(self, message: str = "", phase: Optional[str] = None) -> None:
        super().__init__(f"Internal error: {message}" if message else "Internal error", phase=phase)
