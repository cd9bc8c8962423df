"""Capture → transcode → clipboard pipeline.

``CapturePipeline`` owns the single in-flight :class:`~.models.Job` and
sequences it through its phases::

    idle → capturing → finalizing                       → done   (mp4)
                     → transcoding → clipboarding       → done   (gif)
                     → transcoding                      → done   (webm)
    capturing / transcoding → failed | cancelled

Everything runs on the Qt event loop: the pipeline never blocks on
ffmpeg, it reacts to ``ProcessSupervisor`` signals and ``QTimer``
single-shots.  A second ``start()`` while a job is active is refused,
not queued.  The job's temporary files are removed on every terminal
transition; only a native-container capture keeps its temp file, by
renaming it to the output path.
"""

import functools
import logging
import os
from typing import Callable, List, Optional

from PySide6.QtCore import QObject, QTimer, Signal

from .clipboard import ArtifactClipboardWriter
from .commands import (
    PlatformCaptureSpec,
    TranscodeStage,
    build_capture_args,
    build_transcode_chain,
    current_platform_spec,
)
from .errors import (
    AlreadyRunning,
    CaptureError,
    EncoderUnavailable,
    InternalError,
    NotRunning,
    ProcessFailed,
    SpawnFailed,
)
from .geometry import correct_region
from .models import (
    CaptureRequest,
    ClipboardResult,
    Job,
    OutputFormat,
    Outcome,
    Phase,
    Rectangle,
)
from .process_supervisor import ProcessResult, ProcessSupervisor
from .progress import CAPTURE_RANGE, TRANSCODE_RANGE, ProgressAggregator
from .screens import primary_scale_factor
from .settings import DEFAULT_CLIPBOARD_DELAY_MS, DEFAULT_SETTLE_MS, CaptureSettings
from .utils import (
    EncoderLocator,
    artifact_paths,
    palette_path_for,
    remove_quietly,
    timestamp_slug,
)

logger = logging.getLogger(__name__)


def _guarded(method):
    """Convert unexpected exceptions into an ``InternalError`` failure.

    The pipeline lives inside a GUI host; an exception escaping a slot
    must fail the job, not the process.
    """

    @functools.wraps(method)
    def wrapper(self: "CapturePipeline", *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception as exc:
            logger.exception("Unexpected error in capture pipeline")
            phase = self._job.phase.value if self._job is not None else None
            return self._fail(InternalError(str(exc), phase=phase))

    return wrapper


class CapturePipeline(QObject):
    """Top-level orchestrator for one capture at a time."""

    started = Signal()
    progress = Signal(int)        # 0–100, non-decreasing per job
    completed = Signal(str)       # output path
    error = Signal(str)           # human-readable message
    cancelled = Signal()
    phase_changed = Signal(object)  # Phase
    finished = Signal(object)     # Outcome, always the last event of a job

    def __init__(
        self,
        encoder: Optional[EncoderLocator] = None,
        save_location: Optional[CaptureSettings] = None,
        clipboard_writer: Optional[ArtifactClipboardWriter] = None,
        platform_spec: Optional[PlatformCaptureSpec] = None,
        supervisor_factory: Optional[Callable[[QObject], ProcessSupervisor]] = None,
        settle_ms: int = DEFAULT_SETTLE_MS,
        clipboard_delay_ms: int = DEFAULT_CLIPBOARD_DELAY_MS,
        copy_to_clipboard: bool = True,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._encoder = encoder or EncoderLocator()
        self._save_location = save_location or CaptureSettings()
        self._clipboard_writer = clipboard_writer or ArtifactClipboardWriter(encoder=self._encoder)
        self._platform = platform_spec or current_platform_spec()
        self._supervisor_factory = supervisor_factory or ProcessSupervisor
        self._settle_ms = settle_ms
        self._clipboard_delay_ms = clipboard_delay_ms
        self._copy_to_clipboard = copy_to_clipboard

        self._job: Optional[Job] = None
        self._last_phase: Phase = Phase.IDLE
        self._supervisor: Optional[ProcessSupervisor] = None
        self._aggregator: Optional[ProgressAggregator] = None
        self._stages: List[TranscodeStage] = []

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._on_timer)
        self._timer_callback: Optional[Callable[[], None]] = None

    # ── properties ──────────────────────────────────────────────────

    @property
    def phase(self) -> Phase:
        return self._job.phase if self._job is not None else Phase.IDLE

    @property
    def is_busy(self) -> bool:
        return self._job is not None

    @property
    def job(self) -> Optional[Job]:
        return self._job

    @property
    def last_phase(self) -> Phase:
        """Terminal phase of the most recent job (``IDLE`` before the first)."""
        return self._last_phase

    # ── triggers ────────────────────────────────────────────────────

    @_guarded
    def start(self, request: CaptureRequest, scale_factor: Optional[float] = None) -> Outcome:
        """Begin a capture.  Returns immediately; the job reports via signals.

        If *request* has a region it is corrected from logical to physical
        pixels with *scale_factor* (default: the primary screen's).
        """
        if self._job is not None:
            logger.warning("Capture requested while %s, ignoring", self._job.phase.value)
            return Outcome.failure(AlreadyRunning(), self._job.phase)

        if not self._encoder.is_available():
            err = EncoderUnavailable(self._encoder.reason)
            logger.error("%s", err)
            self.error.emit(err.message)
            return Outcome.failure(err)

        region = None
        if request.region is not None:
            scale = primary_scale_factor() if scale_factor is None else scale_factor
            region = correct_region(request.region, scale)
            logger.info("Region %s at scale %.2f → %s", request.region, scale, region)

        temp_path, output_path = artifact_paths(
            self._save_location.output_dir(), request.format, timestamp_slug(),
        )
        job = Job(request=request, temp_path=temp_path, output_path=output_path, region=region)
        if request.format is OutputFormat.GIF:
            job.palette_path = palette_path_for(temp_path)
        self._job = job

        logger.info(
            "Capture started | %ds @ %dfps | width=%d | format=%s | region=%s",
            request.duration_seconds, request.frame_rate, request.output_width,
            request.format.value, region,
        )
        self._set_phase(Phase.CAPTURING)
        self.started.emit()
        self._schedule(self._settle_ms, self._launch_capture)
        return Outcome(ok=True, output_path=output_path, phase=job.phase)

    def start_region(self, rect: Rectangle, request: CaptureRequest,
                     scale_factor: Optional[float] = None) -> Outcome:
        """Capture the user-selected *rect* (logical pixels)."""
        return self.start(request.with_region(rect), scale_factor)

    @_guarded
    def cancel(self) -> Outcome:
        """Stop the running capture or transcode.

        Cancellation is cooperative: the process is signalled and the job
        becomes ``cancelled`` when its exit arrives.
        """
        job = self._job
        if job is None:
            return Outcome.failure(NotRunning())
        if not job.phase.is_cancellable:
            return Outcome.failure(NotRunning(f"Cannot cancel while {job.phase.value}"), job.phase)
        if job.cancel_requested:
            return Outcome(ok=True, phase=job.phase)

        job.cancel_requested = True
        logger.info("Cancel requested during %s", job.phase.value)
        if self._supervisor is not None and self._supervisor.is_running:
            self._supervisor.cancel()
            return Outcome(ok=True, phase=job.phase)

        # Nothing launched yet (still settling)
        self._timer.stop()
        self._finish_cancelled()
        return Outcome(ok=True, phase=Phase.CANCELLED)

    def shutdown(self) -> None:
        """Tear down synchronously at application exit, discarding the job."""
        job = self._job
        if job is None:
            return
        logger.info("Shutting down during %s, discarding capture", job.phase.value)
        job.cancel_requested = True
        self._timer.stop()
        if self._supervisor is not None:
            # finished() fires inside stop() and cleans up through the normal path
            self._supervisor.stop()
        if self._job is job:
            self._finish_cancelled()

    # ── capture phase ───────────────────────────────────────────────

    @_guarded
    def _launch_capture(self) -> None:
        job = self._job
        if job is None or job.phase is not Phase.CAPTURING or job.cancel_requested:
            return
        args = build_capture_args(self._platform, job.request, job.region, job.temp_path)
        self._set_aggregator(ProgressAggregator(CAPTURE_RANGE, job.request.duration_seconds, parent=self))
        self._run(args, self._on_capture_finished, self._aggregator)

    @_guarded
    def _on_capture_finished(self, supervisor: ProcessSupervisor, result: ProcessResult) -> None:
        job = self._job
        if job is None or supervisor is not self._supervisor:
            return
        self._release_supervisor()
        if self._aggregator is not None:
            self._aggregator.flush()
        if job.cancel_requested:
            self._finish_cancelled()
            return
        if not result.ok:
            self._fail(self._process_error("capture", result))
            return

        self._aggregator.complete()
        logger.info("Capture finished: %s", job.temp_path)

        if job.request.format.is_native:
            self._finalize(job)
            return

        self._set_phase(Phase.TRANSCODING)
        self._stages = build_transcode_chain(
            job.request.format, job.temp_path, job.output_path,
            job.request.output_width, job.request.frame_rate, job.palette_path,
        )
        self._set_aggregator(ProgressAggregator(TRANSCODE_RANGE, job.request.duration_seconds, parent=self))
        self._run_stage(0)

    def _finalize(self, job: Job) -> None:
        self._set_phase(Phase.FINALIZING)
        try:
            os.replace(job.temp_path, job.output_path)
        except OSError as exc:
            self._fail(CaptureError(f"Could not save {job.output_path}: {exc}", phase="finalize"))
            return
        logger.info("Saved %s", job.output_path)
        self._finish_done()

    # ── transcode phase ─────────────────────────────────────────────

    def _run_stage(self, index: int) -> None:
        stage = self._stages[index]
        logger.info("Transcode stage %d/%d: %s", index + 1, len(self._stages), stage.name)
        aggregator = self._aggregator if stage.reports_progress else None
        self._run(stage.args, functools.partial(self._on_stage_finished, index), aggregator)

    @_guarded
    def _on_stage_finished(self, index: int, supervisor: ProcessSupervisor,
                           result: ProcessResult) -> None:
        job = self._job
        if job is None or supervisor is not self._supervisor:
            return
        self._release_supervisor()
        stage = self._stages[index]
        if stage.reports_progress and self._aggregator is not None:
            self._aggregator.flush()
        if job.cancel_requested:
            self._finish_cancelled()
            return
        if not result.ok:
            phase = "palette" if stage.name == "palette" else "transcode"
            self._fail(self._process_error(phase, result))
            return

        if index + 1 < len(self._stages):
            self._run_stage(index + 1)
            return

        remove_quietly(job.temp_path)
        remove_quietly(job.palette_path)
        logger.info("Transcode finished: %s", job.output_path)

        if job.request.format.is_image and self._copy_to_clipboard:
            self._set_phase(Phase.CLIPBOARDING)
            self._schedule(self._clipboard_delay_ms, self._place_on_clipboard)
        else:
            self._finish_done()

    # ── clipboard phase ─────────────────────────────────────────────

    @_guarded
    def _place_on_clipboard(self) -> None:
        job = self._job
        if job is None or job.phase is not Phase.CLIPBOARDING:
            return
        result = self._clipboard_writer.write(job.output_path)
        if result.degraded:
            logger.warning("Clipboard holds %s instead of the image: %s",
                           result.kind, result.error)
        self._finish_done(result)

    # ── process plumbing ────────────────────────────────────────────

    def _run(self, args: List[str], on_finished, aggregator: Optional[ProgressAggregator]) -> None:
        supervisor = self._supervisor_factory(self)
        self._supervisor = supervisor
        if aggregator is not None:
            supervisor.output.connect(aggregator.feed)
            aggregator.percent.connect(functools.partial(self._on_progress, aggregator))
        supervisor.finished.connect(functools.partial(on_finished, supervisor))
        supervisor.run(self._encoder.executable(), args)

    def _set_aggregator(self, aggregator: Optional[ProgressAggregator]) -> None:
        old, self._aggregator = self._aggregator, aggregator
        if old is not None and old is not aggregator:
            # detach now so finished jobs leave no children behind
            old.setParent(None)
            old.deleteLater()

    def _release_supervisor(self) -> None:
        supervisor, self._supervisor = self._supervisor, None
        if supervisor is None:
            return
        if supervisor.is_running:
            supervisor.stop()
        supervisor.deleteLater()

    @staticmethod
    def _process_error(phase: str, result: ProcessResult) -> CaptureError:
        if result.spawn_error:
            return SpawnFailed(phase, result.spawn_error)
        return ProcessFailed(phase, result.exit_code)

    def _on_progress(self, aggregator: ProgressAggregator, percent: int) -> None:
        job = self._job
        if job is None or aggregator is not self._aggregator:
            return
        self._report_progress(percent)

    def _report_progress(self, percent: int) -> None:
        job = self._job
        if job is None or percent <= job.progress_percent:
            return
        job.progress_percent = percent
        self.progress.emit(percent)

    def _schedule(self, delay_ms: int, callback: Callable[[], None]) -> None:
        if delay_ms <= 0:
            callback()
            return
        self._timer_callback = callback
        self._timer.start(delay_ms)

    def _on_timer(self) -> None:
        callback, self._timer_callback = self._timer_callback, None
        if callback is not None:
            callback()

    def _set_phase(self, phase: Phase) -> None:
        if self._job is None:
            return
        self._job.phase = phase
        logger.debug("Phase → %s", phase.value)
        self.phase_changed.emit(phase)

    # ── terminal transitions ────────────────────────────────────────

    def _finish_done(self, clipboard: Optional[ClipboardResult] = None) -> None:
        job = self._job
        self._report_progress(100)
        self._set_phase(Phase.DONE)
        self._reset()
        logger.info("Capture complete: %s", job.output_path)
        self.completed.emit(job.output_path)
        self.finished.emit(Outcome(ok=True, output_path=job.output_path,
                                   clipboard=clipboard, phase=Phase.DONE))

    def _finish_cancelled(self) -> None:
        job = self._job
        if job is None:
            return
        self._discard(job)
        self._set_phase(Phase.CANCELLED)
        self._reset()
        logger.info("Capture cancelled")
        self.cancelled.emit()
        self.finished.emit(Outcome(ok=False, phase=Phase.CANCELLED))

    def _fail(self, error: CaptureError) -> Outcome:
        job = self._job
        if job is not None:
            self._timer.stop()
            self._release_supervisor()
            self._discard(job)
            self._set_phase(Phase.FAILED)
            self._reset()
        logger.error("Capture failed: %s", error)
        self.error.emit(error.message)
        outcome = Outcome.failure(error, Phase.FAILED)
        if job is not None:
            self.finished.emit(outcome)
        return outcome

    def _discard(self, job: Job) -> None:
        """Remove the job's temporary files (and a half-written output)."""
        remove_quietly(job.temp_path)
        remove_quietly(job.palette_path)
        if job.phase in (Phase.CAPTURING, Phase.TRANSCODING):
            remove_quietly(job.output_path)

    def _reset(self) -> None:
        if self._job is not None:
            self._last_phase = self._job.phase
        self._job = None
        self._set_aggregator(None)
        self._stages = []
        self._timer_callback = None
