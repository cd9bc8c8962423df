"""GifCapture — record a screen region to GIF / MP4 / WebM with ffmpeg."""

import argparse
import logging
import math
import signal
import sys
from typing import List, Optional

from PySide6.QtCore import QTimer
from PySide6.QtGui import QGuiApplication

from .models import (
    CaptureRequest,
    MAX_FPS,
    MAX_WIDTH,
    MIN_FPS,
    MIN_WIDTH,
    OutputFormat,
    Outcome,
    Rectangle,
)
from .pipeline import CapturePipeline
from .screens import get_monitors
from .settings import CaptureSettings, OverrideSaveLocation
from .utils import EncoderLocator, reveal_in_file_manager
from .version import __version__

_logger = logging.getLogger(__name__)


def _global_exception_handler(exc_type, exc_value, exc_tb):
    """Log unhandled exceptions instead of crashing silently."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    _logger.critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))


def _scale_factor(text: str) -> float:
    value = float(text)
    if not math.isfinite(value) or value < 1.0:
        raise argparse.ArgumentTypeError(f"scale factor must be a number >= 1, got {text}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gifcapture",
        description="Capture the screen (or a region of it) to a short GIF, MP4 or WebM clip.",
    )
    parser.add_argument("--duration", type=int, help="seconds to record")
    parser.add_argument("--fps", type=int, help=f"frame rate ({MIN_FPS}-{MAX_FPS})")
    parser.add_argument("--width", type=int, help=f"output width ({MIN_WIDTH}-{MAX_WIDTH})")
    parser.add_argument("--format", choices=[f.value for f in OutputFormat])
    parser.add_argument("--region", type=Rectangle.parse, metavar="X,Y,W,H",
                        help="capture region in logical pixels (default: full screen)")
    parser.add_argument("--scale", type=_scale_factor, help="display scale factor (default: primary screen's)")
    parser.add_argument("--output-dir", help="where to save the clip (this run only)")
    parser.add_argument("--ffmpeg", help="path to the ffmpeg executable (this run only)")
    parser.add_argument("--no-clipboard", action="store_true", help="do not copy the result to the clipboard")
    parser.add_argument("--reveal", action="store_true", help="open the output folder when done")
    parser.add_argument("--list-screens", action="store_true", help="print the available displays and exit")
    parser.add_argument("--debug", action="store_true", help="log ffmpeg output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def request_from_args(args: argparse.Namespace, settings: CaptureSettings) -> CaptureRequest:
    """Command-line options layered over the remembered defaults."""
    data = settings.default_request().to_dict()
    for key, value in (("duration", args.duration), ("fps", args.fps),
                       ("width", args.width), ("format", args.format)):
        if value is not None:
            data[key] = value
    return CaptureRequest.from_dict(data).with_region(args.region)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point — runs one capture on a Qt event loop and exits."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(name)s | %(levelname)s | %(message)s",
    )
    sys.excepthook = _global_exception_handler

    if args.list_screens:
        for monitor in get_monitors():
            print(f"{monitor['index']}: {monitor['name']} at ({monitor['left']}, {monitor['top']})")
        return 0

    app = QGuiApplication.instance() or QGuiApplication(sys.argv[:1])
    app.setApplicationName("GifCapture")
    app.setApplicationVersion(__version__)

    settings = CaptureSettings()

    try:
        request = request_from_args(args, settings)
    except ValueError as exc:
        _logger.error("Invalid capture options: %s", exc)
        return 2

    pipeline = CapturePipeline(
        encoder=EncoderLocator(args.ffmpeg or settings.ffmpeg_path() or None),
        save_location=OverrideSaveLocation(settings, args.output_dir or ""),
        settle_ms=settings.settle_ms,
        clipboard_delay_ms=settings.clipboard_delay_ms,
        copy_to_clipboard=not args.no_clipboard,
    )
    app.aboutToQuit.connect(pipeline.shutdown)

    result: dict = {"outcome": None}

    def _on_finished(outcome: Outcome) -> None:
        result["outcome"] = outcome
        if outcome.ok:
            settings.remember_request(request)
            settings.sync()
            print(outcome.output_path)
            if outcome.clipboard is not None and outcome.clipboard.degraded:
                _logger.warning("Clipboard holds the file path, not the image")
            if args.reveal:
                reveal_in_file_manager(outcome.output_path)
        app.quit()

    pipeline.progress.connect(lambda p: _logger.info("Progress: %d%%", p))
    pipeline.error.connect(lambda msg: _logger.error("%s", msg))
    pipeline.finished.connect(_on_finished)

    # Ctrl+C cancels; the timer lets Python see the signal during exec()
    signal.signal(signal.SIGINT, lambda *_: pipeline.cancel())
    tick = QTimer()
    tick.timeout.connect(lambda: None)
    tick.start(200)

    started = pipeline.start(request, scale_factor=args.scale)
    if not started.ok:
        return 1
    if pipeline.is_busy:
        app.exec()

    outcome = result["outcome"]
    return 0 if outcome is not None and outcome.ok else 1


if __name__ == "__main__":
    sys.exit(main())
