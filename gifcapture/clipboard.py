"""Put a finished artifact on the system clipboard.

Strategies are tried in order until the clipboard reads back what was
written:

1. the file's raw bytes under its native image mime type (keeps GIF
   animation, which any bitmap conversion would flatten);
2. Qt's own decoder (``QImage(path)``);
3. a fresh read of the bytes decoded with OpenCV;
4. a single frame extracted by ffmpeg into a temporary PNG.

If every strategy fails the path is copied as text instead.  A file
reference (``text/uri-list``, CF_HDROP on Windows) is attached to every
payload so file managers and chat apps can paste the original file.
"""

import logging
import os
import sys
import tempfile
from typing import Callable, List, Optional, Sequence

import cv2
import numpy as np
from PySide6.QtCore import QByteArray, QEventLoop, QMimeData, QObject, QTimer, QUrl
from PySide6.QtGui import QGuiApplication, QImage

from .commands import build_frame_extract_args
from .errors import ClipboardUnavailable
from .models import ClipboardResult
from .process_supervisor import ProcessResult, ProcessSupervisor
from .utils import EncoderLocator, remove_quietly

logger = logging.getLogger(__name__)

# extension → mime types carrying the raw file bytes
NATIVE_MIME_TYPES = {
    ".gif": ["image/gif"],
    ".png": ["image/png"],
    ".jpg": ["image/jpeg"],
    ".jpeg": ["image/jpeg"],
    ".webp": ["image/webp"],
}

# Registered clipboard format names Windows apps look for
_WINDOWS_FORMATS = {
    "image/gif": 'application/x-qt-windows-mime;value="GIF"',
    "image/png": 'application/x-qt-windows-mime;value="PNG"',
}

IMAGE_EXTENSIONS = frozenset(NATIVE_MIME_TYPES)


def is_image_file(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in IMAGE_EXTENSIONS


# ── Strategies ──────────────────────────────────────────────────────


class ClipboardStrategy:
    """One way of turning an artifact into clipboard data."""

    name = "base"

    def fill(self, path: str, mime: QMimeData) -> bool:
        """Put the payload into *mime*.  Return False if not applicable."""
        raise NotImplementedError

    def verify(self, mime: QMimeData) -> bool:
        """Check the clipboard's current content holds the payload."""
        return mime.hasImage()


class NativeImageStrategy(ClipboardStrategy):
    name = "native"

    def __init__(self) -> None:
        self._formats: List[str] = []

    def fill(self, path: str, mime: QMimeData) -> bool:
        formats = NATIVE_MIME_TYPES.get(os.path.splitext(path)[1].lower())
        if not formats:
            return False
        with open(path, "rb") as f:
            data = QByteArray(f.read())
        if data.isEmpty():
            return False
        self._formats = list(formats)
        if sys.platform == "win32":
            self._formats += [_WINDOWS_FORMATS[m] for m in formats if m in _WINDOWS_FORMATS]
        for fmt in self._formats:
            mime.setData(fmt, data)
        return True

    def verify(self, mime: QMimeData) -> bool:
        return bool(self._formats) and mime.hasFormat(self._formats[0])


class QtImageStrategy(ClipboardStrategy):
    name = "qimage"

    def fill(self, path: str, mime: QMimeData) -> bool:
        image = QImage(path)
        if image.isNull():
            return False
        mime.setImageData(image)
        return True


def _bgr_to_qimage(frame: np.ndarray) -> QImage:
    rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    h, w = rgb.shape[:2]
    qimg = QImage(rgb.data, w, h, rgb.strides[0], QImage.Format.Format_RGB888)
    return qimg.copy()  # detach from the numpy buffer


class DecodedBytesStrategy(ClipboardStrategy):
    name = "decoded"

    def fill(self, path: str, mime: QMimeData) -> bool:
        with open(path, "rb") as f:
            buf = np.frombuffer(f.read(), dtype=np.uint8)
        if buf.size == 0:
            return False
        frame = cv2.imdecode(buf, cv2.IMREAD_COLOR)
        if frame is None:
            return False
        mime.setImageData(_bgr_to_qimage(frame))
        return True


class ExtractedFrameStrategy(ClipboardStrategy):
    """Ask ffmpeg for one representative frame as a PNG.

    ffmpeg runs under a :class:`ProcessSupervisor` while a local
    ``QEventLoop`` waits for it, so the application keeps processing
    events during the extraction.
    """

    name = "ffmpeg-frame"

    def __init__(
        self,
        encoder: Optional[EncoderLocator] = None,
        timeout_ms: int = 15000,
        supervisor_factory: Optional[Callable[[Optional[QObject]], ProcessSupervisor]] = None,
    ) -> None:
        self._encoder = encoder or EncoderLocator()
        self._timeout_ms = timeout_ms
        self._supervisor_factory = supervisor_factory or ProcessSupervisor

    def fill(self, path: str, mime: QMimeData) -> bool:
        if not self._encoder.is_available():
            return False
        fd, frame_path = tempfile.mkstemp(prefix="gifcapture-frame-", suffix=".png")
        os.close(fd)
        try:
            result = self._extract(path, frame_path)
            if result is None:
                logger.warning("Frame extraction timed out after %d ms", self._timeout_ms)
                return False
            if not result.ok:
                logger.warning("Frame extraction failed (rc=%s)", result.exit_code)
                return False
            image = QImage(frame_path)
            if image.isNull():
                return False
            mime.setImageData(image)
            return True
        finally:
            remove_quietly(frame_path)

    def _extract(self, path: str, frame_path: str) -> Optional[ProcessResult]:
        results: List[ProcessResult] = []
        loop = QEventLoop()
        timer = QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(loop.quit)

        supervisor = self._supervisor_factory(None)
        supervisor.finished.connect(results.append)
        supervisor.finished.connect(lambda _result: loop.quit())
        supervisor.run(self._encoder.executable(), build_frame_extract_args(path, frame_path))
        if not results:
            timer.start(self._timeout_ms)
            loop.exec()
        timer.stop()

        result = results[0] if results else None
        if result is None:
            supervisor.stop()
        supervisor.deleteLater()
        return result


def default_strategies(encoder: Optional[EncoderLocator] = None) -> List[ClipboardStrategy]:
    return [
        NativeImageStrategy(),
        QtImageStrategy(),
        DecodedBytesStrategy(),
        ExtractedFrameStrategy(encoder),
    ]


# ── Writer ──────────────────────────────────────────────────────────


class ArtifactClipboardWriter:
    """Places artifacts on the clipboard, degrading to a path payload.

    *clipboard* defaults to ``QGuiApplication.clipboard()`` and is looked
    up on every write, so the writer can be created before the app.
    """

    def __init__(
        self,
        clipboard=None,
        strategies: Optional[Sequence[ClipboardStrategy]] = None,
        encoder: Optional[EncoderLocator] = None,
    ) -> None:
        self._clipboard = clipboard
        self._strategies = list(strategies) if strategies is not None else default_strategies(encoder)

    @property
    def strategies(self) -> List[ClipboardStrategy]:
        return list(self._strategies)

    def write(self, path: str) -> ClipboardResult:
        if not os.path.isfile(path):
            logger.warning("Cannot copy missing file to clipboard: %s", path)
            return ClipboardResult("none", error=ClipboardUnavailable(f"File does not exist: {path}"))

        clipboard = self._clipboard or QGuiApplication.clipboard()
        if clipboard is None:
            return ClipboardResult("none", error=ClipboardUnavailable("No clipboard available"))

        if is_image_file(path):
            for strategy in self._strategies:
                if self._try(clipboard, strategy, path):
                    logger.info("Copied image to clipboard (%s): %s", strategy.name, path)
                    return ClipboardResult("image", strategy.name)
            logger.warning("All clipboard image strategies failed, copying path: %s", path)
            error: Optional[ClipboardUnavailable] = ClipboardUnavailable()
        else:
            error = None

        try:
            mime = QMimeData()
            _attach_file_reference(mime, path)
            mime.setText(path)
            clipboard.setMimeData(mime)
        except Exception as exc:
            logger.error("Could not write path to clipboard: %s", exc)
            return ClipboardResult("none", error=ClipboardUnavailable(str(exc)))
        logger.info("Copied file path to clipboard: %s", path)
        return ClipboardResult("path", "path", error)

    def _try(self, clipboard, strategy: ClipboardStrategy, path: str) -> bool:
        try:
            mime = QMimeData()
            if not strategy.fill(path, mime):
                logger.debug("Clipboard strategy %s not applicable", strategy.name)
                return False
            _attach_file_reference(mime, path)
            clipboard.setMimeData(mime)
            current = clipboard.mimeData()
            if current is None or not strategy.verify(current):
                logger.debug("Clipboard strategy %s did not stick", strategy.name)
                return False
            return True
        except Exception as exc:
            logger.warning("Clipboard strategy %s failed: %s", strategy.name, exc)
            return False


def _attach_file_reference(mime: QMimeData, path: str) -> None:
    """Best-effort file-reference formats so paste targets can resolve the file."""
    try:
        url = QUrl.fromLocalFile(os.path.abspath(path))
        mime.setUrls([url])
        if sys.platform.startswith("linux"):
            mime.setData(
                "x-special/gnome-copied-files",
                QByteArray(f"copy\n{url.toString()}".encode("utf-8")),
            )
    except Exception as exc:
        logger.warning("Could not attach file reference for %s: %s", path, exc)
