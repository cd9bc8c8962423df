"""Persistent user settings (``QSettings``) and the save-location provider."""

import logging
import os
from typing import Optional

from PySide6.QtCore import QSettings, QStandardPaths

from .models import (
    CaptureRequest,
    DEFAULT_DURATION,
    DEFAULT_FPS,
    DEFAULT_FORMAT,
    DEFAULT_WIDTH,
)

logger = logging.getLogger(__name__)

ORGANIZATION = "GifCapture"
APPLICATION = "GifCapture"

# Let the UI that triggered the capture get out of the way first
DEFAULT_SETTLE_MS = 300
# Give the filesystem a moment before the clipboard reads the file
DEFAULT_CLIPBOARD_DELAY_MS = 1000


def default_output_dir() -> str:
    """The user's desktop, or the home directory when there is none."""
    desktop = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.DesktopLocation)
    if desktop and os.path.isdir(desktop):
        return desktop
    return os.path.expanduser("~")


class CaptureSettings:
    """Typed access to the persisted settings.

    Keys: ``saveDir``, ``duration``, ``fps``, ``width``, ``format``,
    ``ffmpegPath``, ``settleMs``, ``clipboardDelayMs``.
    """

    def __init__(self, settings: Optional[QSettings] = None) -> None:
        self._settings = settings or QSettings(ORGANIZATION, APPLICATION)

    # ── save location ───────────────────────────────────────────────

    def output_dir(self) -> str:
        """Preferred save directory, falling back when it is missing/invalid."""
        preferred = str(self._settings.value("saveDir", "") or "")
        if preferred and os.path.isdir(preferred):
            return preferred
        if preferred:
            logger.warning("Save directory %s is not available, using default", preferred)
        return default_output_dir()

    def set_output_dir(self, path: str) -> None:
        self._settings.setValue("saveDir", path)

    # ── capture defaults ────────────────────────────────────────────

    def default_request(self) -> CaptureRequest:
        """The last used request, or the built-in defaults if none/invalid."""
        data = {
            "duration": self._int("duration", DEFAULT_DURATION),
            "fps": self._int("fps", DEFAULT_FPS),
            "width": self._int("width", DEFAULT_WIDTH),
            "format": str(self._settings.value("format", DEFAULT_FORMAT) or DEFAULT_FORMAT),
        }
        try:
            return CaptureRequest.from_dict(data)
        except ValueError as exc:
            logger.warning("Ignoring invalid stored capture settings: %s", exc)
            return CaptureRequest()

    def remember_request(self, request: CaptureRequest) -> None:
        for key, value in request.to_dict().items():
            if key != "region":
                self._settings.setValue(key, value)

    # ── encoder & timing ────────────────────────────────────────────

    def ffmpeg_path(self) -> str:
        return str(self._settings.value("ffmpegPath", "") or "")

    def set_ffmpeg_path(self, path: str) -> None:
        self._settings.setValue("ffmpegPath", path)

    @property
    def settle_ms(self) -> int:
        return self._int("settleMs", DEFAULT_SETTLE_MS)

    @property
    def clipboard_delay_ms(self) -> int:
        return self._int("clipboardDelayMs", DEFAULT_CLIPBOARD_DELAY_MS)

    def sync(self) -> None:
        self._settings.sync()

    def _int(self, key: str, default: int) -> int:
        value = self._settings.value(key, default)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default


class OverrideSaveLocation:
    """Save-location provider for one run: *directory* wins over the stored one.

    Nothing is persisted; an unusable *directory* falls back to
    :meth:`CaptureSettings.output_dir`.
    """

    def __init__(self, settings: CaptureSettings, directory: str = "") -> None:
        self._settings = settings
        self._directory = directory

    def output_dir(self) -> str:
        if self._directory:
            if os.path.isdir(self._directory):
                return self._directory
            logger.warning("Output directory %s is not available, using saved location", self._directory)
        return self._settings.output_dir()
