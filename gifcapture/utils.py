"""Shared utilities used by multiple modules."""

import locale
import logging
import os
import subprocess
import sys
from datetime import datetime, timezone
from typing import Optional, Tuple

from .models import NATIVE_EXTENSION, OutputFormat

logger = logging.getLogger(__name__)


def ffmpeg_exe() -> str:
    """Return path to the ffmpeg binary bundled via imageio-ffmpeg."""
    import imageio_ffmpeg
    return imageio_ffmpeg.get_ffmpeg_exe()


def subprocess_kwargs() -> dict:
    """Extra kwargs to hide the console window on Windows."""
    kw: dict = {}
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        kw["startupinfo"] = si
        kw["creationflags"] = subprocess.CREATE_NO_WINDOW
    return kw


# ── Encoder locator ─────────────────────────────────────────────────


class EncoderLocator:
    """Find the ffmpeg executable and check that it actually runs.

    An explicit *executable* (from settings or the command line) wins;
    otherwise imageio-ffmpeg resolves ``IMAGEIO_FFMPEG_EXE``, its bundled
    binary, or a system ffmpeg.  The availability check is cached.
    """

    def __init__(self, executable: Optional[str] = None) -> None:
        self._explicit = executable or None
        self._available: Optional[bool] = None
        self._path: str = ""
        self.reason: str = ""

    def executable(self) -> str:
        if not self._path:
            self._path = self._explicit or ffmpeg_exe()
        return self._path

    def is_available(self) -> bool:
        if self._available is not None:
            return self._available

        available = False
        try:
            exe = self.executable()
            result = subprocess.run(
                [exe, "-hide_banner", "-version"],
                capture_output=True, timeout=10,
                **subprocess_kwargs(),
            )
            available = result.returncode == 0
            if not available:
                self.reason = f"{exe} -version exited with code {result.returncode}"
        except (OSError, RuntimeError, subprocess.SubprocessError) as exc:
            self.reason = str(exc)

        if not available:
            logger.warning("ffmpeg check failed: %s", self.reason)
        self._available = available
        return available


# ── Diagnostic output decoding ──────────────────────────────────────


def legacy_encoding() -> str:
    """The platform's legacy code page for console output.

    On Windows this is the ANSI code page (``mbcs``); elsewhere the
    locale's preferred encoding, or latin-1 when that is UTF-8 already.
    """
    if sys.platform == "win32":
        return "mbcs"
    enc = locale.getpreferredencoding(False) or ""
    if enc.replace("-", "").lower() in ("utf8", ""):
        return "latin-1"
    return enc


def decode_output(data: bytes) -> str:
    """Decode a chunk of ffmpeg stderr.

    Tries UTF-8; if that fails or produces replacement characters the
    chunk is decoded with :func:`legacy_encoding` instead.  The host code
    page cannot be detected reliably, so this is best-effort: a chunk
    that splits a multi-byte character falls back to the legacy codec.
    """
    try:
        text = data.decode("utf-8")
        if "\ufffd" not in text:
            return text
    except UnicodeDecodeError:
        pass
    try:
        return data.decode(legacy_encoding(), errors="replace")
    except LookupError:
        return data.decode("latin-1")


# ── Artifact naming & file lifecycle ────────────────────────────────


def timestamp_slug(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp safe for filenames.

    ``2024-05-01T12:30:05.123Z`` becomes ``2024-05-01T12-30-05-123Z``.
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    iso = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def artifact_paths(directory: str, fmt: OutputFormat, stamp: str) -> Tuple[str, str]:
    """Return ``(temp_path, output_path)`` for a capture started at *stamp*."""
    fmt = OutputFormat(fmt)
    temp_path = os.path.join(directory, f"temp-capture-{stamp}.{NATIVE_EXTENSION}")
    output_path = os.path.join(directory, f"capture-{stamp}.{fmt.extension}")
    return temp_path, output_path


def palette_path_for(temp_path: str) -> str:
    base, _ = os.path.splitext(temp_path)
    return f"{base}-palette.png"


def remove_quietly(path: str) -> bool:
    """Delete *path* if it exists.  Failures are logged, never raised.

    Returns True when the file is gone afterwards.
    """
    if not path:
        return True
    try:
        os.remove(path)
        logger.debug("Removed %s", path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove %s: %s", path, exc)
        return False
    return True


def reveal_in_file_manager(path: str) -> bool:
    """Open the folder containing *path* in the system file manager."""
    from PySide6.QtCore import QUrl
    from PySide6.QtGui import QDesktopServices

    folder = os.path.dirname(os.path.abspath(path))
    ok = QDesktopServices.openUrl(QUrl.fromLocalFile(folder))
    if not ok:
        logger.warning("Could not open file location %s", folder)
    return bool(ok)
