"""Turn ffmpeg's diagnostic text into a single 0–100 progress signal.

ffmpeg reports how far it got as ``time=HH:MM:SS.ff`` in its status
line.  The text arrives in arbitrary chunks, so the parser keeps a
rolling buffer and only trusts a marker once something follows it.
Parsing sits behind :class:`ProgressParser` so an encoder with
structured progress output can plug in without touching the pipeline.
"""

import logging
import re
from typing import Optional, Tuple

from PySide6.QtCore import QObject, Signal

logger = logging.getLogger(__name__)

CAPTURE_RANGE: Tuple[int, int] = (0, 50)
TRANSCODE_RANGE: Tuple[int, int] = (50, 100)

# The lookahead requires a character after the fraction so a marker cut
# off mid-number ("time=00:00:01.2") is not read too early.
_TIME_RE = re.compile(r"time=(\d+):(\d{2}):(\d{2}\.\d+)(?=\D)")
_TIME_RE_EOF = re.compile(r"time=(\d+):(\d{2}):(\d{2}\.\d+)")

# Enough to hold a partial status line between chunks
_BUFFER_TAIL = 256


def _to_seconds(match: "re.Match[str]") -> float:
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class ProgressParser:
    """Extracts elapsed media time (seconds) from incremental output."""

    def feed(self, text: str) -> Optional[float]:
        raise NotImplementedError

    def flush(self) -> Optional[float]:
        """Called once the process has exited; parse whatever is left."""
        return None


class TimeMarkerParser(ProgressParser):
    """Parses ``time=HH:MM:SS.fraction`` markers from ffmpeg stderr."""

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, text: str) -> Optional[float]:
        self._buffer += text
        last = None
        last_end = 0
        for m in _TIME_RE.finditer(self._buffer):
            last = m
            last_end = m.end()
        # Drop everything up to the last complete marker, and keep the
        # buffer bounded when no marker shows up for a while.
        keep_from = max(last_end, len(self._buffer) - _BUFFER_TAIL)
        self._buffer = self._buffer[keep_from:]
        return _to_seconds(last) if last else None

    def flush(self) -> Optional[float]:
        matches = list(_TIME_RE_EOF.finditer(self._buffer))
        self._buffer = ""
        return _to_seconds(matches[-1]) if matches else None


class ProgressAggregator(QObject):
    """Maps one phase's elapsed time onto its slice of the overall range.

    Emits ``percent`` only when the value increases, so observers see a
    non-decreasing sequence within the phase.
    """

    percent = Signal(int)

    def __init__(
        self,
        span: Tuple[int, int],
        expected_seconds: float,
        parser: Optional[ProgressParser] = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._start, self._end = span
        self._expected = max(float(expected_seconds), 1e-6)
        self._parser = parser or TimeMarkerParser()
        self._last: int = self._start - 1

    @property
    def last_percent(self) -> Optional[int]:
        return self._last if self._last >= self._start else None

    def feed(self, text: str) -> None:
        seconds = self._parser.feed(text)
        if seconds is not None:
            self._report(seconds)

    def flush(self) -> None:
        seconds = self._parser.flush()
        if seconds is not None:
            self._report(seconds)

    def complete(self) -> None:
        """Mark the phase finished (emits the range end)."""
        self._emit(self._end)

    def _report(self, seconds: float) -> None:
        fraction = min(max(seconds / self._expected, 0.0), 1.0)
        value = self._start + int(round(fraction * (self._end - self._start)))
        logger.debug("Progress %d%% (%.1fs / %.1fs)", value, seconds, self._expected)
        self._emit(value)

    def _emit(self, value: int) -> None:
        value = min(max(value, self._start), self._end)
        if value > self._last:
            self._last = value
            self.percent.emit(value)
