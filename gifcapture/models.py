"""Core data models for GifCapture.

Defines the request a trigger hands to the pipeline, the screen
rectangles it works with, the single in-flight job record, and the
outcome returned to callers.  Request and rectangle types support
dict serialization via ``to_dict()`` / ``from_dict()`` so they can be
persisted in settings and built from command-line arguments.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from .errors import CaptureError


class OutputFormat(str, Enum):
    """Formats the user can ask for."""

    GIF = "gif"
    MP4 = "mp4"
    WEBM = "webm"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def is_native(self) -> bool:
        """True for the container the capture phase already produces."""
        return self is OutputFormat.MP4

    @property
    def is_image(self) -> bool:
        """True for image-like outputs that belong on the clipboard."""
        return self is OutputFormat.GIF


NATIVE_EXTENSION = OutputFormat.MP4.extension


@dataclass(frozen=True)
class Rectangle:
    """A selection rectangle in **logical** (UI) pixels."""
    x: int
    y: int
    width: int
    height: int

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @staticmethod
    def from_dict(d: dict) -> "Rectangle":
        return Rectangle(
            x=int(d["x"]), y=int(d["y"]),
            width=int(d["width"]), height=int(d["height"]),
        )

    @staticmethod
    def parse(text: str) -> "Rectangle":
        """Parse ``"x,y,width,height"``."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Expected x,y,width,height, got {text!r}")
        x, y, w, h = (int(p) for p in parts)
        if w <= 0 or h <= 0:
            raise ValueError(f"Region size must be positive, got {w}x{h}")
        return Rectangle(x=x, y=y, width=w, height=h)


@dataclass(frozen=True)
class PhysicalRegion:
    """A capture region in **physical** pixels.

    Width and height are always even so chroma-subsampled encoders
    accept them.
    """
    x: int
    y: int
    width: int
    height: int

    @property
    def video_size(self) -> str:
        return f"{self.width}x{self.height}"


MIN_FPS, MAX_FPS = 10, 60
MIN_WIDTH, MAX_WIDTH = 320, 1920


@dataclass(frozen=True)
class CaptureRequest:
    """What to capture and how to encode it.  Immutable once accepted."""

    duration_seconds: int = 1
    frame_rate: int = 15
    output_width: int = 640
    format: OutputFormat = OutputFormat.GIF
    region: Optional[Rectangle] = None

    def __post_init__(self) -> None:
        # Accept plain strings for the format ("gif", "mp4", ...)
        if not isinstance(self.format, OutputFormat):
            try:
                object.__setattr__(self, "format", OutputFormat(str(self.format).lower()))
            except ValueError:
                raise ValueError(f"Unsupported format: {self.format}") from None
        if isinstance(self.duration_seconds, bool) or not isinstance(self.duration_seconds, int) \
                or self.duration_seconds <= 0:
            raise ValueError(f"duration_seconds must be a positive integer, got {self.duration_seconds!r}")
        if not MIN_FPS <= self.frame_rate <= MAX_FPS:
            raise ValueError(f"frame_rate must be in [{MIN_FPS}, {MAX_FPS}], got {self.frame_rate}")
        if not MIN_WIDTH <= self.output_width <= MAX_WIDTH:
            raise ValueError(f"output_width must be in [{MIN_WIDTH}, {MAX_WIDTH}], got {self.output_width}")

    def with_region(self, region: Optional[Rectangle]) -> "CaptureRequest":
        return replace(self, region=region)

    def to_dict(self) -> dict:
        d = {
            "duration": self.duration_seconds,
            "fps": self.frame_rate,
            "width": self.output_width,
            "format": self.format.value,
        }
        if self.region is not None:
            d["region"] = self.region.to_dict()
        return d

    @staticmethod
    def from_dict(d: dict) -> "CaptureRequest":
        """Build a request from a dict, filling gaps with the defaults."""
        region = d.get("region")
        return CaptureRequest(
            duration_seconds=int(d.get("duration", DEFAULT_DURATION)),
            frame_rate=int(d.get("fps", DEFAULT_FPS)),
            output_width=int(d.get("width", DEFAULT_WIDTH)),
            format=d.get("format", DEFAULT_FORMAT),
            region=Rectangle.from_dict(region) if region else None,
        )


class Phase(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"
    TRANSCODING = "transcoding"
    CLIPBOARDING = "clipboarding"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.DONE, Phase.FAILED, Phase.CANCELLED)

    @property
    def is_cancellable(self) -> bool:
        return self in (Phase.CAPTURING, Phase.TRANSCODING)


@dataclass
class Job:
    """The single in-flight unit of work.

    The job owns ``temp_path`` (and ``palette_path`` for GIF output)
    from creation until a terminal phase; every exit path deletes them
    unless the temp file was renamed to ``output_path``.
    """

    request: CaptureRequest
    temp_path: str
    output_path: str
    region: Optional[PhysicalRegion] = None
    palette_path: str = ""
    phase: Phase = Phase.IDLE
    progress_percent: int = 0
    cancel_requested: bool = False


@dataclass(frozen=True)
class ClipboardResult:
    """What ended up on the clipboard.

    ``kind`` is ``"image"`` (pixel data), ``"path"`` (the file path as
    text) or ``"none"`` (nothing could be written).
    """

    kind: str
    strategy: str = ""
    error: Optional[CaptureError] = None

    @property
    def degraded(self) -> bool:
        return self.kind != "image"


@dataclass(frozen=True)
class Outcome:
    """Result of a trigger call or of a finished job."""

    ok: bool
    output_path: str = ""
    error: Optional[CaptureError] = None
    clipboard: Optional[ClipboardResult] = None
    phase: Phase = field(default=Phase.IDLE)

    @property
    def message(self) -> str:
        return self.error.message if self.error else ""

    @staticmethod
    def failure(error: CaptureError, phase: Phase = Phase.IDLE) -> "Outcome":
        return Outcome(ok=False, error=error, phase=phase)


DEFAULT_DURATION = 1
DEFAULT_FPS = 15
DEFAULT_WIDTH = 640
DEFAULT_FORMAT = OutputFormat.GIF.value
