"""Build ffmpeg argument lists for the capture and transcode phases.

Nothing in here executes a process; every function returns the
argument list (without the executable) so callers can hand it to a
``ProcessSupervisor`` and tests can inspect it without ffmpeg.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, replace
from typing import List, Mapping, Optional, Sequence

from .models import CaptureRequest, OutputFormat, PhysicalRegion

__all__ = [
    "PlatformCaptureSpec",
    "PLATFORM_SPECS",
    "current_platform_spec",
    "TranscodeStage",
    "build_capture_args",
    "build_transcode_chain",
    "build_frame_extract_args",
]


@dataclass(frozen=True)
class PlatformCaptureSpec:
    """How a platform's ffmpeg screen-capture device is driven.

    *accepts_offset* — the device can capture a sub-rectangle itself;
    when False the full screen is grabbed and cropped with a filter.
    *offset_in_device* — the offset is part of the input selector
    (x11grab ``:0.0+x,y``) rather than separate options (gdigrab).
    """

    name: str
    input_format: str
    device: str
    accepts_offset: bool
    offset_in_device: bool = False
    region_args: tuple = ()

    def device_for(self, region: Optional[PhysicalRegion]) -> str:
        if region is not None and self.accepts_offset and self.offset_in_device:
            return f"{self.device}+{region.x},{region.y}"
        return self.device


PLATFORM_SPECS: Mapping[str, PlatformCaptureSpec] = {
    "windows": PlatformCaptureSpec(
        "windows", "gdigrab", "desktop",
        accepts_offset=True,
        region_args=("-show_region", "1"),
    ),
    "macos": PlatformCaptureSpec(
        "macos", "avfoundation", "1:none",
        accepts_offset=False,
    ),
    "linux": PlatformCaptureSpec(
        "linux", "x11grab", ":0.0",
        accepts_offset=True,
        offset_in_device=True,
    ),
}


def current_platform_spec() -> PlatformCaptureSpec:
    """Return the capture device description for the running OS (the X display comes from ``$DISPLAY``)."""
    if sys.platform == "win32":
        return PLATFORM_SPECS["windows"]
    if sys.platform == "darwin":
        return PLATFORM_SPECS["macos"]
    spec = PLATFORM_SPECS["linux"]
    display = os.environ.get("DISPLAY")
    return replace(spec, device=display) if display else spec


# Capture settings: fast, near-lossless H.264 so the transcode has good input
_CAPTURE_ENCODER_ARGS = [
    "-c:v", "libx264",
    "-preset", "ultrafast",
    "-crf", "18",
    "-pix_fmt", "yuv420p",
]

# WebM: constant-quality VP9
_WEBM_ENCODER_ARGS = ["-c:v", "libvpx-vp9", "-crf", "30", "-b:v", "0"]


def build_capture_args(
    spec: PlatformCaptureSpec,
    request: CaptureRequest,
    region: Optional[PhysicalRegion],
    output_path: str,
) -> List[str]:
    """Arguments that record *request* into the native container at *output_path*."""
    args = ["-hide_banner", "-f", spec.input_format]
    if region is not None and spec.accepts_offset:
        if not spec.offset_in_device:
            args += ["-offset_x", str(region.x), "-offset_y", str(region.y)]
        args += ["-video_size", region.video_size]
        args += list(spec.region_args)
    args += ["-framerate", str(request.frame_rate)]
    args += ["-i", spec.device_for(region)]
    if region is not None and not spec.accepts_offset:
        args += ["-vf", f"crop={region.width}:{region.height}:{region.x}:{region.y}"]
    args += ["-t", str(request.duration_seconds)]
    args += _CAPTURE_ENCODER_ARGS
    args += ["-y", output_path]
    return args


@dataclass(frozen=True)
class TranscodeStage:
    """One ffmpeg run of the transcode chain.

    *reports_progress* marks the stage whose ``time=`` markers drive the
    transcode half of the progress bar.
    """

    name: str
    args: Sequence[str]
    reports_progress: bool = True


def _scale_filter(width: int, fps: int) -> str:
    return f"fps={fps},scale={width}:-1:flags=lanczos"


def build_transcode_chain(
    fmt: OutputFormat,
    input_path: str,
    output_path: str,
    width: int,
    fps: int,
    palette_path: str = "",
) -> List[TranscodeStage]:
    """Return the stages that turn the captured container into *fmt*.

    GIF uses two passes (``palettegen`` then ``paletteuse``) for accurate
    colours; the first must succeed before the second runs.  WebM is a
    single VP9 pass.  MP4 needs no stage: the capture is renamed.
    """
    fmt = OutputFormat(fmt)
    if fmt is OutputFormat.MP4:
        return []

    if fmt is OutputFormat.GIF:
        if not palette_path:
            raise ValueError("GIF output needs a palette path")
        vf = _scale_filter(width, fps)
        palette = TranscodeStage(
            "palette",
            ["-hide_banner", "-i", input_path, "-vf", f"{vf},palettegen", "-y", palette_path],
            reports_progress=False,
        )
        gif = TranscodeStage(
            "gif",
            [
                "-hide_banner",
                "-i", input_path,
                "-i", palette_path,
                "-filter_complex", f"{vf}[x];[x][1:v]paletteuse",
                "-loop", "0",
                "-y", output_path,
            ],
        )
        return [palette, gif]

    # -2 keeps the height even for yuv420p
    webm = TranscodeStage(
        "webm",
        ["-hide_banner", "-i", input_path]
        + _WEBM_ENCODER_ARGS
        + ["-vf", f"scale={width}:-2", "-y", output_path],
    )
    return [webm]


def build_frame_extract_args(input_path: str, output_path: str) -> List[str]:
    """Arguments that write the first frame of *input_path* as a still image."""
    return ["-hide_banner", "-i", input_path, "-frames:v", "1", "-y", output_path]
