"""Display information: scale factor of the primary screen and monitor list."""

import logging
from typing import List

import mss
from PySide6.QtGui import QGuiApplication

logger = logging.getLogger(__name__)


def primary_scale_factor() -> float:
    """Return the primary display's device pixel ratio (1.0 without a GUI app)."""
    app = QGuiApplication.instance()
    screen = app.primaryScreen() if isinstance(app, QGuiApplication) else None
    if screen is None:
        return 1.0
    return max(1.0, float(screen.devicePixelRatio()))


def get_monitors() -> List[dict]:
    """Return the available monitors with dimensions and positions (physical pixels)."""
    with mss.mss() as sct:
        monitors: List[dict] = []
        for i, m in enumerate(sct.monitors):
            if i == 0:  # "all monitors" virtual screen
                continue
            monitors.append(
                {
                    "index": i,
                    "name": f"Display {i}  ({m['width']}×{m['height']})",
                    "width": m["width"],
                    "height": m["height"],
                    "left": m["left"],
                    "top": m["top"],
                }
            )
        return monitors
