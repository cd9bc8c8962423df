"""Tests for gifcapture.screens."""

from unittest.mock import MagicMock, patch

from gifcapture.screens import get_monitors, primary_scale_factor


def test_scale_factor_is_at_least_one() -> None:
    assert primary_scale_factor() >= 1.0


def test_monitors_skip_virtual_screen() -> None:
    sct = MagicMock()
    sct.monitors = [
        {"left": 0, "top": 0, "width": 3840, "height": 1080},
        {"left": 0, "top": 0, "width": 1920, "height": 1080},
        {"left": 1920, "top": 0, "width": 1920, "height": 1080},
    ]
    with patch("gifcapture.screens.mss.mss") as factory:
        factory.return_value.__enter__.return_value = sct
        monitors = get_monitors()
    assert [m["index"] for m in monitors] == [1, 2]
    assert monitors[1]["left"] == 1920
