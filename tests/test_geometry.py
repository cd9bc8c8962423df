"""Tests for gifcapture.geometry — logical → physical region correction."""

import math

import pytest

from gifcapture.geometry import correct_region
from gifcapture.models import PhysicalRegion, Rectangle


class TestCorrectRegion:
    def test_fractional_scale(self) -> None:
        assert correct_region(Rectangle(100, 100, 301, 201), 1.5) == PhysicalRegion(150, 150, 452, 302)

    def test_identity_at_scale_one(self) -> None:
        assert correct_region(Rectangle(10, 20, 640, 480), 1.0) == PhysicalRegion(10, 20, 640, 480)

    def test_odd_dimensions_bumped_at_scale_one(self) -> None:
        r = correct_region(Rectangle(0, 0, 301, 199), 1.0)
        assert (r.width, r.height) == (302, 200)

    def test_half_rounds_up(self) -> None:
        # 1.25 * 2 = 2.5 → 3; 1.25 * 6 = 7.5 → 8
        r = correct_region(Rectangle(2, 2, 6, 6), 1.25)
        assert (r.x, r.y) == (3, 3)
        assert r.width == 8

    def test_negative_offsets_clamped(self) -> None:
        r = correct_region(Rectangle(-50, -10, 100, 100), 2.0)
        assert (r.x, r.y) == (0, 0)
        assert r.width == 200

    def test_tiny_region_has_minimum_size(self) -> None:
        r = correct_region(Rectangle(0, 0, 1, 1), 1.0)
        assert (r.width, r.height) == (2, 2)

    @pytest.mark.parametrize("scale", [0.5, 0.0, -1.0, math.nan, math.inf])
    def test_invalid_scale(self, scale: float) -> None:
        with pytest.raises(ValueError):
            correct_region(Rectangle(0, 0, 10, 10), scale)

    @pytest.mark.parametrize("scale", [1.0, 1.25, 1.5, 1.75, 2.0, 2.5, 3.0])
    @pytest.mark.parametrize("size", [1, 2, 3, 99, 100, 301, 1023])
    def test_dimensions_even_and_cover_scaled_size(self, scale: float, size: int) -> None:
        r = correct_region(Rectangle(7, 13, size, size + 1), scale)
        for logical, physical in ((size, r.width), (size + 1, r.height)):
            assert physical % 2 == 0
            assert physical >= round(logical * scale)
            assert physical - math.floor(logical * scale + 0.5) <= 1
        assert r.x >= 0 and r.y >= 0
