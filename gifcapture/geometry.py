"""Map logical selection rectangles to physical capture regions."""

import math

from .models import PhysicalRegion, Rectangle

# Smallest even dimension an encoder will take
_MIN_DIMENSION = 2


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _even(value: int) -> int:
    """Round an odd dimension up to the next even number."""
    value = max(value, _MIN_DIMENSION)
    return value + (value % 2)


def correct_region(rect: Rectangle, scale_factor: float) -> PhysicalRegion:
    """Scale *rect* by the display *scale_factor* and fix parity.

    Every coordinate is multiplied by *scale_factor* and rounded half-up;
    odd width/height are then bumped by one.  Offsets left of / above the
    primary display are clamped to 0.

    >>> correct_region(Rectangle(100, 100, 301, 201), 1.5)
    PhysicalRegion(x=150, y=150, width=452, height=302)
    """
    if not math.isfinite(scale_factor) or scale_factor < 1.0:
        raise ValueError(f"scale_factor must be >= 1, got {scale_factor}")

    return PhysicalRegion(
        x=max(0, _round_half_up(rect.x * scale_factor)),
        y=max(0, _round_half_up(rect.y * scale_factor)),
        width=_even(_round_half_up(rect.width * scale_factor)),
        height=_even(_round_half_up(rect.height * scale_factor)),
    )
