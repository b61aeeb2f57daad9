import math
from typing import Tuple


def round_half_up(value: float) -> int:
    # 2.5 -> 3, -2.5 -> -3 (the builtin round() would give 2 and -2)
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def plan_dimensions(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Fit (width, height) inside the (max_width, max_height) box.

    The aspect ratio is kept and the result is never larger than the source.
    A source that already fits comes back unchanged.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"source dimensions must be positive, got {width}x{height}")
    if max_width <= 0 or max_height <= 0:
        raise ValueError(f"bounding box must be positive, got {max_width}x{max_height}")

    ratio = min(max_width / width, max_height / height, 1.0)
    return (
        max(1, round_half_up(width * ratio)),
        max(1, round_half_up(height * ratio)),
    )
