from typing import Tuple


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def paging(limit: int, offset: int, max_limit: int) -> Tuple[int, int]:
    """Out-of-range values are pulled back into range rather than rejected."""
    return clamp(limit, 1, max_limit), max(0, offset)
