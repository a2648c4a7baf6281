from __future__ import annotations

from typing import Tuple

# (start day, end day, factor); the fuzz delta grows by `factor` per day inside each band
FUZZ_RANGES = (
    (2.5, 7.0, 0.15),
    (7.0, 20.0, 0.1),
    (20.0, float("inf"), 0.05),
)
# Intervals shorter than this are never fuzzed
MIN_FUZZ_INTERVAL = 2.5


def get_fuzz_delta(interval: float) -> float:
    delta = 1.0
    for start, end, factor in FUZZ_RANGES:
        delta += factor * max(min(interval, end) - start, 0.0)
    return delta


def get_fuzz_range(interval: float, elapsed: float, maximum_interval: float,
                   minimum_interval: float) -> Tuple[float, float]:
    """Days `[min, max]` the next interval may be moved to.

    All arguments are in days. The range never leaves
    `[minimum_interval, maximum_interval]` and, when the interval is longer
    than the elapsed time, starts at least a day after `elapsed`.
    """
    delta = get_fuzz_delta(interval)
    interval = min(interval, maximum_interval)
    min_ivl = max(minimum_interval, interval - delta)
    max_ivl = min(maximum_interval, interval + delta)
    if interval > elapsed:
        min_ivl = max(min_ivl, elapsed + 1)
    min_ivl = min(min_ivl, max_ivl)
    return min_ivl, max_ivl
