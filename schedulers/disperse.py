"""Spread the due dates of sibling cards as far apart as their fuzz ranges allow."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple, TypeVar

from models import Card, ReviewLog
from utils.dates import DAY_SECONDS, local_date, now_ts
from .fuzz import get_fuzz_range
from .memory import FsrsParameters

logger = logging.getLogger(__name__)

T = TypeVar("T")
Window = Tuple[int, int]


def can_place_points(points: Sequence[Window], min_gap: int) -> Optional[List[int]]:
    """Greedily place each point at its earliest spot `min_gap` after the previous one.

    `points` must be sorted by window end.
    """
    if not points:
        return []
    last = points[0][0]
    arrangement = [last]
    for start, end in points[1:]:
        candidate = last + min_gap
        if candidate > end:
            return None
        last = max(candidate, start)
        arrangement.append(last)
    return arrangement


def find_max_min_gap(points: Sequence[Window], delta: int,
                     initial_gap: int = 0) -> Optional[Tuple[int, List[int]]]:
    """Binary search for the largest gap the greedy placement still satisfies."""
    if not points:
        return None
    points = sorted(points, key=lambda window: window[1])
    low, high = initial_gap, points[-1][1] - points[0][0]
    best: Optional[Tuple[int, List[int]]] = None
    while low <= high:
        mid = (low + high) // 2
        arrangement = can_place_points(points, mid)
        if arrangement is not None:
            best = (mid, arrangement)
            low = mid + delta
        else:
            high = mid - delta
    return best


def maximize_siblings_due_gap(data: Sequence[Tuple[T, Window]], delta: int = DAY_SECONDS,
                              initial_gap: int = 0) -> Optional[Tuple[List[Tuple[T, int]], int]]:
    """Place every item inside its window with the largest possible minimum gap.

    After the gap is fixed, points are swept right to left and pulled as
    late as the next point and their window allow. Returns None when the
    windows cannot all be honoured.

    >>> maximize_siblings_due_gap([("a", (0, 0)), ("b", (0, 2)), ("c", (0, 2))], delta=1)
    ([('a', 0), ('b', 1), ('c', 2)], 1)
    """
    ordered = sorted(data, key=lambda item: item[1][1])
    solution = find_max_min_gap([window for _, window in ordered], delta, initial_gap)
    if solution is None:
        return None
    gap, arrangement = solution
    positions = list(arrangement)
    for index in range(len(ordered) - 1, -1, -1):
        right = ordered[index][1][1]
        if index < len(ordered) - 1:
            right = min(right, positions[index + 1] - gap)
        positions[index] = right
    return [(item, position) for (item, _), position in zip(ordered, positions)], gap


def get_due_range(card: Card, review_logs: Sequence[ReviewLog], parameters: FsrsParameters,
                  minimum_interval: float, maximum_interval: float, now: int) -> Window:
    """Window of acceptable due dates for a reviewed card, never in the past.

    Intervals are in days, timestamps in seconds. `review_logs` are oldest
    first.
    """
    if not review_logs:
        return card.due, card.due
    latest = review_logs[-1]
    elapsed = 0.0
    if len(review_logs) >= 2:
        elapsed = (latest.reviewed_at - review_logs[-2].reviewed_at) / DAY_SECONDS
    next_interval = min(
        max(round(parameters.raw_interval(card.stability, card.desired_retention)), 1),
        maximum_interval,
    )
    if next_interval <= minimum_interval:
        return card.due, card.due

    low, high = get_fuzz_range(next_interval, elapsed, maximum_interval, minimum_interval)
    if card.due > latest.reviewed_at + high * DAY_SECONDS:
        # Already beyond the fuzz range: keep it around its current interval instead
        current = (card.due - latest.reviewed_at) / DAY_SECONDS
        low, high = get_fuzz_range(current, elapsed, current, minimum_interval)

    earliest = latest.reviewed_at + int(low * DAY_SECONDS)
    latest_due = latest.reviewed_at + int(high * DAY_SECONDS)
    if local_date(card.due) >= local_date(now):
        return max(earliest, now), max(latest_due, now)
    if latest_due > now:
        return now, latest_due
    return card.due, card.due


def disperse_siblings(siblings: Sequence[Tuple[Card, List[ReviewLog]]],
                      parameters: FsrsParameters, minimum_interval: float,
                      maximum_interval: float,
                      now: Optional[int] = None) -> Optional[List[Tuple[int, int]]]:
    """New `(card_id, due)` pairs for the siblings of one note, or None when they are too close."""
    now = now_ts() if now is None else now
    windows: List[Tuple[Optional[int], Window]] = []
    reviewed_ats = []
    for card, logs in siblings:
        window = get_due_range(card, logs, parameters, minimum_interval, maximum_interval, now)
        windows.append((card.id, window))
        if logs:
            reviewed_ats.append(logs[-1].reviewed_at)
        logger.debug("Card %s may be due within %s", card.id, window)
    if reviewed_ats:
        # Anchor pinned at the latest review so no sibling lands on the same day
        anchor = max(reviewed_ats)
        windows.append((None, (anchor, anchor)))

    solution = maximize_siblings_due_gap(windows)
    if solution is None:
        return None
    placed, _ = solution
    return [(card_id, due) for card_id, due in placed if card_id is not None]
