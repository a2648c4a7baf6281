from __future__ import annotations

import time
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

DAY_SECONDS = 86400


def now_ts() -> int:
    return int(time.time())


def to_days(seconds: float) -> float:
    """Fractional days in a span of seconds."""
    return seconds / DAY_SECONDS


def local_date(ts: int) -> date:
    return datetime.fromtimestamp(ts).date()


def local_day_bounds(ts: Optional[int] = None) -> Tuple[int, int]:
    """First and last second of the local day containing `ts`."""
    day = local_date(now_ts() if ts is None else ts)
    start = datetime.combine(day, datetime.min.time())
    end = start + timedelta(hours=23, minutes=59, seconds=59)
    return int(start.timestamp()), int(end.timestamp())
