import time
from datetime import datetime, timezone
from typing import Optional, Tuple

DAY_MS = 24 * 60 * 60 * 1000


def utc_now_ms() -> int:
    return int(time.time() * 1000)


def date_str(now_ms: int) -> str:
    """UTC calendar date (YYYY-MM-DD) containing now_ms."""
    return datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def day_bounds_ms(now_ms: int) -> Tuple[int, int]:
    start = (now_ms // DAY_MS) * DAY_MS
    return start, start + DAY_MS


def iso_ts(ts_ms: Optional[int]) -> Optional[str]:
    if ts_ms is None:
        return None
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")
