from datetime import datetime, timezone
from typing import Optional, Tuple


def period_starts(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Start of the current UTC day and month, for "today" / "this month" counters."""
    now = now or datetime.now(timezone.utc)
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return day, day.replace(day=1)
