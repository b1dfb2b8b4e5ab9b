from datetime import datetime
from typing import Optional

# (upper bound in seconds, unit size in seconds, unit name)
UNITS = [
    (3600, 60, "minutes"),
    (86400, 3600, "hours"),
]


def _span(seconds: int) -> str:
    for bound, size, name in UNITS:
        if seconds < bound:
            return f"{(seconds + size // 2) // size} {name}"
    return f"{(seconds + 43200) // 86400} days"


def relative_time(dt: datetime, now: Optional[datetime] = None) -> str:
    """Describe ``dt`` relative to ``now``, e.g. ``in 6 days`` or ``3 hours ago``."""
    if now is None:
        now = datetime.now()
    seconds = int((dt - now).total_seconds())

    if abs(seconds) < 120:
        return "<2 minutes ago" if seconds < 0 else "<2 minutes"
    if seconds < 0:
        return f"{_span(-seconds)} ago"

    span = _span(seconds)
    if span == "1 days":
        return "tomorrow"
    return f"in {span}"
