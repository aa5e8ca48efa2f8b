"""Timestamp utilities"""

import time
from datetime import datetime, timezone
from typing import Optional

# Venue transactTime, e.g. "20240315-14:30:00.123-0300"
_VENUE_TIME_FORMAT = "%Y%m%d-%H:%M:%S.%f%z"


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds"""
    return int(time.time() * 1000)


def to_iso(epoch_ms: Optional[int]) -> Optional[str]:
    """Epoch ms to ISO-8601 UTC string"""
    if epoch_ms is None:
        return None
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).isoformat()


def parse_venue_timestamp(value: str) -> Optional[int]:
    """Parse a venue transactTime into epoch ms; None when unparsable"""
    try:
        return int(datetime.strptime(value.strip(), _VENUE_TIME_FORMAT).timestamp() * 1000)
    except (ValueError, AttributeError):
        return None


def venue_trading_date(value: str) -> Optional[str]:
    """YYYY-MM-DD trading date from a venue transactTime (local venue date)"""
    if not value or len(value) < 8 or not value[:8].isdigit():
        return None
    return f"{value[0:4]}-{value[4:6]}-{value[6:8]}"
