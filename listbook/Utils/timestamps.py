# timestamps.py
# Description: UTC timestamp helpers used for last-write-wins comparisons
#
# Imports
from datetime import datetime, timezone
from typing import Any, Optional
#
########################################################################################################################
#
# Functions:

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now_iso(now: Optional[datetime] = None) -> str:
    """Returns the current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'


def parse_timestamp(value: Any) -> datetime:
    """
    Parses an ISO-8601 timestamp into an aware UTC datetime.

    Missing or unparsable values map to the Unix epoch so that they always lose
    a last-write-wins comparison against a real timestamp.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return EPOCH
    else:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

#
# End of timestamps.py
########################################################################################################################
