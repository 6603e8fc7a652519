"""
Change gate: skip a backup when the reference file has not changed recently.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional


def changed_within(reference_path: str, lookback: timedelta, now: Optional[datetime] = None) -> bool:
    """
    Check whether a file was modified within the lookback window.

    The window is ``[now - lookback, now]`` with both ends inclusive. A
    missing file, or one stamped in the future, counts as unchanged.

    Args:
        reference_path: File whose modification time signals activity
        lookback: Size of the window
        now: Reference time (defaults to current UTC time)

    Returns:
        True if the modification time lies inside the window
    """
    now = now or datetime.now(timezone.utc)

    try:
        mtime = os.stat(reference_path).st_mtime
    except OSError:
        return False

    modified = datetime.fromtimestamp(mtime, tz=timezone.utc)
    return now - lookback <= modified <= now
