"""Fetch-window computation for a provider sweep."""

from datetime import datetime, timedelta
from typing import Optional

DEFAULT_LOOKBACK = timedelta(minutes=30)


def compute_since(
    last_checked: Optional[datetime],
    now: datetime,
    lookback: timedelta = DEFAULT_LOOKBACK,
) -> datetime:
    """
    Lower bound for the next fetch.

    The window never reaches further back than ``now - lookback``, even
    when the checkpoint is stale or missing.

    Examples:
        >>> now = datetime(2024, 1, 1, 12, 0)
        >>> compute_since(None, now)
        datetime.datetime(2024, 1, 1, 11, 30)
        >>> compute_since(datetime(2024, 1, 1, 11, 50), now)
        datetime.datetime(2024, 1, 1, 11, 50)
    """
    floor = now - lookback
    if last_checked is None:
        return floor
    return max(last_checked, floor)
