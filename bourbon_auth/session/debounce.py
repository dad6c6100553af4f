"""
Per-event-type debouncing.

"Last event of a type wins, but not more often than its interval":
events arriving inside the interval after the last processed one are
dropped, not queued. Types without an interval are never debounced.
"""

from typing import Mapping, Optional

DEFAULT_DEBOUNCE_INTERVALS = {
    'USER_UPDATED': 1.0,
    'TOKEN_REFRESHED': 10.0,
}


def should_process(
    event_type: str,
    now: float,
    last_processed: Mapping[str, float],
    intervals: Optional[Mapping[str, float]] = None,
) -> bool:
    """Return True when an event of ``event_type`` at ``now`` should be applied."""
    if intervals is None:
        intervals = DEFAULT_DEBOUNCE_INTERVALS
    interval = intervals.get(event_type)
    if not interval:
        return True
    last = last_processed.get(event_type)
    return last is None or now - last >= interval
