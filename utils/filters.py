"""
Filtering and sorting utilities for volume event result sets.
"""
from typing import List, Optional, Sequence

from core.models import Direction, VolumeEvent


SORTABLE_COLUMNS = {
    "time", "symbol", "timeframe", "direction", "severity",
    "z_score", "open_price", "close_price",
}


def filter_events(
    events: Sequence[VolumeEvent],
    symbol: Optional[str] = None,
    min_z_score: Optional[float] = None,
    direction: Optional[Direction] = None
) -> List[VolumeEvent]:
    """
    Filter events the way the report view does.

    Args:
        events: Events to filter
        symbol: Case-insensitive substring of the symbol
        min_z_score: Keep events with z-score >= this value
        direction: Keep only this direction

    Returns:
        Matching events, original order preserved
    """
    result = list(events)

    if symbol:
        needle = symbol.upper()
        result = [e for e in result if needle in e.symbol.upper()]

    if min_z_score is not None:
        result = [e for e in result if e.z_score >= min_z_score]

    if direction is not None:
        result = [e for e in result if e.direction == direction]

    return result


def sort_events(
    events: Sequence[VolumeEvent],
    column: str = "time",
    descending: bool = True
) -> List[VolumeEvent]:
    """Sort events by any event column."""
    if column not in SORTABLE_COLUMNS:
        raise ValueError(f"Cannot sort by {column!r}")

    def key(event: VolumeEvent):
        value = getattr(event, column)
        # Enums compare by their value
        return getattr(value, "value", value)

    return sorted(events, key=key, reverse=descending)
