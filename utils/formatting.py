"""
Formatting utilities for volume events: timestamps, alert messages and CSV export.
"""
import csv
import io
from datetime import datetime, timezone
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.models import Direction, Severity, VolumeEvent

CSV_HEADER = [
    "timestamp", "symbol", "timeframe", "direction",
    "severity", "z_score", "open_price", "close_price",
]


def _zone(tz_name: str):
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def format_timestamp(timestamp_ms: int, tz_name: str = "UTC") -> str:
    """Render a millisecond timestamp as 'YYYY-MM-DD HH:MM' in the given timezone."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.astimezone(_zone(tz_name)).strftime("%Y-%m-%d %H:%M")


def format_time_short(timestamp_ms: int, tz_name: str = "UTC") -> str:
    """'HH:MM TZ', e.g. '14:30 UTC'."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).astimezone(_zone(tz_name))
    return f"{moment.strftime('%H:%M')} {moment.tzname() or tz_name}"


def format_alert_notification(event: VolumeEvent, tz_name: str = "UTC") -> str:
    """
    Format an anomaly into a Telegram alert message.

    Args:
        event: The volume event
        tz_name: Display timezone

    Returns:
        Formatted message string with emojis
    """
    direction_emoji = "🟩" if event.direction == Direction.UP else "🟥"
    header = "🚨 EXTREME VOLUME" if event.severity == Severity.EXTREME else "📈 VOLUME SPIKE"

    change_pct = 0.0
    if event.open_price:
        change_pct = (event.close_price - event.open_price) / event.open_price * 100

    lines = [
        header,
        "",
        f"{direction_emoji} {event.symbol} {event.timeframe.label} {event.direction.value.upper()}",
        f"📊 Z-Score: {event.z_score:.2f}",
        f"💰 Open: {event.open_price:,.4f} → Close: {event.close_price:,.4f} ({change_pct:+.2f}%)",
        f"🕒 {format_time_short(event.time, tz_name)}",
    ]
    return "\n".join(lines)


def events_to_csv(events: Iterable[VolumeEvent], tz_name: str = "UTC") -> str:
    """Export events as CSV. Field order and 2-decimal z-scores are fixed."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for event in events:
        writer.writerow([
            format_timestamp(event.time, tz_name),
            event.symbol,
            event.timeframe.label,
            event.direction.value,
            event.severity.value,
            f"{event.z_score:.2f}",
            event.open_price,
            event.close_price,
        ])
    return buffer.getvalue()
