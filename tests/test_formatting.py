import csv
import io

import pytest

from core.models import Direction, Severity, Timeframe, VolumeEvent, make_event_id
from utils.filters import filter_events, sort_events
from utils.formatting import (
    CSV_HEADER, events_to_csv, format_alert_notification, format_time_short, format_timestamp
)

# 2023-11-14 22:13:20 UTC
TIME = 1_700_000_000_000


def _event(symbol="BTCUSDT", z=2.5, direction=Direction.UP, severity=Severity.ELEVATED,
           timeframe=Timeframe.M30, time=TIME):
    return VolumeEvent(
        id=make_event_id(symbol, timeframe, time),
        symbol=symbol,
        timeframe=timeframe,
        time=time,
        direction=direction,
        severity=severity,
        z_score=z,
        open_price=100.0,
        close_price=102.0
    )


def test_format_timestamp_honours_timezone():
    assert format_timestamp(TIME) == "2023-11-14 22:13"
    assert format_timestamp(TIME, "Europe/Berlin") == "2023-11-14 23:13"
    assert format_timestamp(TIME, "Not/AZone") == "2023-11-14 22:13"


def test_format_time_short():
    assert format_time_short(TIME) == "22:13 UTC"
    assert format_time_short(TIME, "Europe/Berlin") == "23:13 CET"


def test_alert_message():
    message = format_alert_notification(
        _event(z=4.567, direction=Direction.DOWN, severity=Severity.EXTREME, timeframe=Timeframe.H4)
    )

    assert message.startswith("🚨 EXTREME VOLUME")
    assert "BTCUSDT 4h DOWN" in message
    assert "Z-Score: 4.57" in message
    assert "(+2.00%)" in message
    assert "22:13 UTC" in message


def test_events_to_csv():
    rows = list(csv.reader(io.StringIO(events_to_csv([_event(z=3.0), _event("ETHUSDT", z=2.456)]))))

    assert rows[0] == CSV_HEADER
    assert rows[1] == ["2023-11-14 22:13", "BTCUSDT", "30m", "up", "elevated", "3.00", "100.0", "102.0"]
    assert rows[2][1] == "ETHUSDT"
    assert rows[2][5] == "2.46"


def test_events_to_csv_empty():
    assert events_to_csv([]) == ",".join(CSV_HEADER) + "\n"


def test_filter_events():
    events = [
        _event("BTCUSDT", z=2.1),
        _event("ETHUSDT", z=3.5, direction=Direction.DOWN),
        _event("ETHBTCUSDT", z=2.9),
    ]

    assert [e.symbol for e in filter_events(events, symbol="eth")] == ["ETHUSDT", "ETHBTCUSDT"]
    assert [e.symbol for e in filter_events(events, min_z_score=2.9)] == ["ETHUSDT", "ETHBTCUSDT"]
    assert [e.symbol for e in filter_events(events, direction=Direction.DOWN)] == ["ETHUSDT"]
    assert filter_events(events) == events


def test_sort_events():
    events = [
        _event("BTCUSDT", z=2.1, time=TIME),
        _event("ETHUSDT", z=3.5, time=TIME + 1),
        _event("ADAUSDT", z=2.9, time=TIME + 2),
    ]

    assert [e.symbol for e in sort_events(events)] == ["ADAUSDT", "ETHUSDT", "BTCUSDT"]
    assert [e.symbol for e in sort_events(events, "z_score")] == ["ETHUSDT", "ADAUSDT", "BTCUSDT"]
    assert [e.symbol for e in sort_events(events, "symbol", descending=False)] == [
        "ADAUSDT", "BTCUSDT", "ETHUSDT"
    ]

    with pytest.raises(ValueError):
        sort_events(events, "id")
