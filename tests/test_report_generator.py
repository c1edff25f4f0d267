import asyncio

from conftest import FakeCandleSource, STEP_MS, START_TIME, make_candles, spiky_volumes
from core.models import ReportConfig, Timeframe
from core import report_generator as report_module
from core.report_generator import generate_report


def _series():
    return {
        ("AAAUSDT", Timeframe.M30): make_candles(spiky_volumes(120, [50])),
        ("AAAUSDT", Timeframe.H4): make_candles(spiky_volumes(120, [80])),
        ("BBBUSDT", Timeframe.M30): make_candles(spiky_volumes(120, [100])),
        ("BBBUSDT", Timeframe.H4): make_candles(spiky_volumes(120, [110])),
    }


def test_report_skips_failed_tasks_and_reports_progress():
    source = FakeCandleSource(series=_series(), failures=[("BBBUSDT", Timeframe.H4)])
    config = ReportConfig(
        symbols=["AAAUSDT", "BBBUSDT"],
        timeframes=[Timeframe.M30, Timeframe.H4],
        lookback=120
    )
    progress = []

    events = asyncio.run(generate_report(
        source, config, progress_callback=progress.append, batch_size=2, batch_delay=0
    ))

    assert progress == ["Scanned 2 / 4", "Scanned 4 / 4"]
    assert len(source.candle_calls) == 4
    assert {(e.symbol, e.timeframe) for e in events} == {
        ("AAAUSDT", Timeframe.M30),
        ("AAAUSDT", Timeframe.H4),
        ("BBBUSDT", Timeframe.M30),
    }
    assert [e.time for e in events] == [
        START_TIME + 100 * STEP_MS,
        START_TIME + 80 * STEP_MS,
        START_TIME + 50 * STEP_MS,
    ]


def test_report_fetches_lookback_bars():
    source = FakeCandleSource(series=_series())
    config = ReportConfig(symbols=["AAAUSDT"], timeframes=[Timeframe.H4], lookback=100)

    events = asyncio.run(generate_report(source, config, batch_delay=0))

    assert source.candle_calls == [("AAAUSDT", Timeframe.H4, 100)]
    # Last 100 of 120 bars: the spike at 80 lands on index 60, still scorable
    assert [e.time for e in events] == [START_TIME + 80 * STEP_MS]


def test_report_applies_min_z_score():
    source = FakeCandleSource(series=_series())
    config = ReportConfig(symbols=["AAAUSDT"], timeframes=[Timeframe.M30], lookback=120, min_z_score=1000.0)

    assert asyncio.run(generate_report(source, config, batch_delay=0)) == []


def test_report_task_order_is_symbol_major():
    source = FakeCandleSource(series=_series())
    config = ReportConfig(
        symbols=["AAAUSDT", "BBBUSDT"],
        timeframes=[Timeframe.M30, Timeframe.H4],
        lookback=120
    )

    asyncio.run(generate_report(source, config, batch_size=1, batch_delay=0))

    assert [call[:2] for call in source.candle_calls] == [
        ("AAAUSDT", Timeframe.M30),
        ("AAAUSDT", Timeframe.H4),
        ("BBBUSDT", Timeframe.M30),
        ("BBBUSDT", Timeframe.H4),
    ]


def test_report_does_not_touch_live_state():
    source = FakeCandleSource(series=_series())
    config = ReportConfig(symbols=["AAAUSDT"], lookback=100)
    progress = []

    first = asyncio.run(generate_report(source, config, progress.append, batch_delay=0))
    second = asyncio.run(generate_report(source, config, progress.append, batch_delay=0))

    assert first == second
    assert progress == ["Scanned 1 / 1", "Scanned 1 / 1"]
    assert source.universe_calls == []


def test_report_pauses_between_batches_only(monkeypatch):
    source = FakeCandleSource(series=_series())
    config = ReportConfig(
        symbols=["AAAUSDT", "BBBUSDT"],
        timeframes=[Timeframe.M30, Timeframe.H4],
        lookback=120
    )
    delays = []
    real_sleep = asyncio.sleep

    async def recording_sleep(delay, *args, **kwargs):
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(report_module.asyncio, "sleep", recording_sleep)

    asyncio.run(generate_report(source, config, batch_size=3, batch_delay=0.2))

    # 4 tasks in batches of 3 -> 2 batches, 1 pause
    assert [d for d in delays if d == 0.2] == [0.2]
