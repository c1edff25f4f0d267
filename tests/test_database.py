import asyncio

from core.database import REPORT_STATE_KEY, SETTINGS_KEY, Database
from core.models import (
    Direction, RankingMetric, ReportConfig, ReportState, ScanSettings, Severity,
    Timeframe, VolumeEvent
)


def _with_db(scenario):
    async def run():
        db = Database(":memory:")
        await db.connect()
        try:
            return await scenario(db)
        finally:
            await db.close()
    return asyncio.run(run())


def test_missing_settings_return_defaults():
    defaults = ScanSettings(universe_size=10)

    async def scenario(db):
        return await db.get_settings(defaults)

    assert _with_db(scenario) == defaults


def test_settings_round_trip():
    settings = ScanSettings(
        universe_size=12,
        ranking_metric=RankingMetric.OPEN_INTEREST,
        timeframes=[Timeframe.M5]
    )

    async def scenario(db):
        await db.save_settings(settings)
        return await db.get_settings()

    assert _with_db(scenario) == settings


def test_v1_settings_are_migrated_and_rewritten():
    async def scenario(db):
        await db.set_value(SETTINGS_KEY, {"symbolCount": 7, "minZScore": 2.5})
        settings = await db.get_settings()
        stored = await db.get_value(SETTINGS_KEY)
        return settings, stored

    settings, stored = _with_db(scenario)

    assert settings.universe_size == 7
    assert settings.min_z_score == 2.5
    assert settings.timeframes == [Timeframe.M30, Timeframe.H4]
    assert stored["schema_version"] == 2
    assert stored["universe_size"] == 7


def test_invalid_settings_fall_back_to_defaults():
    async def scenario(db):
        await db.set_value(SETTINGS_KEY, {"schema_version": 2, "universe_size": 500})
        return await db.get_settings()

    assert _with_db(scenario) == ScanSettings()


def test_corrupt_json_is_ignored():
    async def scenario(db):
        await db.conn.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
            (SETTINGS_KEY, "{not json", "2024-01-01T00:00:00")
        )
        await db.conn.commit()
        return await db.get_value(SETTINGS_KEY)

    assert _with_db(scenario) is None


def test_report_state_round_trip():
    event = VolumeEvent(
        id="BTCUSDT-240-1700000000000",
        symbol="BTCUSDT",
        timeframe=Timeframe.H4,
        time=1700000000000,
        direction=Direction.UP,
        severity=Severity.ELEVATED,
        z_score=2.34,
        open_price=1.0,
        close_price=2.0
    )
    state = ReportState(config=ReportConfig(symbols=["BTCUSDT"]), results=[event], last_run=42)

    async def scenario(db):
        assert await db.get_report_state() is None
        await db.save_report_state(state)
        return await db.get_report_state()

    assert _with_db(scenario) == state


def test_v1_report_state_is_migrated():
    async def scenario(db):
        await db.set_value(REPORT_STATE_KEY, {
            "config": {"symbols": ["ETHUSDT"], "timeframe": "30m"},
            "results": [],
            "lastRun": 5
        })
        return await db.get_report_state()

    state = _with_db(scenario)

    assert state.config.timeframes == [Timeframe.M30]
    assert state.last_run == 5


def test_v1_default_settings_load_with_absolute_endpoint_and_no_ratio_gate():
    defaults = ScanSettings(api_endpoint="https://api.bybit.com")

    async def scenario(db):
        await db.set_value(SETTINGS_KEY, {
            "apiEndpoint": "/bybit_api",
            "symbolCount": 25,
            "sortCriteria": "volume",
            "minVolumeRatio": 2.0,
            "minZScore": 2.0,
            "soundEnabled": True
        })
        return await db.get_settings(defaults)

    settings = _with_db(scenario)

    assert settings.api_endpoint == "https://api.bybit.com"
    assert settings.min_volume_ratio == 0.0
    assert settings.schema_version == 2
