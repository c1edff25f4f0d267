"""
Shared fixtures for tests.
"""
import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

import pytest

from core.models import Candle, RankingMetric, SymbolUniverseEntry, Timeframe

START_TIME = 1_700_000_000_000
STEP_MS = 30 * 60 * 1000


def make_candles(
    volumes: Iterable[float],
    start_time: int = START_TIME,
    step_ms: int = STEP_MS,
    down_at: Iterable[int] = ()
) -> List[Candle]:
    """Build a candle series; bars listed in `down_at` close below their open."""
    down = set(down_at)
    candles = []
    for i, volume in enumerate(volumes):
        close = 99.0 if i in down else 101.0
        candles.append(Candle(
            time=start_time + i * step_ms,
            open=100.0,
            high=102.0,
            low=98.0,
            close=close,
            volume=float(volume)
        ))
    return candles


def quiet_volumes(count: int) -> List[float]:
    """Alternating 100/110 volumes: small, non-zero dispersion."""
    return [100.0 if i % 2 == 0 else 110.0 for i in range(count)]


def spiky_volumes(count: int, spikes: Iterable[int], spike: float = 1000.0) -> List[float]:
    volumes = quiet_volumes(count)
    for index in spikes:
        volumes[index] = spike
    return volumes


def make_entry(symbol: str, volume24h: float = 1_000_000.0) -> SymbolUniverseEntry:
    return SymbolUniverseEntry(
        symbol=symbol,
        price=100.0,
        volume24h=volume24h,
        open_interest=volume24h / 2,
        change24h=0.01
    )


class FakeCandleSource:
    """In-memory candle source recording every call."""

    def __init__(
        self,
        series: Optional[Dict[Tuple[str, Timeframe], List[Candle]]] = None,
        universe: Optional[List[SymbolUniverseEntry]] = None,
        failures: Iterable[Tuple[str, Timeframe]] = ()
    ):
        self.series = series or {}
        self.universe = universe or []
        self.failures = set(failures)
        self.universe_error: Optional[Exception] = None
        self.candle_calls: List[Tuple[str, Timeframe, int]] = []
        self.universe_calls: List[Tuple[RankingMetric, int]] = []
        self.gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_universe(self, ranking_metric, max_count):
        self.universe_calls.append((ranking_metric, max_count))
        if self.universe_error:
            raise self.universe_error
        return [entry.model_copy(deep=True) for entry in self.universe[:max_count]]

    async def fetch_candles(self, symbol, timeframe, limit):
        self.candle_calls.append((symbol, timeframe, limit))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.gate is not None:
                await self.gate.wait()
            if (symbol, timeframe) in self.failures:
                raise ConnectionError(f"boom {symbol} {timeframe.value}")
            return list(self.series.get((symbol, timeframe), []))[-limit:]
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_source():
    return FakeCandleSource()
