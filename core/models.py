"""
Pydantic models for Volume Radar data structures.
"""
from enum import Enum
from typing import Dict, List, Optional, Protocol
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Timeframe(str, Enum):
    """Candle timeframe enumeration."""
    M5 = "5m"
    M30 = "30m"
    H4 = "240"  # v1 stored and keyed events by "240"; kept so old event ids still dedup

    @property
    def interval(self) -> str:
        """Bybit kline interval for this timeframe."""
        return {"5m": "5", "30m": "30", "240": "240"}[self.value]

    @property
    def label(self) -> str:
        return {"5m": "5m", "30m": "30m", "240": "4h"}[self.value]


class RankingMetric(str, Enum):
    """Metric used to rank the tradable universe."""
    VOLUME = "volume"
    OPEN_INTEREST = "openInterest"


class Direction(str, Enum):
    """Bar direction, derived from close vs open."""
    UP = "up"
    DOWN = "down"


class Severity(str, Enum):
    """Anomaly severity tier, derived from z-score magnitude."""
    ELEVATED = "elevated"
    EXTREME = "extreme"


class ScannerState(str, Enum):
    """Lifecycle states of the volume scanner."""
    IDLE = "idle"
    BACKFILLING = "backfilling"
    LIVE = "live"


class Candle(BaseModel):
    """One OHLCV bar. `time` is the bar open time in milliseconds."""
    model_config = ConfigDict(frozen=True)

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class SymbolUniverseEntry(BaseModel):
    """Tracked instrument with its per-timeframe candle cache."""
    symbol: str
    price: float
    volume24h: float  # USD turnover
    open_interest: Optional[float] = None
    change24h: float
    candles: Dict[Timeframe, List[Candle]] = Field(default_factory=dict)


def make_event_id(symbol: str, timeframe: Timeframe, time: int) -> str:
    """Deterministic event id, the dedup key of the event store."""
    return f"{symbol}-{timeframe.value}-{time}"


class VolumeEvent(BaseModel):
    """Volume anomaly detected on a single bar."""
    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    timeframe: Timeframe
    time: int  # candle OPEN time
    direction: Direction
    severity: Severity
    z_score: float  # rounded to 2 decimals
    open_price: float
    close_price: float


SETTINGS_SCHEMA_VERSION = 2


def is_absolute_http_url(value: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class ScanSettings(BaseModel):
    """User-editable scan settings, persisted with a schema version."""
    schema_version: int = SETTINGS_SCHEMA_VERSION
    api_endpoint: str = "https://api.bybit.com"
    universe_size: int = Field(default=25, ge=1, le=50)
    ranking_metric: RankingMetric = RankingMetric.VOLUME
    min_volume_ratio: float = Field(default=0.0, ge=0.0)  # 0 = disabled
    min_z_score: float = 2.0
    alert_sound_enabled: bool = True
    display_timezone: str = "UTC"
    timeframes: List[Timeframe] = Field(default_factory=lambda: [Timeframe.M30, Timeframe.H4])

    @field_validator("api_endpoint")
    @classmethod
    def _require_absolute_endpoint(cls, value: str) -> str:
        if not is_absolute_http_url(value):
            raise ValueError("api_endpoint must be an absolute http(s) URL")
        return value

    @field_validator("timeframes")
    @classmethod
    def _require_timeframes(cls, value: List[Timeframe]) -> List[Timeframe]:
        if not value:
            raise ValueError("at least one timeframe is required")
        return list(dict.fromkeys(value))


class ReportConfig(BaseModel):
    """Parameters of a historical volume report."""
    symbols: List[str] = Field(min_length=1)
    timeframes: List[Timeframe] = Field(default_factory=lambda: [Timeframe.H4], min_length=1)
    lookback: int = Field(default=500, ge=100, le=1000)
    min_z_score: float = 2.0


REPORT_SCHEMA_VERSION = 2


class ReportState(BaseModel):
    """Last generated report, persisted between runs."""
    schema_version: int = REPORT_SCHEMA_VERSION
    config: ReportConfig
    results: List[VolumeEvent] = Field(default_factory=list)
    last_run: int  # ms


class CandleSource(Protocol):
    """Market data operations consumed by the scanner and the reporter."""

    async def fetch_universe(
        self, ranking_metric: RankingMetric, max_count: int
    ) -> List[SymbolUniverseEntry]:
        ...

    async def fetch_candles(
        self, symbol: str, timeframe: Timeframe, limit: int
    ) -> List[Candle]:
        ...
