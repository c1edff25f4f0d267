"""
Volume Anomaly Detector

Turns candle series into volume anomaly events. The same rules drive the live
scanner and the historical reporter:

- Baseline for bar i is computed from the `period` bars before it (bar i excluded)
- A bar is flagged when its z-score is >= the minimum z-score (inclusive)
- Severity is extreme above `extreme_z_score`, elevated otherwise
- Direction is up when close >= open, down otherwise
"""
import logging
from typing import List, Optional, Sequence

from core.models import Candle, Direction, Severity, Timeframe, VolumeEvent, make_event_id
from core.statistics import compute_baseline, compute_z_score

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = 21
DEFAULT_EXTREME_Z_SCORE = 3.0


def classify_severity(z_score: float, extreme_z_score: float = DEFAULT_EXTREME_Z_SCORE) -> Severity:
    """Severity tier for a z-score that already crossed the threshold."""
    return Severity.EXTREME if z_score > extreme_z_score else Severity.ELEVATED


def classify_direction(candle: Candle) -> Direction:
    """Up for green (or flat) bars, down for red bars."""
    return Direction.UP if candle.close >= candle.open else Direction.DOWN


class VolumeAnomalyDetector:
    """Detect volume anomalies on candle series."""

    def __init__(
        self,
        min_z_score: float = 2.0,
        period: int = DEFAULT_PERIOD,
        extreme_z_score: float = DEFAULT_EXTREME_Z_SCORE,
        min_volume_ratio: float = 0.0
    ):
        """Initialize detector thresholds."""
        if period < 1:
            raise ValueError(f"EMA period must be positive, got {period}")
        self.min_z_score = min_z_score
        self.period = period
        self.extreme_z_score = extreme_z_score
        self.min_volume_ratio = min_volume_ratio

    def evaluate(
        self,
        symbol: str,
        timeframe: Timeframe,
        candles: Sequence[Candle],
        index: int
    ) -> Optional[VolumeEvent]:
        """
        Score a single bar against the bars preceding it.

        Args:
            symbol: Instrument symbol
            timeframe: Timeframe of the series
            candles: Series ordered oldest first
            index: Position of the candidate bar

        Returns:
            VolumeEvent if the bar crosses the threshold, None otherwise
            (including insufficient history and zero dispersion)
        """
        if index < self.period or index >= len(candles):
            return None

        window = [c.volume for c in candles[index - self.period:index]]
        baseline = compute_baseline(window, self.period)
        if baseline is None:
            return None

        current = candles[index]
        z_score = compute_z_score(current.volume, baseline)
        if z_score is None or z_score < self.min_z_score:
            return None

        if self.min_volume_ratio > 0:
            if baseline.ema <= 0 or current.volume / baseline.ema < self.min_volume_ratio:
                return None

        return VolumeEvent(
            id=make_event_id(symbol, timeframe, current.time),
            symbol=symbol,
            timeframe=timeframe,
            time=current.time,
            direction=classify_direction(current),
            severity=classify_severity(z_score, self.extreme_z_score),
            z_score=round(z_score, 2),
            open_price=current.open,
            close_price=current.close
        )

    def scan_history(
        self,
        symbol: str,
        timeframe: Timeframe,
        candles: Sequence[Candle]
    ) -> List[VolumeEvent]:
        """Score every bar that has a full warm-up window, oldest first."""
        events = []
        for index in range(self.period, len(candles)):
            event = self.evaluate(symbol, timeframe, candles, index)
            if event:
                events.append(event)
        return events

    def scan_latest(
        self,
        symbol: str,
        timeframe: Timeframe,
        candles: Sequence[Candle],
        bars: int = 1
    ) -> List[VolumeEvent]:
        """Score only the newest `bars` bars (the developing bar included)."""
        start = max(self.period, len(candles) - max(bars, 1))
        events = []
        for index in range(start, len(candles)):
            event = self.evaluate(symbol, timeframe, candles, index)
            if event:
                events.append(event)
        return events
