"""
Historical volume report.

Replays the full fetched history of every (symbol, timeframe) pair through the
same detection rules as the live scanner. Reads from the candle source only and
keeps no state between calls.
"""
import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from core.models import CandleSource, ReportConfig, Timeframe, VolumeEvent
from core.volume_anomaly_detector import VolumeAnomalyDetector

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


async def _run_task(
    source: CandleSource,
    detector: VolumeAnomalyDetector,
    symbol: str,
    timeframe: Timeframe,
    lookback: int
) -> List[VolumeEvent]:
    try:
        candles = await source.fetch_candles(symbol, timeframe, lookback)
    except Exception as e:
        logger.error(f"Failed to report on {symbol} {timeframe.label}: {e}")
        return []
    return detector.scan_history(symbol, timeframe, candles)


async def generate_report(
    source: CandleSource,
    config: ReportConfig,
    progress_callback: Optional[ProgressCallback] = None,
    batch_size: int = 5,
    batch_delay: float = 0.2,
    period: int = 21,
    extreme_z_score: float = 3.0
) -> List[VolumeEvent]:
    """
    Scan the configured symbols and timeframes over `config.lookback` bars.

    Args:
        source: Candle source to read history from
        config: Symbols, timeframes, lookback and threshold
        progress_callback: Receives "Scanned N / total" after each batch
        batch_size: Tasks fetched concurrently
        batch_delay: Pause between batches, in seconds

    Returns:
        Every anomaly found, newest first. Failed tasks are skipped.
    """
    detector = VolumeAnomalyDetector(
        min_z_score=config.min_z_score,
        period=period,
        extreme_z_score=extreme_z_score
    )
    tasks: List[Tuple[str, Timeframe]] = [
        (symbol, timeframe)
        for symbol in config.symbols
        for timeframe in config.timeframes
    ]
    total = len(tasks)
    batch_size = max(batch_size, 1)
    results: List[VolumeEvent] = []

    logger.info(
        f"Generating report: {len(config.symbols)} symbols x {len(config.timeframes)} timeframes, "
        f"lookback {config.lookback}, min z {config.min_z_score}"
    )

    for i in range(0, total, batch_size):
        batch = tasks[i:i + batch_size]
        batch_events = await asyncio.gather(*(
            _run_task(source, detector, symbol, timeframe, config.lookback)
            for symbol, timeframe in batch
        ))
        for events in batch_events:
            results.extend(events)

        done = min(i + batch_size, total)
        if progress_callback:
            progress_callback(f"Scanned {done} / {total}")

        if done < total:
            await asyncio.sleep(batch_delay)

    results.sort(key=lambda e: e.time, reverse=True)
    logger.info(f"Report complete: {len(results)} events from {total} tasks")
    return results
