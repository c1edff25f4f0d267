"""
Volume scanner: polls the candle source for the tracked universe and feeds
detected anomalies into the event store.

Lifecycle:
    idle --start()--> backfilling --first full cycle--> live --stop()--> idle

The first scan cycle after start replays the whole fetched window and commits
every anomaly in one bulk replace. Later cycles only re-score the newest bars
and insert events one by one (deduplicated by the store).
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from core.event_store import EventStore
from core.models import (
    Candle, CandleSource, ScannerState, ScanSettings, Severity,
    SymbolUniverseEntry, Timeframe, VolumeEvent
)
from core.volume_anomaly_detector import VolumeAnomalyDetector

logger = logging.getLogger(__name__)
events_logger = logging.getLogger('events')

AlertCallback = Callable[[VolumeEvent], Awaitable[None]]


class VolumeScanner:
    """Polling state machine driving live volume anomaly detection."""

    def __init__(
        self,
        source: CandleSource,
        store: EventStore,
        settings_provider: Callable[[], ScanSettings],
        poll_interval: float = 30.0,
        batch_size: int = 3,
        batch_delay: float = 0.5,
        candle_limit: int = 100,
        period: int = 21,
        extreme_z_score: float = 3.0,
        live_rescan_bars: int = 1
    ):
        """Initialize the scanner. Nothing runs until start() is called."""
        self.source = source
        self.store = store
        self.settings_provider = settings_provider
        self.poll_interval = poll_interval
        self.batch_size = max(batch_size, 1)
        self.batch_delay = batch_delay
        self.candle_limit = candle_limit
        self.period = period
        self.extreme_z_score = extreme_z_score
        self.live_rescan_bars = live_rescan_bars

        self.state = ScannerState.IDLE
        self.running = False
        self.backfill_complete = False
        self.cycle_count = 0
        self.last_cycle_at: Optional[float] = None
        self.next_cycle_at: Optional[float] = None

        # Called for newly inserted extreme live events
        self.on_alert: Optional[AlertCallback] = None

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self):
        """Start polling in the background. No-op if already running."""
        if self.running:
            logger.info("Scanner already running")
            return

        self.running = True
        self.backfill_complete = False
        self.state = ScannerState.BACKFILLING
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="volume_scanner")
        logger.info(f"Scanner started (interval {self.poll_interval}s)")

    async def stop(self):
        """Stop polling and wait for the in-flight cycle to reach a safe point."""
        if not self.running and self._task is None:
            return

        self.running = False
        self._stop_event.set()

        task, self._task = self._task, None
        if task and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)

        self.state = ScannerState.IDLE
        self.next_cycle_at = None
        logger.info("Scanner stopped")

    async def _run_loop(self):
        """Run one cycle immediately, then one per poll interval."""
        while self.running:
            started = time.monotonic()
            try:
                await self.poll_cycle()
            except Exception as e:
                logger.error(f"Scan cycle failed: {e}", exc_info=True)

            if not self.running:
                break

            delay = max(self.poll_interval - (time.monotonic() - started), 0)
            self.next_cycle_at = time.time() + delay
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def poll_cycle(self):
        """Execute one scan cycle over the tracked universe."""
        settings = self.settings_provider()
        symbols = self.store.list_symbols()

        if not symbols:
            logger.info("Universe empty, fetching top symbols...")
            await self.refresh_universe(settings)
            return

        backfill = not self.backfill_complete
        detector = VolumeAnomalyDetector(
            min_z_score=settings.min_z_score,
            period=self.period,
            extreme_z_score=self.extreme_z_score,
            min_volume_ratio=settings.min_volume_ratio
        )
        collected: List[VolumeEvent] = []

        for i in range(0, len(symbols), self.batch_size):
            if not self.running:
                return

            batch = symbols[i:i + self.batch_size]
            results = await asyncio.gather(*(
                self._fetch_symbol(entry.symbol, settings.timeframes)
                for entry in batch
            ))

            # Stop may have been requested while the batch was in flight
            if not self.running:
                return

            for entry, series in zip(batch, results):
                if series is None:
                    continue
                # Removed or replaced while the batch was in flight
                if self.store.get_symbol(entry.symbol) is not entry:
                    logger.debug(f"{entry.symbol} no longer tracked, dropping its scan")
                    continue
                self._update_cache(entry, series)
                for timeframe, candles in series.items():
                    if backfill:
                        collected.extend(detector.scan_history(entry.symbol, timeframe, candles))
                    else:
                        for event in detector.scan_latest(
                            entry.symbol, timeframe, candles, self.live_rescan_bars
                        ):
                            await self._publish_live_event(event, settings)

            if i + self.batch_size < len(symbols):
                await asyncio.sleep(self.batch_delay)

        if not self.running:
            return

        if backfill:
            collected.sort(key=lambda e: e.time, reverse=True)
            self.store.set_events(collected)
            self.backfill_complete = True
            self.state = ScannerState.LIVE
            logger.info(
                f"Backfill complete: {len(collected)} events across {len(symbols)} symbols"
            )

        self.cycle_count += 1
        self.last_cycle_at = time.time()

    async def _fetch_symbol(
        self,
        symbol: str,
        timeframes: List[Timeframe]
    ) -> Optional[Dict[Timeframe, List[Candle]]]:
        """Fetch every timeframe for one symbol; None if any fetch fails."""
        try:
            series = await asyncio.gather(*(
                self.source.fetch_candles(symbol, timeframe, self.candle_limit)
                for timeframe in timeframes
            ))
        except Exception as e:
            logger.error(f"Failed to scan {symbol}: {e}")
            return None
        return dict(zip(timeframes, series))

    def _update_cache(self, entry: SymbolUniverseEntry, series: Dict[Timeframe, List[Candle]]):
        entry.candles.update(series)
        first = next(iter(series.values()), [])
        if first:
            entry.price = first[-1].close
        self.store.upsert_symbol(entry)

    async def _publish_live_event(self, event: VolumeEvent, settings: ScanSettings):
        if not self.store.add_event(event):
            return

        events_logger.info(
            f"{event.symbol} {event.timeframe.label} {event.direction.value} "
            f"{event.severity.value} z={event.z_score:.2f}"
        )

        if event.severity == Severity.EXTREME and settings.alert_sound_enabled and self.on_alert:
            try:
                await self.on_alert(event)
            except Exception as e:
                logger.error(f"Alert hook failed for {event.id}: {e}")

    async def refresh_universe(self, settings: Optional[ScanSettings] = None) -> List[SymbolUniverseEntry]:
        """
        Rediscover the tracked universe and replace the cached symbols.

        Returns:
            The new universe, or an empty list if discovery failed
        """
        settings = settings or self.settings_provider()
        try:
            entries = await self.source.fetch_universe(
                settings.ranking_metric, settings.universe_size
            )
        except Exception as e:
            logger.error(f"Universe discovery failed: {e}")
            return []

        self.store.replace_symbols(entries)
        logger.info(f"Tracking {len(entries)} symbols ranked by {settings.ranking_metric.value}")
        return entries

    def status(self) -> dict:
        """Snapshot of the scanner state for monitoring."""
        return {
            "state": self.state.value,
            "running": self.running,
            "backfill_complete": self.backfill_complete,
            "cycle_count": self.cycle_count,
            "last_cycle_at": self.last_cycle_at,
            "next_cycle_at": self.next_cycle_at,
            "poll_interval": self.poll_interval,
            "tracked_symbols": len(self.store.list_symbols()),
            "event_count": self.store.event_count
        }
