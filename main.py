"""
Volume Radar - Main Entry Point
Live volume anomaly scanning for Bybit linear perpetuals, with historical reports.
"""
import asyncio
import logging
import sys
import time
from typing import Optional

import uvicorn
from aiogram import Bot

from api_server import create_app
from bot.notifier import AlertNotifier
from config import Settings, get_settings, ensure_data_directory
from core.bybit_client import BybitClient
from core.database import Database
from core.event_store import EventStore, StoreChange
from core.models import CandleSource, ReportConfig, ReportState, ScanSettings
from core.report_generator import generate_report
from core.scanner import VolumeScanner
from utils.logging_config import setup_logging


logger = logging.getLogger(__name__)


class VolumeRadar:
    """Composition root: owns the store, the candle source, the scanner and persistence."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        source: Optional[CandleSource] = None,
        bot: Optional[Bot] = None
    ):
        """Build all components. Nothing connects or runs until setup()."""
        self.settings = settings or get_settings()

        self.store = EventStore(cap=self.settings.event_cap)
        self.source = source or BybitClient(
            base_url=self.settings.bybit_rest_url,
            timeout=self.settings.request_timeout
        )
        self.db: Optional[Database] = None

        self.scan_settings = ScanSettings(api_endpoint=self.settings.bybit_rest_url)
        self.report_state: Optional[ReportState] = None
        self.report_progress: Optional[str] = None
        self._report_lock = asyncio.Lock()

        if bot is None and self.settings.bot_token:
            bot = Bot(token=self.settings.bot_token)
        self.notifier = AlertNotifier(
            bot=bot,
            chat_config=self.settings.alerts_chat_id,
            timezone_provider=lambda: self.scan_settings.display_timezone
        )

        self.scanner = VolumeScanner(
            source=self.source,
            store=self.store,
            settings_provider=self.get_scan_settings,
            poll_interval=self.settings.poll_interval,
            batch_size=self.settings.scan_batch_size,
            batch_delay=self.settings.scan_batch_delay,
            candle_limit=self.settings.candle_limit,
            period=self.settings.ema_period,
            extreme_z_score=self.settings.extreme_z_score,
            live_rescan_bars=self.settings.live_rescan_bars
        )
        self.scanner.on_alert = self.notifier.notify_alert

        self._unsubscribe = self.store.subscribe(self._on_store_change)

    async def setup(self):
        """Connect persistence, load saved state and optionally start scanning."""
        logger.info("Setting up Volume Radar...")

        ensure_data_directory(self.settings.database_path)
        self.db = Database(self.settings.database_path)
        await self.db.connect()

        self.scan_settings = await self.db.get_settings(self.scan_settings)
        self._apply_endpoint()
        self.report_state = await self.db.get_report_state()

        if self.settings.autostart_scanner:
            await self.scanner.start()

        logger.info("Setup complete!")

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down Volume Radar...")

        await self.scanner.stop()
        self._unsubscribe()

        if isinstance(self.source, BybitClient):
            await self.source.close()
        await self.notifier.close()
        if self.db:
            await self.db.close()

        logger.info("Shutdown complete")

    def get_scan_settings(self) -> ScanSettings:
        return self.scan_settings

    async def update_scan_settings(self, scan_settings: ScanSettings) -> ScanSettings:
        """Persist new scan settings; the scanner picks them up on its next cycle."""
        self.scan_settings = scan_settings
        self._apply_endpoint()
        if self.db:
            await self.db.save_settings(scan_settings)
        logger.info(f"Scan settings updated: {scan_settings.model_dump(mode='json')}")
        return scan_settings

    def _apply_endpoint(self):
        if isinstance(self.source, BybitClient):
            self.source.base_url = self.scan_settings.api_endpoint.rstrip("/")

    async def run_report(self, config: ReportConfig) -> ReportState:
        """Generate a historical report and keep it as the last report."""
        async with self._report_lock:
            self.report_progress = "Starting..."
            try:
                results = await generate_report(
                    self.source,
                    config,
                    progress_callback=self._set_report_progress,
                    batch_size=self.settings.report_batch_size,
                    batch_delay=self.settings.report_batch_delay,
                    period=self.settings.ema_period,
                    extreme_z_score=self.settings.extreme_z_score
                )
            finally:
                self.report_progress = None

            state = ReportState(config=config, results=results, last_run=int(time.time() * 1000))
            self.report_state = state
            if self.db:
                await self.db.save_report_state(state)
            return state

    def _set_report_progress(self, message: str):
        self.report_progress = message
        logger.info(f"Report progress: {message}")

    def _on_store_change(self, change: StoreChange):
        if change == StoreChange.EVENTS:
            logger.debug(f"Event feed updated ({self.store.event_count} events)")
        else:
            logger.debug(f"Universe updated ({len(self.store.list_symbols())} symbols)")


async def main():
    """Main entry point."""
    settings = get_settings()
    loggers = setup_logging(log_level=settings.log_level)
    system_logger = loggers['system']

    radar = VolumeRadar(settings)
    app = create_app(radar)

    config = uvicorn.Config(
        app=app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        access_log=False
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    except Exception as e:
        system_logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Volume Radar stopped by user")
