"""
HTTP API for Volume Radar.
Exposes the live event feed, the tracked universe, scanner control, settings
and historical reports.

Usage:
    python main.py
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from core.models import Direction, ReportConfig, ScanSettings
from utils.filters import filter_events, sort_events
from utils.formatting import events_to_csv

logger = logging.getLogger(__name__)

router = APIRouter()


def _radar(request: Request):
    return request.app.state.radar


@router.get("/health")
async def health_check(request: Request):
    """Detailed health check."""
    radar = _radar(request)
    return {
        "status": "healthy",
        "database": "connected" if radar.db and radar.db.conn else "disconnected",
        "scanner": radar.scanner.state.value,
        "alerts": "telegram" if radar.notifier.enabled else "log"
    }


# Live event feed
@router.get("/events")
async def list_events(request: Request, limit: Optional[int] = None):
    events = _radar(request).store.list_events()
    if limit is not None:
        events = events[:max(limit, 0)]
    return [e.model_dump(mode="json") for e in events]


@router.get("/events.csv", response_class=PlainTextResponse)
async def export_events(request: Request):
    radar = _radar(request)
    return PlainTextResponse(
        events_to_csv(radar.store.list_events(), radar.scan_settings.display_timezone),
        media_type="text/csv"
    )


# Universe
@router.get("/universe")
async def list_universe(request: Request):
    return [
        s.model_dump(mode="json", exclude={"candles"})
        for s in _radar(request).store.list_symbols()
    ]


@router.post("/universe/refresh")
async def refresh_universe(request: Request):
    entries = await _radar(request).scanner.refresh_universe()
    if not entries:
        raise HTTPException(status_code=502, detail="Universe discovery failed")
    return {"symbols": [e.symbol for e in entries]}


@router.get("/universe/{symbol}")
async def get_symbol(request: Request, symbol: str):
    entry = _radar(request).store.get_symbol(symbol.upper())
    if entry is None:
        raise HTTPException(status_code=404, detail=f"{symbol} is not tracked")
    return entry.model_dump(mode="json")


@router.delete("/universe/{symbol}")
async def remove_symbol(request: Request, symbol: str):
    if not _radar(request).store.remove_symbol(symbol.upper()):
        raise HTTPException(status_code=404, detail=f"{symbol} is not tracked")
    return {"removed": symbol.upper()}


# Scanner control
@router.get("/scanner")
async def scanner_status(request: Request):
    return _radar(request).scanner.status()


@router.post("/scanner/start")
async def start_scanner(request: Request):
    scanner = _radar(request).scanner
    await scanner.start()
    return scanner.status()


@router.post("/scanner/stop")
async def stop_scanner(request: Request):
    scanner = _radar(request).scanner
    await scanner.stop()
    return scanner.status()


# Settings
@router.get("/settings")
async def get_settings(request: Request):
    return _radar(request).scan_settings.model_dump(mode="json")


@router.put("/settings")
async def update_settings(request: Request, scan_settings: ScanSettings):
    updated = await _radar(request).update_scan_settings(scan_settings)
    return updated.model_dump(mode="json")


# Reports
@router.post("/reports")
async def run_report(request: Request, config: ReportConfig):
    state = await _radar(request).run_report(config)
    return state.model_dump(mode="json")


@router.get("/reports/progress")
async def report_progress(request: Request):
    return {"progress": _radar(request).report_progress}


def _last_report_events(
    request: Request,
    symbol: Optional[str],
    min_z: Optional[float],
    direction: Optional[Direction],
    sort: str,
    order: str
):
    state = _radar(request).report_state
    if state is None:
        raise HTTPException(status_code=404, detail="No report has been generated yet")

    events = filter_events(state.results, symbol=symbol, min_z_score=min_z, direction=direction)
    try:
        events = sort_events(events, column=sort, descending=order != "asc")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return state, events


@router.get("/reports/last")
async def last_report(
    request: Request,
    symbol: Optional[str] = None,
    min_z: Optional[float] = None,
    direction: Optional[Direction] = None,
    sort: str = "time",
    order: str = "desc"
):
    state, events = _last_report_events(request, symbol, min_z, direction, sort, order)
    return {
        "config": state.config.model_dump(mode="json"),
        "last_run": state.last_run,
        "total": len(state.results),
        "results": [e.model_dump(mode="json") for e in events]
    }


@router.get("/reports/last.csv", response_class=PlainTextResponse)
async def export_last_report(
    request: Request,
    symbol: Optional[str] = None,
    min_z: Optional[float] = None,
    direction: Optional[Direction] = None,
    sort: str = "time",
    order: str = "desc"
):
    _, events = _last_report_events(request, symbol, min_z, direction, sort, order)
    return PlainTextResponse(
        events_to_csv(events, _radar(request).scan_settings.display_timezone),
        media_type="text/csv"
    )


def create_app(radar) -> FastAPI:
    """Build the FastAPI app around a VolumeRadar instance."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifecycle manager for FastAPI app."""
        await radar.setup()
        logger.info("✅ Volume Radar API ready")
        yield
        await radar.shutdown()

    app = FastAPI(
        title="Volume Radar",
        description="Volume anomaly scanner for Bybit linear perpetuals",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.radar = radar
    app.include_router(router)
    return app
