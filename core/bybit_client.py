"""
Bybit v5 REST client implementing the candle source used by the scanner
and the reporter.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from core.models import Candle, RankingMetric, SymbolUniverseEntry, Timeframe

logger = logging.getLogger(__name__)

MAX_UNIVERSE_SIZE = 50


class BybitAPIError(Exception):
    """Raised on HTTP errors or non-zero Bybit retCode."""


class BybitClient:
    """
    Public market data client for Bybit linear perpetuals.

    Only unauthenticated endpoints are used:
    - /v5/market/tickers for the tradable universe
    - /v5/market/kline for candle history
    """

    def __init__(
        self,
        base_url: str = "https://api.bybit.com",
        timeout: float = 10.0,
        universe_retries: int = 3,
        universe_retry_delay: float = 2.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize the client. A session is created lazily when not supplied."""
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.universe_retries = universe_retries
        self.universe_retry_delay = universe_retry_delay
        self._session = session

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )

    async def close(self):
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET a Bybit endpoint and return its `result` payload."""
        await self._ensure_session()

        async with self._session.get(f"{self.base_url}{path}", params=params) as response:
            if response.status != 200:
                raise BybitAPIError(f"HTTP {response.status} for {path}")
            data = await response.json()

        if data.get("retCode") != 0:
            raise BybitAPIError(f"Bybit API error for {path}: {data.get('retMsg')}")
        return data.get("result") or {}

    async def fetch_universe(
        self,
        ranking_metric: RankingMetric,
        max_count: int
    ) -> List[SymbolUniverseEntry]:
        """
        Fetch USDT linear tickers ranked by the chosen metric.

        Retries `universe_retries` times, `universe_retry_delay` seconds apart,
        then re-raises the last error.
        """
        limit = min(max(max_count, 1), MAX_UNIVERSE_SIZE)
        attempt = 0

        while True:
            try:
                result = await self._request("/v5/market/tickers", {"category": "linear"})
                return self._parse_universe(result.get("list", []), ranking_metric, limit)
            except (aiohttp.ClientError, asyncio.TimeoutError, BybitAPIError) as e:
                attempt += 1
                if attempt >= self.universe_retries:
                    logger.error(f"Universe discovery failed after {attempt} attempts: {e}")
                    raise
                logger.warning(
                    f"Universe discovery attempt {attempt} failed: {e}. "
                    f"Retrying in {self.universe_retry_delay}s..."
                )
                await asyncio.sleep(self.universe_retry_delay)

    @staticmethod
    def _parse_universe(
        tickers: List[Dict[str, Any]],
        ranking_metric: RankingMetric,
        limit: int
    ) -> List[SymbolUniverseEntry]:
        tickers = [t for t in tickers if t.get("symbol", "").endswith("USDT")]

        if ranking_metric == RankingMetric.OPEN_INTEREST:
            sort_key = "openInterest"
        else:
            sort_key = "turnover24h"
        tickers.sort(key=lambda t: float(t.get(sort_key) or 0), reverse=True)

        entries = []
        for ticker in tickers[:limit]:
            open_interest = ticker.get("openInterest")
            entries.append(SymbolUniverseEntry(
                symbol=ticker["symbol"],
                price=float(ticker.get("lastPrice") or 0),
                volume24h=float(ticker.get("turnover24h") or 0),
                open_interest=float(open_interest) if open_interest else None,
                change24h=float(ticker.get("price24hPcnt") or 0)
            ))
        return entries

    async def fetch_candles(
        self,
        symbol: str,
        timeframe: Timeframe,
        limit: int = 50
    ) -> List[Candle]:
        """Fetch up to `limit` candles, oldest first."""
        result = await self._request("/v5/market/kline", {
            "category": "linear",
            "symbol": symbol,
            "interval": timeframe.interval,
            "limit": limit
        })

        # Bybit rows: [startTime, open, high, low, close, volume, turnover], newest first
        candles = [
            Candle(
                time=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5])
            )
            for row in result.get("list", [])
        ]
        candles.reverse()
        return candles
