"""Periodic market snapshot capture."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

import pandas as pd  # type: ignore[import-untyped]

from perp_trading.config import Settings
from perp_trading.features.indicators import compute_indicators
from perp_trading.storage.models import MarketSnapshot, utcnow
from perp_trading.storage.store import Store
from perp_trading.utils.logging import get_logger

CANDLE_INTERVAL = "1h"
CANDLE_LIMIT = 250


class MarketDataSource(Protocol):
    def fetch_ohlcv(self, asset: str, interval: str = ..., limit: int = ...) -> pd.DataFrame: ...

    def fetch_ticker(self, asset: str) -> dict[str, float | None]: ...


class SentimentSource(Protocol):
    def fetch_all(self) -> dict[str, Any]: ...


class MarketSnapshotTask:
    """Captures one snapshot per asset: ticker, indicators and shared sentiment."""

    def __init__(
        self,
        settings: Settings,
        store: Store,
        market_data: MarketDataSource,
        sentiment: SentimentSource | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._market_data = market_data
        self._sentiment = sentiment
        self._clock = clock
        self._logger = get_logger(__name__)

    def run(self) -> list[MarketSnapshot]:
        captured_at = self._clock()
        sentiment = self._sentiment.fetch_all() if self._sentiment is not None else None

        snapshots = []
        for asset in self._settings.assets:
            try:
                snapshots.append(self._capture(asset, sentiment, captured_at))
            except (RuntimeError, ValueError, OSError) as exc:
                self._logger.error("snapshot_failed", symbol=asset, error=str(exc))
        self._logger.info(
            "snapshots_captured", count=len(snapshots), assets=len(self._settings.assets)
        )
        return snapshots

    def _capture(
        self, asset: str, sentiment: dict[str, Any] | None, captured_at: datetime
    ) -> MarketSnapshot:
        ticker = self._market_data.fetch_ticker(asset)
        candles = self._market_data.fetch_ohlcv(asset, CANDLE_INTERVAL, CANDLE_LIMIT)
        indicators = compute_indicators(candles)

        snapshot = MarketSnapshot(
            symbol=asset,
            price=ticker["price"],
            high_24h=ticker.get("high_24h"),
            low_24h=ticker.get("low_24h"),
            volume_24h=ticker.get("volume_24h"),
            price_change_pct_24h=ticker.get("price_change_pct_24h"),
            indicators=indicators,
            sentiment=sentiment,
            captured_at=captured_at,
        )
        self._store.save(snapshot)
        self._logger.info(
            "snapshot_captured", symbol=asset, price=snapshot.price, rsi=indicators["rsi_14"]
        )
        return snapshot
