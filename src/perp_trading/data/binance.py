"""Binance futures market data client."""

from __future__ import annotations

from typing import Any

import pandas as pd  # type: ignore[import-untyped]
from binance.client import Client  # type: ignore[import-untyped]
from binance.exceptions import (  # type: ignore[import-untyped]
    BinanceAPIException,
    BinanceRequestException,
)

from perp_trading.config import Settings
from perp_trading.utils.coerce import coerce_float
from perp_trading.utils.logging import get_logger

QUOTE_ASSET = "USDT"


class MarketDataError(RuntimeError):
    """Market data could not be fetched or was unusable."""


def futures_symbol(asset: str) -> str:
    """``BTC`` -> ``BTCUSDT``."""
    asset = asset.upper()
    return asset if asset.endswith(QUOTE_ASSET) else f"{asset}{QUOTE_ASSET}"


class BinanceDataClient:
    """Read-only client for klines and the 24h ticker."""

    _INTERVAL_MAP = {
        "1h": Client.KLINE_INTERVAL_1HOUR,
        "4h": Client.KLINE_INTERVAL_4HOUR,
        "1d": Client.KLINE_INTERVAL_1DAY,
    }

    def __init__(self, settings: Settings, client: Client | None = None) -> None:
        self._settings = settings
        self._logger = get_logger(__name__)
        self._client = client or Client(
            api_key=settings.binance_api_key or None,
            api_secret=settings.binance_api_secret or None,
            testnet=settings.binance_testnet,
        )

    def fetch_ohlcv(self, asset: str, interval: str = "1h", limit: int = 250) -> pd.DataFrame:
        """Fetch futures klines and return a normalized dataframe."""
        resolved_interval = self._INTERVAL_MAP.get(interval.lower())
        if resolved_interval is None:
            raise ValueError(f"unsupported_interval: {interval}")

        try:
            rows = self._client.futures_klines(
                symbol=futures_symbol(asset), interval=resolved_interval, limit=limit
            )
        except (BinanceAPIException, BinanceRequestException) as exc:
            raise MarketDataError(f"klines_fetch_failed: {exc}") from exc
        df = pd.DataFrame(
            rows,
            columns=[
                "open_time",
                "open",
                "high",
                "low",
                "close",
                "volume",
                "close_time",
                "quote_asset_volume",
                "number_of_trades",
                "taker_buy_base_asset_volume",
                "taker_buy_quote_asset_volume",
                "ignore",
            ],
        )
        if df.empty:
            raise MarketDataError("empty_ohlcv_response")

        numeric_cols = ["open", "high", "low", "close", "volume"]
        for col in numeric_cols:
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df["open_time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
        df["close_time"] = pd.to_datetime(df["close_time"], unit="ms", utc=True)
        df = df.dropna(subset=numeric_cols).reset_index(drop=True)
        return df[["open_time", "open", "high", "low", "close", "volume", "close_time"]]

    def fetch_ticker(self, asset: str) -> dict[str, float | None]:
        """24h rolling ticker for one asset."""
        try:
            payload: dict[str, Any] = self._client.futures_ticker(symbol=futures_symbol(asset))
        except (BinanceAPIException, BinanceRequestException) as exc:
            raise MarketDataError(f"ticker_fetch_failed: {exc}") from exc
        price = coerce_float(payload.get("lastPrice"))
        if price is None or price <= 0:
            raise MarketDataError(f"invalid_ticker_price: {asset}")
        return {
            "price": price,
            "high_24h": coerce_float(payload.get("highPrice")),
            "low_24h": coerce_float(payload.get("lowPrice")),
            "volume_24h": coerce_float(payload.get("volume")),
            "price_change_pct_24h": coerce_float(payload.get("priceChangePercent")),
        }
