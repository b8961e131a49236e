"""Assembles the market context handed to the judgment service."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from perp_trading.config import Settings
from perp_trading.risk.profiles import ProfileService
from perp_trading.storage.models import MacroStrategy, MarketSnapshot, utcnow
from perp_trading.storage.store import Store
from perp_trading.utils.logging import get_logger

LOOKBACK_HOURS = 24
LOOKBACK_DAYS_MACRO = 7
PRICE_ACTION_LIMIT = 24
NEWS_LIMIT = 5
WHALE_ALERTS_LIMIT = 5


class NewsSource(Protocol):
    def recent_news(self, limit: int) -> list[dict[str, Any]]: ...


class WhaleAlertSource(Protocol):
    def recent_alerts(self, limit: int) -> list[dict[str, Any]]: ...


class ForecastSource(Protocol):
    def forecast_for(self, symbol: str) -> dict[str, Any] | None:
        """Predictions keyed by timeframe (``"1h"``, ``"4h"``, ...)."""
        ...


def calculate_trend(prices: list[float]) -> str:
    """Classify the move from oldest to newest price; ``prices`` is newest first."""
    if len(prices) < 2:
        return "neutral"
    oldest, newest = prices[-1], prices[0]
    if oldest == 0:
        return "neutral"

    change = (newest - oldest) / oldest * 100
    if change <= -3:
        return "strong_downtrend"
    if change <= -1:
        return "downtrend"
    if change <= 1:
        return "neutral"
    if change <= 3:
        return "uptrend"
    return "strong_uptrend"


def calculate_change_pct(prices: list[float]) -> float:
    if len(prices) < 2 or prices[-1] == 0:
        return 0.0
    return round((prices[0] - prices[-1]) / prices[-1] * 100, 2)


def calculate_volatility(prices: list[float]) -> float:
    """Population coefficient of variation, as a percentage."""
    if len(prices) < 2:
        return 0.0
    mean = sum(prices) / len(prices)
    if mean == 0:
        return 0.0
    variance = sum((p - mean) ** 2 for p in prices) / len(prices)
    return round(math.sqrt(variance) / mean * 100, 2)


def historical_trend(prices: list[float]) -> dict[str, float]:
    if not prices:
        return {"price_start": 0.0, "price_end": 0.0, "change_pct": 0.0, "volatility": 0.0}
    return {
        "price_start": prices[-1],
        "price_end": prices[0],
        "change_pct": calculate_change_pct(prices),
        "volatility": calculate_volatility(prices),
    }


class ContextAssembler:
    """Read-only view over snapshots, positions, macro strategy and optional feeds."""

    def __init__(
        self,
        settings: Settings,
        store: Store,
        profiles: ProfileService,
        *,
        news: NewsSource | None = None,
        whale_alerts: WhaleAlertSource | None = None,
        forecasts: ForecastSource | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._profiles = profiles
        self._news = news
        self._whale_alerts = whale_alerts
        self._forecasts = forecasts
        self._clock = clock
        self._logger = get_logger(__name__)

    def for_trading(
        self, symbol: str, macro_strategy: MacroStrategy | None = None
    ) -> dict[str, Any]:
        now = self._clock()
        snapshot = self._store.latest_snapshot(symbol)
        return {
            "timestamp": now.isoformat(),
            "symbol": symbol,
            "weights": self.weights(),
            "current_position": self.current_position(symbol, now),
            "forecast": self.forecast_for(symbol),
            "news": self.recent_news(),
            "whale_alerts": self.recent_whale_alerts(),
            "market_data": _market_data(snapshot),
            "technical_indicators": _technical_indicators(snapshot),
            "sentiment": self.current_sentiment(),
            "macro_context": macro_context(macro_strategy, now),
            "recent_price_action": self.recent_price_action(symbol, now),
            "risk_parameters": self.risk_parameters(),
        }

    def for_macro_analysis(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "timestamp": now.isoformat(),
            "weights": self.weights(),
            "forecasts": self.forecasts_for_all_assets(),
            "news": self.recent_news(),
            "whale_alerts": self.recent_whale_alerts(),
            "assets_overview": self.assets_overview(),
            "market_sentiment": self.current_sentiment(),
            "historical_trends": self.historical_trends(now),
            "risk_parameters": self.risk_parameters(),
        }

    def weights(self) -> dict[str, float]:
        return self._settings.weights.model_dump()

    # ==================== optional feeds ====================

    def forecast_for(self, symbol: str) -> dict[str, Any] | None:
        if self._forecasts is None:
            return None
        try:
            return self._forecasts.forecast_for(symbol) or None
        except Exception as exc:
            self._logger.warning("forecast_unavailable", symbol=symbol, error=str(exc))
            return None

    def forecasts_for_all_assets(self) -> dict[str, Any] | None:
        result = {}
        for symbol in self._settings.assets:
            forecast = self.forecast_for(symbol)
            if not forecast:
                continue
            one_hour = forecast.get("1h") or {}
            result[symbol] = {
                "current_price": one_hour.get("current_price"),
                "predicted_1h": one_hour.get("predicted_price"),
                "direction": one_hour.get("direction"),
            }
        return result or None

    def recent_news(self) -> list[dict[str, Any]] | None:
        if self._news is None:
            return None
        try:
            return self._news.recent_news(limit=NEWS_LIMIT) or None
        except Exception as exc:
            self._logger.warning("news_unavailable", error=str(exc))
            return None

    def recent_whale_alerts(self) -> list[dict[str, Any]] | None:
        if self._whale_alerts is None:
            return None
        try:
            return self._whale_alerts.recent_alerts(limit=WHALE_ALERTS_LIMIT) or None
        except Exception as exc:
            self._logger.warning("whale_alerts_unavailable", error=str(exc))
            return None

    # ==================== store-backed sections ====================

    def current_sentiment(self) -> dict[str, Any]:
        snapshot = self._store.latest_snapshot_any()
        if snapshot is None or not snapshot.sentiment:
            return {}
        fear_greed = snapshot.sentiment.get("fear_greed") or {}
        return {
            "fear_greed_value": fear_greed.get("value"),
            "fear_greed_classification": fear_greed.get("classification"),
            "fetched_at": snapshot.sentiment.get("fetched_at"),
        }

    def current_position(self, symbol: str, now: datetime | None = None) -> dict[str, Any]:
        position = self._store.open_position(symbol)
        if position is None:
            return {"has_position": False}
        return {
            "has_position": True,
            "direction": position.direction,
            "size": position.size,
            "entry_price": position.entry_price,
            "current_price": position.current_price,
            "unrealized_pnl": position.unrealized_pnl,
            "pnl_percent": round(position.pnl_percent, 2),
            "leverage": position.leverage,
            "stop_loss_price": position.stop_loss_price,
            "take_profit_price": position.take_profit_price,
            "pct_to_stop_loss": _round_or_none(position.stop_loss_distance_pct),
            "pct_to_take_profit": _round_or_none(position.take_profit_distance_pct),
            "peak_price": position.peak_price,
            "trailing_stop_active": bool(position.trailing_stop_active),
            "opened_at": position.opened_at.isoformat(),
            "position_age_minutes": int(position.age_minutes(now)),
        }

    def recent_price_action(self, symbol: str, now: datetime | None = None) -> dict[str, Any]:
        since = (now or self._clock()) - timedelta(hours=LOOKBACK_HOURS)
        snapshots = self._store.snapshots_since(symbol, since, limit=PRICE_ACTION_LIMIT)
        if not snapshots:
            return {}
        prices = [s.price for s in snapshots]
        return {
            "prices_last_24h": list(reversed(prices)),
            "high": max(prices),
            "low": min(prices),
            "trend": calculate_trend(prices),
        }

    def assets_overview(self) -> list[dict[str, Any]]:
        overview = []
        for symbol in self._settings.assets:
            snapshot = self._store.latest_snapshot(symbol)
            overview.append(
                {
                    "symbol": symbol,
                    "market_data": _market_data(snapshot),
                    "technical_indicators": _technical_indicators(snapshot),
                }
            )
        return overview

    def historical_trends(self, now: datetime | None = None) -> dict[str, dict[str, float]]:
        since = (now or self._clock()) - timedelta(days=LOOKBACK_DAYS_MACRO)
        return {
            symbol: historical_trend([s.price for s in self._store.snapshots_since(symbol, since)])
            for symbol in self._settings.assets
        }

    def risk_parameters(self) -> dict[str, Any]:
        params = self._profiles.current_params()
        return {
            "risk_profile": self._profiles.current_name(),
            "max_position_size": params.max_position_size,
            "min_confidence": params.min_confidence,
            "max_leverage": self._settings.max_leverage,
            "default_leverage": params.default_leverage,
            "max_open_positions": params.max_open_positions,
            "min_risk_reward_ratio": params.min_risk_reward_ratio,
        }


def macro_context(strategy: MacroStrategy | None, now: datetime | None = None) -> dict[str, Any]:
    if strategy is None or strategy.is_stale(now):
        return {"available": False}
    return {
        "available": True,
        "market_narrative": strategy.market_narrative,
        "bias": strategy.bias,
        "risk_tolerance": strategy.risk_tolerance,
        "key_levels": strategy.key_levels,
        "valid_until": strategy.valid_until.isoformat(),
    }


def _market_data(snapshot: MarketSnapshot | None) -> dict[str, Any]:
    if snapshot is None:
        return {}
    return {
        "price": snapshot.price,
        "high_24h": snapshot.high_24h,
        "low_24h": snapshot.low_24h,
        "volume_24h": snapshot.volume_24h,
        "price_change_pct_24h": snapshot.price_change_pct_24h,
        "captured_at": snapshot.captured_at.isoformat(),
    }


def _technical_indicators(snapshot: MarketSnapshot | None) -> dict[str, Any]:
    if snapshot is None:
        return {}
    return {
        "ema_20": snapshot.indicator("ema_20"),
        "ema_50": snapshot.indicator("ema_50"),
        "ema_100": snapshot.indicator("ema_100"),
        "ema_200": snapshot.indicator("ema_200"),
        "rsi_14": snapshot.indicator("rsi_14"),
        "atr_14": snapshot.indicator("atr_14"),
        "macd": snapshot.indicator("macd"),
        "signals": {
            "rsi": snapshot.rsi_signal,
            "macd": snapshot.macd_signal,
            "above_ema_20": snapshot.above_ema(20),
            "above_ema_50": snapshot.above_ema(50),
            "above_ema_200": snapshot.above_ema(200),
        },
    }


def _round_or_none(value: float | None) -> float | None:
    return None if value is None else round(value, 2)
