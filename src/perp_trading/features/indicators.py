"""Technical indicators and the volatility classifier."""

from __future__ import annotations

import math
from collections.abc import Iterable

import pandas as pd  # type: ignore[import-untyped]

from perp_trading.types import VolatilityLevel, VolatilityResult

EMA_PERIODS = (20, 50, 100, 200)

# cycle interval in minutes per volatility level
VOLATILITY_INTERVALS: dict[VolatilityLevel, int] = {
    "very_high": 3,
    "high": 6,
    "medium": 12,
    "low": 25,
}
# ATR as a fraction of price
VOLATILITY_THRESHOLDS: dict[VolatilityLevel, float] = {
    "very_high": 0.03,
    "high": 0.02,
    "medium": 0.01,
}
MIN_INTERVAL_MINUTES = 3
MAX_INTERVAL_MINUTES = 25


def compute_indicators(df: pd.DataFrame) -> dict[str, object]:
    """Compute the indicator block stored on a market snapshot.

    ``df`` holds OHLCV candles in ascending ``open_time`` order. Indicators
    without enough history come back as ``None``.
    """
    if df.empty:
        raise ValueError("input_ohlcv_empty")
    if not _is_time_ascending(df):
        raise ValueError("ohlcv_timestamp_not_ascending")

    close = df["close"].astype(float)
    result: dict[str, object] = {
        f"ema_{period}": _last(_ema(close, period)) if len(close) >= period else None
        for period in EMA_PERIODS
    }
    result["rsi_14"] = rsi(close, 14)
    result["atr_14"] = _last(_atr(df, 14))
    result["macd"] = macd(close)
    result["pivot_points"] = pivot_points(
        float(df["high"].astype(float).max()),
        float(df["low"].astype(float).min()),
        float(close.iloc[-1]),
    )
    return result


def rsi(close: pd.Series, period: int = 14) -> float | None:
    """Simple-average RSI over the last ``period`` changes."""
    if len(close) < period + 1:
        return None
    changes = close.diff().dropna().iloc[-period:]
    avg_gain = float(changes.clip(lower=0).mean())
    avg_loss = float((-changes.clip(upper=0)).mean())
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def macd(
    close: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9
) -> dict[str, float] | None:
    if len(close) < slow + signal:
        return None
    line = _ema(close, fast) - _ema(close, slow)
    signal_line = _ema(line, signal)
    current, current_signal = float(line.iloc[-1]), float(signal_line.iloc[-1])
    return {"macd": current, "signal": current_signal, "histogram": current - current_signal}


def pivot_points(high: float, low: float, close: float) -> dict[str, float]:
    """Floor-trader pivots."""
    pp = (high + low + close) / 3.0
    return {
        "pp": pp,
        "r1": 2 * pp - low,
        "r2": pp + (high - low),
        "s1": 2 * pp - high,
        "s2": pp - (high - low),
    }


def classify_volatility(
    atr: float | None, price: float | None, symbol: str | None = None
) -> VolatilityResult:
    """Map ATR as a fraction of price onto a volatility level and cycle interval.

    Missing inputs classify as ``medium``.
    """
    if atr is None or price is None or price == 0 or not math.isfinite(atr):
        return VolatilityResult(level="medium", interval_minutes=VOLATILITY_INTERVALS["medium"])

    ratio = atr / price
    level: VolatilityLevel
    if ratio >= VOLATILITY_THRESHOLDS["very_high"]:
        level = "very_high"
    elif ratio >= VOLATILITY_THRESHOLDS["high"]:
        level = "high"
    elif ratio >= VOLATILITY_THRESHOLDS["medium"]:
        level = "medium"
    else:
        level = "low"
    return VolatilityResult(
        level=level, interval_minutes=VOLATILITY_INTERVALS[level], atr=atr, symbol=symbol
    )


def most_volatile(results: Iterable[VolatilityResult]) -> VolatilityResult:
    """The result with the shortest interval; ``medium`` when there is none."""
    ranked = sorted(results, key=lambda r: r.interval_minutes)
    if not ranked:
        return VolatilityResult(level="medium", interval_minutes=VOLATILITY_INTERVALS["medium"])
    return ranked[0]


def clamp_interval(minutes: int) -> int:
    return max(MIN_INTERVAL_MINUTES, min(MAX_INTERVAL_MINUTES, minutes))


def _is_time_ascending(df: pd.DataFrame) -> bool:
    open_time = df.get("open_time")
    if open_time is None:
        return False
    return bool(pd.Series(open_time).is_monotonic_increasing)


def _ema(series: pd.Series, period: int) -> pd.Series:
    return series.ewm(span=period, adjust=False).mean()


def _atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
    high = df["high"].astype(float)
    low = df["low"].astype(float)
    close = df["close"].astype(float)
    prev_close = close.shift(1)
    tr_components = pd.concat(
        [
            (high - low).abs(),
            (high - prev_close).abs(),
            (low - prev_close).abs(),
        ],
        axis=1,
    )
    tr = tr_components.max(axis=1)
    return tr.rolling(window=period, min_periods=period).mean()


def _last(series: pd.Series) -> float | None:
    clean = series.dropna()
    if clean.empty:
        return None
    return float(clean.iloc[-1])
