from __future__ import annotations

import pandas as pd  # type: ignore[import-untyped]
import pytest

from perp_trading.features.indicators import (
    clamp_interval,
    classify_volatility,
    compute_indicators,
    most_volatile,
    pivot_points,
    rsi,
)


def _candles(closes: list[float]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "open_time": pd.date_range("2026-03-01", periods=len(closes), freq="h", tz="UTC"),
            "open": closes,
            "high": [c + 1.0 for c in closes],
            "low": [c - 1.0 for c in closes],
            "close": closes,
            "volume": [10.0] * len(closes),
        }
    )


@pytest.mark.parametrize(
    ("atr", "level", "minutes"),
    [
        (3_500.0, "very_high", 3),
        (3_000.0, "very_high", 3),
        (2_000.0, "high", 6),
        (1_500.0, "medium", 12),
        (1_000.0, "medium", 12),
        (500.0, "low", 25),
    ],
)
def test_classify_volatility_levels(atr: float, level: str, minutes: int) -> None:
    result = classify_volatility(atr, 100_000.0, symbol="BTC")
    assert result.level == level
    assert result.interval_minutes == minutes
    assert result.atr == atr


def test_missing_inputs_classify_as_medium() -> None:
    assert classify_volatility(None, 100.0).level == "medium"
    assert classify_volatility(1.0, None).interval_minutes == 12
    assert classify_volatility(1.0, 0.0).level == "medium"
    assert classify_volatility(float("nan"), 100.0).level == "medium"


def test_most_volatile_picks_shortest_interval() -> None:
    results = [
        classify_volatility(500.0, 100_000.0, symbol="BTC"),
        classify_volatility(70.0, 3_000.0, symbol="ETH"),
        classify_volatility(2.0, 150.0, symbol="SOL"),
    ]
    winner = most_volatile(results)
    assert (winner.symbol, winner.level) == ("ETH", "high")
    assert most_volatile([]).level == "medium"


def test_clamp_interval() -> None:
    assert clamp_interval(1) == 3
    assert clamp_interval(12) == 12
    assert clamp_interval(40) == 25


def test_compute_indicators_rejects_bad_input() -> None:
    with pytest.raises(ValueError, match="input_ohlcv_empty"):
        compute_indicators(pd.DataFrame(columns=["open_time", "close"]))

    unordered = _candles([1.0, 2.0, 3.0]).iloc[::-1].reset_index(drop=True)
    with pytest.raises(ValueError, match="ohlcv_timestamp_not_ascending"):
        compute_indicators(unordered)


def test_compute_indicators_short_history() -> None:
    result = compute_indicators(_candles([100.0 + i for i in range(30)]))

    assert result["ema_20"] is not None
    assert result["ema_50"] is None
    assert result["ema_200"] is None
    assert result["macd"] is None
    assert result["rsi_14"] == 100.0
    assert result["atr_14"] == pytest.approx(2.0)


def test_compute_indicators_full_history() -> None:
    closes = [100.0 + (i % 7) - 3 for i in range(250)]
    result = compute_indicators(_candles(closes))

    assert result["ema_200"] is not None
    macd = result["macd"]
    assert isinstance(macd, dict)
    assert macd["histogram"] == pytest.approx(macd["macd"] - macd["signal"])
    rsi_value = result["rsi_14"]
    assert isinstance(rsi_value, float) and 0.0 <= rsi_value <= 100.0


def test_rsi_needs_enough_changes() -> None:
    assert rsi(pd.Series([1.0] * 14)) is None
    falling = pd.Series([float(30 - i) for i in range(20)])
    assert rsi(falling) == pytest.approx(0.0)


def test_pivot_points() -> None:
    pivots = pivot_points(high=110.0, low=90.0, close=100.0)
    assert pivots["pp"] == pytest.approx(100.0)
    assert pivots["r1"] == pytest.approx(110.0)
    assert pivots["s1"] == pytest.approx(90.0)
    assert pivots["r2"] == pytest.approx(120.0)
    assert pivots["s2"] == pytest.approx(80.0)
