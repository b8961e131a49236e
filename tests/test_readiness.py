from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from perp_trading.ai.agents import FALLBACK_NARRATIVE
from perp_trading.config import Settings
from perp_trading.risk.readiness import ReadinessChecker
from perp_trading.storage.models import MacroStrategy, MarketSnapshot, utcnow
from perp_trading.storage.store import Store

FEAR_GREED = {"fear_greed": {"value": 55, "classification": "Greed"}}


@pytest.fixture
def strict(settings: Settings) -> Settings:
    settings.readiness_require_macro = True
    settings.readiness_require_fresh_market_data = True
    settings.readiness_require_sentiment = True
    return settings


def _snapshot(
    store: Store, symbol: str, minutes_ago: int = 0, sentiment: dict[str, Any] | None = None
) -> None:
    store.save(
        MarketSnapshot(
            symbol=symbol,
            price=100.0,
            indicators={},
            sentiment=sentiment,
            captured_at=utcnow() - timedelta(minutes=minutes_ago),
        )
    )


def test_disabled_checks_always_pass(settings: Settings, store: Store) -> None:
    result = ReadinessChecker(settings, store).check()
    assert result.ready
    assert result.reason == ""


def test_nothing_stored_reports_every_gap(strict: Settings, store: Store) -> None:
    result = ReadinessChecker(strict, store).check()

    assert not result.ready
    assert result.missing == ["valid_macro_strategy", "fresh_market_data", "sentiment_data"]
    assert result.reason == "valid_macro_strategy, fresh_market_data, sentiment_data"


def test_fresh_data_with_active_macro_is_ready(
    strict: Settings, store: Store, active_macro: MacroStrategy
) -> None:
    _snapshot(store, "BTC", minutes_ago=1)
    _snapshot(store, "ETH", sentiment=FEAR_GREED)

    checker = ReadinessChecker(strict, store)

    assert checker.check().ready
    assert checker.status() == {
        "valid_macro_strategy": True,
        "fresh_market_data": True,
        "sentiment_available": True,
        "ready": True,
    }


def test_one_stale_asset_fails_market_data(
    strict: Settings, store: Store, active_macro: MacroStrategy
) -> None:
    _snapshot(store, "BTC", minutes_ago=10)
    _snapshot(store, "ETH", sentiment=FEAR_GREED)

    assert ReadinessChecker(strict, store).check().missing == ["fresh_market_data"]

    strict.readiness_market_data_max_age_min = 15
    assert ReadinessChecker(strict, store).check().ready


def test_fallback_macro_is_not_valid(strict: Settings, store: Store) -> None:
    store.save(
        MacroStrategy(
            market_narrative=FALLBACK_NARRATIVE,
            bias="neutral",
            risk_tolerance=0.5,
            key_levels={},
            valid_until=utcnow() + timedelta(hours=6),
        )
    )
    _snapshot(store, "BTC", minutes_ago=1)
    _snapshot(store, "ETH", sentiment=FEAR_GREED)

    assert ReadinessChecker(strict, store).check().missing == ["valid_macro_strategy"]


def test_sentiment_needs_a_fear_greed_value(
    strict: Settings, store: Store, active_macro: MacroStrategy
) -> None:
    _snapshot(store, "BTC", minutes_ago=1)
    _snapshot(store, "ETH", sentiment={"fear_greed": {"value": None}})

    assert ReadinessChecker(strict, store).check().missing == ["sentiment_data"]
