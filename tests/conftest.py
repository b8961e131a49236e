from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest

from perp_trading.ai.openrouter_client import JudgmentResult
from perp_trading.app import Services, build_services
from perp_trading.config import Settings
from perp_trading.exchange.base import (
    AccountState,
    ExchangeAPIError,
    ExchangePosition,
    OrderAck,
    OrderState,
    OrderStatus,
)
from perp_trading.execution.paper import PaperBroker
from perp_trading.journal.store import JournalStore
from perp_trading.storage.models import MacroStrategy, MarketSnapshot, TradingDecision, utcnow
from perp_trading.storage.store import Store


class _FakeJudgment:
    """Replays scripted results; an empty script answers with an api_error."""

    def __init__(self) -> None:
        self.model = "test/model"
        self.results: list[JudgmentResult] = []
        self.calls: list[tuple[str, str]] = []

    def reply(self, text: str) -> None:
        self.results.append(JudgmentResult(status="success", text=text, model=self.model))

    def fail(self, status: str, error: str) -> None:
        result = JudgmentResult(status=status, error=error, model=self.model)  # type: ignore[arg-type]
        self.results.append(result)

    def complete(self, system_prompt: str, user_prompt: str) -> JudgmentResult:
        self.calls.append((system_prompt, user_prompt))
        if not self.results:
            return JudgmentResult(
                status="api_error", error="no scripted response", model=self.model
            )
        return self.results.pop(0)


class _FakeExchange:
    """In-memory exchange; fills, statuses and failures are set by the test."""

    def __init__(self, mids: dict[str, float]) -> None:
        self.mids = mids
        self.account = AccountState(
            account_value=10_000.0, margin_used=0.0, available_margin=10_000.0
        )
        self.positions: list[ExchangePosition] = []
        self.placed: list[dict[str, Any]] = []
        self.cancelled: list[str] = []
        self.ack_status: OrderState = "filled"
        self.fill_fraction = 1.0
        self.statuses: list[OrderStatus] = []
        self.fail_orders = False
        self.fail_mids = False
        self.fail_positions = False

    def account_state(self) -> AccountState:
        return self.account

    def open_positions(self) -> list[ExchangePosition]:
        if self.fail_positions:
            raise ExchangeAPIError("positions unavailable")
        return list(self.positions)

    def open_orders(self) -> list[dict[str, Any]]:
        return []

    def all_mids(self) -> dict[str, float]:
        if self.fail_mids:
            raise ExchangeAPIError("mids unavailable")
        return dict(self.mids)

    def place_order(
        self,
        symbol: str,
        side: str,
        size: float,
        order_type: str = "market",
        price: float | None = None,
        stop_price: float | None = None,
        reduce_only: bool = False,
    ) -> OrderAck:
        if self.fail_orders:
            raise ExchangeAPIError("order rejected by exchange")
        self.placed.append(
            {"symbol": symbol, "side": side, "size": size, "reduce_only": reduce_only}
        )
        order_id = f"X{len(self.placed)}"
        if self.ack_status != "filled":
            return OrderAck(exchange_order_id=order_id, status=self.ack_status)
        return OrderAck(
            exchange_order_id=order_id,
            status="filled",
            filled_size=size * self.fill_fraction,
            average_price=self.mids[symbol],
        )

    def order_status(self, symbol: str, exchange_order_id: str) -> OrderStatus:
        if self.statuses:
            return self.statuses.pop(0)
        return OrderStatus(status="open")

    def cancel_order(self, symbol: str, exchange_order_id: str) -> None:
        self.cancelled.append(exchange_order_id)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        mode="paper",
        assets=["BTC", "ETH"],
        openrouter_api_key="test-key",
        database_url="sqlite://",
        journal_dir=tmp_path / "journal",
        fill_poll_attempts=3,
        fill_poll_interval_sec=0.0,
        readiness_require_macro=False,
        readiness_require_fresh_market_data=False,
        readiness_require_sentiment=False,
    )


@pytest.fixture
def store() -> Store:
    return Store("sqlite://")


@pytest.fixture
def prices() -> dict[str, float]:
    return {"BTC": 100_000.0, "ETH": 3_000.0}


@pytest.fixture
def judgment() -> _FakeJudgment:
    return _FakeJudgment()


@pytest.fixture
def exchange(prices: dict[str, float]) -> _FakeExchange:
    return _FakeExchange(prices)


@pytest.fixture
def paper_broker(settings: Settings, store: Store, prices: dict[str, float]) -> PaperBroker:
    return PaperBroker(settings, store, lambda: prices)


@pytest.fixture
def journal(settings: Settings) -> JournalStore:
    return JournalStore(settings.journal_dir)


@pytest.fixture
def services(
    settings: Settings,
    store: Store,
    paper_broker: PaperBroker,
    judgment: _FakeJudgment,
    journal: JournalStore,
) -> Services:
    return build_services(
        settings, store=store, client=paper_broker, judgment=judgment, journal=journal
    )


@pytest.fixture
def make_decision(store: Store) -> Callable[..., TradingDecision]:
    def _make(
        symbol: str = "BTC",
        operation: str = "open",
        direction: str | None = "long",
        confidence: float | None = 0.8,
        status: str = "approved",
        **fields: Any,
    ) -> TradingDecision:
        parsed = {"operation": operation, "symbol": symbol, "confidence": confidence}
        if direction is not None:
            parsed["direction"] = direction
        parsed.update(fields)
        decision = TradingDecision(
            symbol=symbol,
            operation=operation,
            direction=direction,
            confidence=confidence,
            status=status,
            parsed_decision=parsed,
        )
        store.save(decision)
        return decision

    return _make


@pytest.fixture
def make_snapshot(store: Store) -> Callable[..., MarketSnapshot]:
    def _make(
        symbol: str = "BTC",
        price: float = 100_000.0,
        atr: float | None = None,
        minutes_ago: int = 0,
        **indicators: Any,
    ) -> MarketSnapshot:
        snapshot = MarketSnapshot(
            symbol=symbol,
            price=price,
            indicators={"atr_14": atr, **indicators},
            captured_at=utcnow() - timedelta(minutes=minutes_ago),
        )
        store.save(snapshot)
        return snapshot

    return _make


@pytest.fixture
def active_macro(store: Store) -> MacroStrategy:
    strategy = MacroStrategy(
        market_narrative="Range-bound market with fading momentum",
        bias="neutral",
        risk_tolerance=0.5,
        key_levels={"BTC": {"support": [95_000], "resistance": [105_000]}},
        valid_until=utcnow() + timedelta(hours=12),
    )
    store.save(strategy)
    return strategy
