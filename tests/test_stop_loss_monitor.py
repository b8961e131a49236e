from __future__ import annotations

from typing import Any

import pytest

from perp_trading.app import Services, build_services
from perp_trading.config import Settings
from perp_trading.storage.models import Position
from perp_trading.storage.store import Store


def _open_position(services: Services, **fields: Any) -> Position:
    values: dict[str, Any] = {
        "symbol": "BTC",
        "direction": "long",
        "size": 0.01,
        "entry_price": 100_000.0,
        "leverage": 3,
        "stop_loss_price": 95_000.0,
        "take_profit_price": 115_000.0,
    }
    values.update(fields)
    position = services.positions.create(**values)
    assert position is not None
    return position


def test_stop_loss_closes_long(services: Services, prices: dict[str, float]) -> None:
    position = _open_position(services)
    prices["BTC"] = 94_000.0

    result = services.monitor.check_all_positions()

    assert result.triggered == 1
    assert result.closed_position_ids == [position.id]
    closed = services.store.get(Position, position.id)
    assert closed is not None
    assert closed.status == "closed"
    assert closed.close_reason == "sl_triggered"
    assert closed.realized_pnl == pytest.approx(-60.0)

    decision = services.store.recent_decisions(1)[0]
    assert decision.operation == "close"
    assert decision.status == "executed"
    logs = services.store.execution_logs_for("position", position.id)
    assert logs[-1].action == "risk_trigger"
    assert logs[-1].status == "success"


def test_take_profit_closes_short(services: Services, prices: dict[str, float]) -> None:
    position = _open_position(
        services,
        symbol="ETH",
        direction="short",
        size=1.0,
        entry_price=3_000.0,
        stop_loss_price=3_300.0,
        take_profit_price=2_700.0,
    )
    prices["ETH"] = 2_650.0

    result = services.monitor.check_all_positions()

    assert result.triggered == 1
    closed = services.store.get(Position, position.id)
    assert closed is not None
    assert closed.close_reason == "tp_triggered"
    assert closed.realized_pnl == pytest.approx(350.0)
    assert services.breaker.consecutive_losses() == 0


def test_untriggered_position_gets_price_refresh(
    services: Services, prices: dict[str, float]
) -> None:
    position = _open_position(services)
    prices["BTC"] = 101_000.0

    result = services.monitor.check_all_positions()

    assert (result.triggered, result.checked, result.skipped) == (0, 1, 0)
    refreshed = services.store.get(Position, position.id)
    assert refreshed is not None
    assert refreshed.current_price == 101_000.0
    assert refreshed.unrealized_pnl == pytest.approx(10.0)


def test_positions_without_levels_or_price_are_skipped(
    services: Services, prices: dict[str, float]
) -> None:
    unguarded = _open_position(services, stop_loss_price=None, take_profit_price=None)
    _open_position(
        services, symbol="SOL", entry_price=150.0, stop_loss_price=140.0, take_profit_price=None
    )
    prices["BTC"] = 101_000.0

    result = services.monitor.check_all_positions()

    assert (result.triggered, result.checked, result.skipped) == (0, 0, 2)
    refreshed = services.store.get(Position, unguarded.id)
    assert refreshed is not None
    assert refreshed.current_price == 101_000.0
    assert refreshed.peak_price == 101_000.0


def test_stop_loss_close_counts_as_loss(services: Services, prices: dict[str, float]) -> None:
    _open_position(services)
    prices["BTC"] = 90_000.0

    services.monitor.check_all_positions()

    assert services.breaker.consecutive_losses() == 1
    assert services.breaker.daily_loss() == pytest.approx(100.0)


def test_no_positions_is_a_no_op(services: Services) -> None:
    result = services.monitor.check_all_positions()
    assert (result.triggered, result.checked, result.skipped) == (0, 0, 0)


def test_price_fetch_failure_skips_all_positions(
    settings: Settings, store: Store, exchange: Any, judgment: Any
) -> None:
    services = build_services(settings, store=store, client=exchange, judgment=judgment)
    _open_position(services)
    _open_position(services, symbol="ETH", entry_price=3_000.0, stop_loss_price=2_800.0)
    exchange.fail_mids = True

    result = services.monitor.check_all_positions()

    assert (result.triggered, result.checked, result.skipped) == (0, 0, 2)
    assert store.open_position_count() == 2
