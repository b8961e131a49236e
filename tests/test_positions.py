from __future__ import annotations

from typing import Any

import pytest

from perp_trading.exchange.base import ExchangeAPIError, ExchangePosition
from perp_trading.execution.positions import PositionManager
from perp_trading.storage.models import InvalidTransition, Order, Position
from perp_trading.storage.store import Store


def _position(direction: str = "long", **fields: Any) -> Position:
    values: dict[str, Any] = {
        "symbol": "BTC",
        "direction": direction,
        "size": 0.1,
        "entry_price": 100_000.0,
        "leverage": 3,
        "status": "open",
    }
    values.update(fields)
    return Position(**values)


def test_long_stop_loss_triggers_below_level() -> None:
    position = _position(stop_loss_price=95_000.0)
    position.update_current_price(94_000.0)

    assert position.stop_loss_triggered()
    assert position.unrealized_pnl == pytest.approx(-600.0)


def test_triggers_are_direction_symmetric() -> None:
    entry = 100_000.0
    for offset_sl, offset_tp, moves in [
        (5_000.0, 15_000.0, [-6_000.0, -5_000.0, -1.0, 0.0, 14_999.0, 15_000.0, 20_000.0]),
        (100.0, 250.0, [-150.0, -100.0, 0.0, 249.0, 250.0]),
    ]:
        long = _position(
            "long", stop_loss_price=entry - offset_sl, take_profit_price=entry + offset_tp
        )
        short = _position(
            "short", stop_loss_price=entry + offset_sl, take_profit_price=entry - offset_tp
        )
        for move in moves:
            assert long.stop_loss_triggered(entry + move) == short.stop_loss_triggered(entry - move)
            assert long.take_profit_triggered(entry + move) == short.take_profit_triggered(
                entry - move
            )


def test_no_trigger_without_levels_or_price() -> None:
    position = _position()
    assert not position.stop_loss_triggered(1.0)
    assert not position.take_profit_triggered(1_000_000.0)
    assert not _position(stop_loss_price=95_000.0).stop_loss_triggered()


def test_short_pnl_and_percent() -> None:
    position = _position("short", size=2.0, entry_price=3_000.0)
    position.update_current_price(2_700.0)

    assert position.unrealized_pnl == pytest.approx(600.0)
    assert position.pnl_percent == pytest.approx(10.0)
    assert position.margin_used == pytest.approx(2_000.0)


def test_position_close_transitions() -> None:
    position = _position()
    position.update_current_price(101_000.0)
    position.mark_closing()
    position.close("signal")

    assert position.is_closed
    assert position.realized_pnl == pytest.approx(100.0)
    with pytest.raises(InvalidTransition):
        position.close("manual")
    with pytest.raises(InvalidTransition):
        position.mark_closing()


def test_position_rejects_invalid_values() -> None:
    with pytest.raises(ValueError):
        _position(size=0.0)
    with pytest.raises(ValueError):
        _position(leverage=0)
    with pytest.raises(ValueError):
        _position(close_reason="bored")


def test_order_lifecycle() -> None:
    order = Order.build(symbol="BTC", side="buy", size=1.0)
    assert order.status == "pending"

    order.submit("abc")
    order.partially_fill(0.4, 100.0)
    assert order.remaining_size == pytest.approx(0.6)
    assert order.fill_percent == pytest.approx(40.0)

    order.fill(1.0, 100.5)
    assert order.is_terminal
    with pytest.raises(InvalidTransition):
        order.cancel()


def test_order_cannot_fill_before_submission() -> None:
    order = Order.build(symbol="BTC", side="sell", size=1.0)
    with pytest.raises(InvalidTransition):
        order.fill(1.0, 100.0)


def test_order_build_enforces_price_invariants() -> None:
    with pytest.raises(ValueError):
        Order.build(symbol="BTC", side="buy", size=1.0, order_type="limit")
    with pytest.raises(ValueError):
        Order.build(symbol="BTC", side="buy", size=1.0, order_type="stop_limit", price=100.0)
    with pytest.raises(ValueError):
        Order.build(symbol="BTC", side="hold", size=1.0)
    with pytest.raises(ValueError):
        Order.build(symbol="BTC", side="buy", size=0.0)


def test_one_open_position_per_symbol_and_direction(store: Store, exchange: object) -> None:
    manager = PositionManager(store, exchange)  # type: ignore[arg-type]
    first = manager.create(
        symbol="BTC", direction="long", size=0.1, entry_price=100_000.0, leverage=3
    )
    duplicate = manager.create(
        symbol="BTC", direction="long", size=0.2, entry_price=101_000.0, leverage=3
    )
    short = manager.create(
        symbol="BTC", direction="short", size=0.1, entry_price=100_000.0, leverage=3
    )

    assert first is not None
    assert duplicate is None
    assert short is not None
    assert store.open_position_count() == 2

    manager.close(first, 101_000.0, "signal")
    reopened = manager.create(
        symbol="BTC", direction="long", size=0.1, entry_price=101_000.0, leverage=3
    )
    assert reopened is not None


def test_reduce_books_partial_pnl(store: Store, exchange: object) -> None:
    manager = PositionManager(store, exchange)  # type: ignore[arg-type]
    position = manager.create(
        symbol="ETH", direction="long", size=2.0, entry_price=3_000.0, leverage=2
    )
    assert position is not None

    partial = manager.reduce(position, 0.5, 3_200.0)
    assert partial == pytest.approx(100.0)

    leg = manager.close(position, 3_100.0, "signal")
    assert leg == pytest.approx(150.0)
    stored = store.get(Position, position.id)
    assert stored is not None
    assert stored.status == "closed"
    assert stored.realized_pnl == pytest.approx(250.0)


def test_sync_creates_updates_and_closes(store: Store, exchange: Any) -> None:
    manager = PositionManager(store, exchange)
    stale = manager.create(
        symbol="ETH", direction="short", size=1.0, entry_price=3_000.0, leverage=2
    )
    kept = manager.create(
        symbol="BTC", direction="long", size=0.1, entry_price=99_000.0, leverage=3
    )
    assert stale is not None and kept is not None

    exchange.positions = [
        ExchangePosition(
            symbol="BTC", direction="long", size=0.2, entry_price=99_500.0, mark_price=100_000.0,
            unrealized_pnl=100.0, leverage=5,
        ),
        ExchangePosition(symbol="SOL", direction="long", size=10.0, entry_price=150.0, leverage=2),
    ]
    changes = manager.sync_from_exchange()

    assert changes == {"created": 1, "updated": 1, "closed": 1}
    closed = store.get(Position, stale.id)
    assert closed is not None and closed.close_reason == "manual"
    btc = store.open_position("BTC", "long")
    assert btc is not None and btc.size == 0.2 and btc.leverage == 5
    assert store.open_position("SOL") is not None


def test_sync_failure_is_logged_and_raised(store: Store, exchange: Any) -> None:
    exchange.fail_positions = True
    with pytest.raises(ExchangeAPIError):
        PositionManager(store, exchange).sync_from_exchange()
    assert store.recent_execution_logs(1)[0].status == "failure"
