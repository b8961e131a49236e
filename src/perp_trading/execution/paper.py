"""Paper trading broker: simulated fills against live mid prices."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from sqlalchemy import func, select

from perp_trading.config import Settings
from perp_trading.exchange.base import (
    AccountState,
    ExchangeAPIError,
    ExchangePosition,
    OrderAck,
    OrderStatus,
)
from perp_trading.storage.models import Position
from perp_trading.storage.store import Store
from perp_trading.utils.logging import get_logger


class PaperBroker:
    """Exchange stand-in for paper mode.

    Market orders fill immediately and completely at the current mid
    (optionally worsened by ``slippage_bps``). Account value is the initial
    paper equity plus realized P&L of closed positions plus unrealized P&L
    of open ones; positions are the locally stored open positions.
    """

    def __init__(
        self,
        settings: Settings,
        store: Store,
        mids: Callable[[], dict[str, float]],
        *,
        slippage_bps: float = 0.0,
    ) -> None:
        self._settings = settings
        self._store = store
        self._mids = mids
        self._slippage_bps = slippage_bps
        self._fills: dict[str, OrderStatus] = {}
        self._logger = get_logger(__name__)

    def account_state(self) -> AccountState:
        with self._store.session() as session:
            realized = session.scalar(
                select(func.coalesce(func.sum(Position.realized_pnl), 0.0)).where(
                    Position.status == "closed"
                )
            )
        open_positions = self._store.open_positions()
        unrealized = sum(p.unrealized_pnl or 0.0 for p in open_positions)
        margin_used = sum(p.margin_used for p in open_positions)
        account_value = self._settings.paper_initial_equity + float(realized or 0.0) + unrealized
        return AccountState(
            account_value=account_value,
            margin_used=margin_used,
            available_margin=max(account_value - margin_used, 0.0),
        )

    def open_positions(self) -> list[ExchangePosition]:
        return [
            ExchangePosition(
                symbol=p.symbol,
                direction="long" if p.is_long else "short",
                size=p.size,
                entry_price=p.entry_price,
                mark_price=p.current_price,
                unrealized_pnl=p.unrealized_pnl or 0.0,
                leverage=p.leverage,
                margin_used=p.margin_used,
            )
            for p in self._store.open_positions()
        ]

    def open_orders(self) -> list[dict[str, Any]]:
        return []

    def all_mids(self) -> dict[str, float]:
        return self._mids()

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
        mid = self._mids().get(symbol)
        if mid is None:
            raise ExchangeAPIError(f"no mid price available for {symbol}")
        slip = self._slippage_bps / 10_000.0
        fill_price = mid * (1.0 + slip) if side == "buy" else mid * (1.0 - slip)

        order_id = f"PAPER-{uuid.uuid4().hex[:12]}"
        self._fills[order_id] = OrderStatus(
            status="filled", filled_size=size, average_price=fill_price
        )
        self._logger.debug(
            "paper_fill",
            symbol=symbol,
            side=side,
            size=size,
            price=fill_price,
            order_id=order_id,
        )
        return OrderAck(
            exchange_order_id=order_id,
            status="filled",
            filled_size=size,
            average_price=fill_price,
        )

    def order_status(self, symbol: str, exchange_order_id: str) -> OrderStatus:
        status = self._fills.get(exchange_order_id)
        if status is None:
            raise ExchangeAPIError(f"unknown paper order {exchange_order_id}")
        return status

    def cancel_order(self, symbol: str, exchange_order_id: str) -> None:
        # paper orders are filled on placement; nothing is ever resting
        return None
