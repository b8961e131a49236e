"""Exchange capability consumed by the execution layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

OrderState = Literal["open", "filled", "partially_filled", "cancelled", "rejected"]


class ExchangeAPIError(Exception):
    """Raised by exchange clients for any transport, request or exchange-side failure."""


@dataclass(slots=True)
class AccountState:
    account_value: float
    margin_used: float
    available_margin: float


@dataclass(slots=True)
class ExchangePosition:
    symbol: str
    direction: Literal["long", "short"]
    size: float
    entry_price: float
    mark_price: float | None = None
    unrealized_pnl: float = 0.0
    leverage: int = 1
    liquidation_price: float | None = None
    margin_used: float = 0.0


@dataclass(slots=True)
class OrderAck:
    exchange_order_id: str
    status: OrderState = "open"
    filled_size: float = 0.0
    average_price: float | None = None


@dataclass(slots=True)
class OrderStatus:
    status: OrderState
    filled_size: float = 0.0
    average_price: float | None = None


class ExchangeClient(Protocol):
    """Synchronous exchange operations. All of them may raise ExchangeAPIError."""

    def account_state(self) -> AccountState: ...

    def open_positions(self) -> list[ExchangePosition]: ...

    def open_orders(self) -> list[dict[str, Any]]: ...

    def all_mids(self) -> dict[str, float]: ...

    def place_order(
        self,
        symbol: str,
        side: str,
        size: float,
        order_type: str = "market",
        price: float | None = None,
        stop_price: float | None = None,
        reduce_only: bool = False,
    ) -> OrderAck: ...

    def order_status(self, symbol: str, exchange_order_id: str) -> OrderStatus: ...

    def cancel_order(self, symbol: str, exchange_order_id: str) -> None: ...
