"""Hyperliquid client over the public info API."""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from perp_trading.config import Settings
from perp_trading.exchange.base import (
    AccountState,
    ExchangeAPIError,
    ExchangePosition,
    OrderAck,
    OrderState,
    OrderStatus,
)
from perp_trading.utils.coerce import coerce_float, coerce_int
from perp_trading.utils.logging import get_logger

_ORDER_STATES: dict[str, OrderState] = {
    "open": "open",
    "filled": "filled",
    "canceled": "cancelled",
    "marginCanceled": "cancelled",
    "rejected": "rejected",
}


class _TransientError(Exception):
    """Transport failure or 5xx; retried."""


class HyperliquidClient:
    """Reads account state, positions, orders and mids.

    Order writes need an EIP-712 signing backend, which this client does not
    carry; they raise ExchangeAPIError so the executor marks the order failed.
    """

    def __init__(self, settings: Settings, http: httpx.Client | None = None) -> None:
        self._settings = settings
        self._http = http or httpx.Client(
            base_url=settings.hyperliquid_api_url,
            timeout=settings.hyperliquid_timeout,
        )
        self._logger = get_logger(__name__)

    @property
    def address(self) -> str:
        if not self._settings.hyperliquid_address:
            raise ExchangeAPIError("hyperliquid address is not configured (HYPERLIQUID_ADDRESS)")
        return self._settings.hyperliquid_address

    # ==================== reads ====================

    def account_state(self) -> AccountState:
        state = self._info({"type": "clearinghouseState", "user": self.address})
        summary = state.get("marginSummary") or {}
        account_value = coerce_float(summary.get("accountValue")) or 0.0
        margin_used = coerce_float(summary.get("totalMarginUsed")) or 0.0
        withdrawable = coerce_float(state.get("withdrawable"))
        available = withdrawable if withdrawable is not None else account_value - margin_used
        return AccountState(
            account_value=account_value,
            margin_used=margin_used,
            available_margin=max(available, 0.0),
        )

    def open_positions(self) -> list[ExchangePosition]:
        state = self._info({"type": "clearinghouseState", "user": self.address})
        positions: list[ExchangePosition] = []
        for item in state.get("assetPositions") or []:
            data = item.get("position") or {}
            signed_size = coerce_float(data.get("szi")) or 0.0
            if signed_size == 0:
                continue
            size = abs(signed_size)
            leverage = data.get("leverage") or {}
            position_value = coerce_float(data.get("positionValue"))
            positions.append(
                ExchangePosition(
                    symbol=str(data.get("coin")),
                    direction="long" if signed_size > 0 else "short",
                    size=size,
                    entry_price=coerce_float(data.get("entryPx")) or 0.0,
                    mark_price=position_value / size if position_value else None,
                    unrealized_pnl=coerce_float(data.get("unrealizedPnl")) or 0.0,
                    leverage=coerce_int(leverage.get("value")) or 1,
                    liquidation_price=coerce_float(data.get("liquidationPx")),
                    margin_used=coerce_float(data.get("marginUsed")) or 0.0,
                )
            )
        return positions

    def open_orders(self) -> list[dict[str, Any]]:
        orders = self._info({"type": "openOrders", "user": self.address})
        return list(orders) if isinstance(orders, list) else []

    def all_mids(self) -> dict[str, float]:
        mids = self._info({"type": "allMids"})
        result: dict[str, float] = {}
        for symbol, raw in (mids or {}).items():
            price = coerce_float(raw)
            if price is not None:
                result[symbol] = price
        return result

    def order_status(self, symbol: str, exchange_order_id: str) -> OrderStatus:
        oid = coerce_int(exchange_order_id)
        if oid is None:
            raise ExchangeAPIError(f"invalid order id: {exchange_order_id}")
        payload = self._info({"type": "orderStatus", "user": self.address, "oid": oid})
        if payload.get("status") != "order":
            raise ExchangeAPIError(f"unknown order {exchange_order_id} for {symbol}")
        order_info = payload.get("order") or {}
        order = order_info.get("order") or {}
        original = coerce_float(order.get("origSz")) or 0.0
        remaining = coerce_float(order.get("sz")) or 0.0
        filled = max(original - remaining, 0.0)
        state = _ORDER_STATES.get(str(order_info.get("status")), "open")
        if state == "open" and filled > 0:
            state = "partially_filled"
        return OrderStatus(
            status=state,
            filled_size=filled,
            average_price=coerce_float(order.get("limitPx")),
        )

    # ==================== writes ====================

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
        raise ExchangeAPIError(
            f"cannot place {order_type} {side} {size} {symbol}: "
            "no order signing backend is configured for live trading"
        )

    def cancel_order(self, symbol: str, exchange_order_id: str) -> None:
        raise ExchangeAPIError(
            f"cannot cancel order {exchange_order_id} on {symbol}: "
            "no order signing backend is configured for live trading"
        )

    # ==================== transport ====================

    def _info(self, body: dict[str, Any]) -> Any:
        try:
            return self._post_info(body)
        except _TransientError as exc:
            self._logger.error(
                "hyperliquid_request_failed", request=body.get("type"), error=str(exc)
            )
            raise ExchangeAPIError(f"hyperliquid API error: {exc}") from exc

    @retry(
        retry=retry_if_exception_type(_TransientError),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _post_info(self, body: dict[str, Any]) -> Any:
        try:
            response = self._http.post("/info", json=body)
        except httpx.HTTPError as exc:
            raise _TransientError(str(exc)) from exc
        if response.status_code >= 500:
            raise _TransientError(f"status {response.status_code}")
        if response.status_code >= 400:
            raise ExchangeAPIError(
                f"hyperliquid rejected {body.get('type')}: {response.status_code} {response.text}"
            )
        return response.json()
