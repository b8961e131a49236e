"""Turns an approved decision into an order and a position change."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_fixed

from perp_trading.config import RiskProfileParams, Settings
from perp_trading.exchange.base import ExchangeAPIError, ExchangeClient, OrderStatus
from perp_trading.execution.account import AccountManager
from perp_trading.execution.positions import PositionManager
from perp_trading.risk.circuit_breaker import CircuitBreaker
from perp_trading.risk.profiles import ProfileService, TradingModeService
from perp_trading.risk.sizing import PositionSizer, SizingError
from perp_trading.storage.models import ExecutionLog, Order, Position, TradingDecision
from perp_trading.storage.store import Store
from perp_trading.types import ExecutionResult
from perp_trading.utils.logging import get_logger, log_decision, log_order_execution

_PENDING_FILL_STATES = ("open", "partially_filled")


def order_side(operation: str, direction: str) -> str:
    """buy for long-open and short-close, sell for short-open and long-close."""
    opening_long = direction == "long"
    if operation == "open":
        return "buy" if opening_long else "sell"
    return "sell" if opening_long else "buy"


class OrderExecutor:
    """Executes open/close decisions against the exchange or the paper broker.

    Rejections (decision -> ``rejected``) happen before any order exists:
    hold; confidence below the profile minimum; an open while the breaker or
    trading mode forbids opens; a close while the mode forbids closes; an open
    duplicating an existing symbol+direction position; insufficient margin or
    too many open positions; a close with nothing to close. Exchange errors
    after that point mark the decision ``failed``.
    """

    def __init__(
        self,
        settings: Settings,
        store: Store,
        client: ExchangeClient,
        accounts: AccountManager,
        positions: PositionManager,
        profiles: ProfileService,
        modes: TradingModeService,
        breaker: CircuitBreaker,
        sizer: PositionSizer,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._store = store
        self._client = client
        self._accounts = accounts
        self._positions = positions
        self._profiles = profiles
        self._modes = modes
        self._breaker = breaker
        self._sizer = sizer
        self._sleep = sleep
        self._logger = get_logger(__name__)

    def execute(self, decision: TradingDecision, close_reason: str = "signal") -> ExecutionResult:
        profile = self._profiles.current_params()

        reason = self._gate(decision, profile)
        if reason is None and decision.is_close and self._position_to_close(decision) is None:
            reason = f"No open position for {decision.symbol}"
        if reason is not None:
            return self._reject(decision, reason)

        try:
            price = self._current_price(decision.symbol)
            if decision.is_open:
                return self._open(decision, price, profile)
            position = self._position_to_close(decision)
            assert position is not None
            return self._close(decision, position, price, close_reason)
        except (ExchangeAPIError, SizingError) as exc:
            return self._fail(decision, str(exc))

    # ==================== gates ====================

    def _gate(self, decision: TradingDecision, profile: RiskProfileParams) -> str | None:
        if decision.is_hold:
            return "Cannot execute hold operations"

        confidence = decision.confidence if decision.confidence is not None else 0.0
        if confidence < profile.min_confidence:
            return f"Confidence {confidence} below minimum {profile.min_confidence}"

        if decision.is_open:
            if not self._breaker.trading_allowed():
                return f"Circuit breaker active: {self._breaker.blocked_reason()}"
            mode = self._modes.current()
            if not mode.can_open:
                return f"Trading mode is {mode.mode}: opening positions is not allowed"
            if decision.direction is None:
                return "Open decision has no direction"
            if self._positions.has_open_position(decision.symbol, decision.direction):
                return f"Already have open {decision.direction} position for {decision.symbol}"
        else:
            mode = self._modes.current()
            if not mode.can_close:
                return f"Trading mode is {mode.mode}: closing positions is not allowed"
        return None

    def _position_to_close(self, decision: TradingDecision) -> Position | None:
        return self._positions.open_position(decision.symbol, decision.direction)

    # ==================== open ====================

    def _open(
        self, decision: TradingDecision, price: float, profile: RiskProfileParams
    ) -> ExecutionResult:
        assert decision.direction is not None
        leverage = decision.leverage or profile.default_leverage
        stop_loss = decision.stop_loss
        account_value = self._accounts.account_value()
        size = self._open_size(decision, price, account_value, profile)
        if size <= 0:
            return self._reject(decision, f"Computed position size {size} is not positive")

        margin_required = self._accounts.margin_for_position(size, price, leverage)
        if not self._accounts.can_trade(margin_required, profile.max_open_positions):
            return self._reject(decision, "Insufficient margin or position limit reached")

        side = order_side("open", decision.direction)
        order = Order.build(
            symbol=decision.symbol,
            side=side,
            size=size,
            trading_decision_id=decision.id,
        )
        self._store.save(order)
        filled_size, fill_price = self._submit_and_await(order, reference_price=price)

        position = self._positions.create(
            symbol=decision.symbol,
            direction=decision.direction,
            size=filled_size,
            entry_price=fill_price,
            leverage=leverage,
            stop_loss_price=stop_loss,
            take_profit_price=decision.take_profit,
            risk_amount=self._sizer.risk_amount(filled_size, fill_price, stop_loss),
        )
        if position is None:
            raise ExchangeAPIError(
                f"order filled but an open {decision.direction} position for "
                f"{decision.symbol} already exists"
            )
        order.position_id = position.id
        self._store.save(order)
        return self._succeed(
            decision,
            ExecutionResult(
                success=True,
                decision_id=decision.id,
                order_id=order.id,
                position_id=position.id,
                fill_price=fill_price,
                filled_size=filled_size,
            ),
        )

    def _open_size(
        self,
        decision: TradingDecision,
        price: float,
        account_value: float,
        profile: RiskProfileParams,
    ) -> float:
        """Target fraction of account value; risk-based sizing when no fraction is given."""
        if decision.target_position is not None:
            return decision.target_position * account_value / price
        if decision.stop_loss is not None:
            return self._sizer.calculate(
                price, decision.stop_loss, decision.direction or "long", account_value=account_value
            ).size
        return profile.max_position_size * account_value / price

    # ==================== close ====================

    def _close(
        self,
        decision: TradingDecision,
        position: Position,
        price: float,
        close_reason: str,
    ) -> ExecutionResult:
        side = order_side("close", position.direction)
        order = Order.build(
            symbol=position.symbol,
            side=side,
            size=position.size,
            trading_decision_id=decision.id,
            position_id=position.id,
        )
        position.mark_closing()
        self._store.save(order, position)
        try:
            filled_size, fill_price = self._submit_and_await(
                order, reference_price=price, reduce_only=True
            )
        except ExchangeAPIError:
            position.reopen()
            self._store.save(position)
            raise

        if filled_size >= position.size:
            realized = self._positions.close(position, fill_price, close_reason)
        else:
            position.reopen()
            realized = self._positions.reduce(position, filled_size, fill_price)

        if realized < 0:
            self._breaker.record_loss(realized)
        else:
            self._breaker.record_win(realized)

        return self._succeed(
            decision,
            ExecutionResult(
                success=True,
                decision_id=decision.id,
                order_id=order.id,
                position_id=position.id,
                fill_price=fill_price,
                filled_size=filled_size,
                realized_pnl=realized,
            ),
        )

    # ==================== orders ====================

    def _submit_and_await(
        self, order: Order, *, reference_price: float, reduce_only: bool = False
    ) -> tuple[float, float]:
        """Place the order and wait for a fill. Returns (filled size, average price)."""
        request = self._order_request(order, reduce_only)
        try:
            ack = self._client.place_order(
                order.symbol,
                order.side,
                order.size,
                order_type=order.order_type,
                price=order.price,
                stop_price=order.stop_price,
                reduce_only=reduce_only,
            )
        except ExchangeAPIError as exc:
            order.fail(str(exc))
            self._store.save(
                order,
                ExecutionLog.record(
                    "place_order",
                    success=False,
                    target=("order", order.id),
                    request=request,
                    error=str(exc),
                ),
            )
            raise

        order.submit(ack.exchange_order_id)
        status = OrderStatus(
            status=ack.status,
            filled_size=ack.filled_size,
            average_price=ack.average_price,
        )
        if status.status in _PENDING_FILL_STATES:
            self._store.save(order)
            status = self._await_fill(order)

        fill_price = status.average_price or reference_price
        response: dict[str, Any] = {
            "exchange_order_id": order.exchange_order_id,
            "status": status.status,
            "filled_size": status.filled_size,
            "average_price": fill_price,
        }

        if status.status == "filled":
            order.fill(status.filled_size or order.size, fill_price)
        elif status.filled_size > 0:
            order.partially_fill(status.filled_size, fill_price)
            self._cancel_remainder(order)
        else:
            error = (
                f"order {order.exchange_order_id} {status.status} by exchange"
                if status.status in ("cancelled", "rejected")
                else f"order {order.exchange_order_id} not filled in time"
            )
            if status.status == "open":
                self._cancel_remainder(order)
            else:
                order.fail(error)
            self._store.save(
                order,
                ExecutionLog.record(
                    "place_order",
                    success=False,
                    target=("order", order.id),
                    request=request,
                    response=response,
                    error=error,
                ),
            )
            raise ExchangeAPIError(error)

        self._store.save(
            order,
            ExecutionLog.record(
                "place_order",
                success=True,
                target=("order", order.id),
                request=request,
                response=response,
            ),
        )
        log_order_execution(
            self._logger,
            symbol=order.symbol,
            order_id=order.id,
            side=order.side,
            status=order.status,
            filled_size=order.filled_size,
            price=fill_price,
            exchange_order_id=order.exchange_order_id,
            paper=self._settings.is_paper_mode,
        )
        return order.filled_size, fill_price

    def _await_fill(self, order: Order) -> OrderStatus:
        assert order.exchange_order_id is not None
        poller = Retrying(
            retry=retry_if_result(lambda status: status.status in _PENDING_FILL_STATES),
            stop=stop_after_attempt(self._settings.fill_poll_attempts),
            wait=wait_fixed(self._settings.fill_poll_interval_sec),
            retry_error_callback=lambda state: state.outcome.result(),
            sleep=self._sleep,
        )
        return poller(self._client.order_status, order.symbol, order.exchange_order_id)

    def _cancel_remainder(self, order: Order) -> None:
        assert order.exchange_order_id is not None
        try:
            self._client.cancel_order(order.symbol, order.exchange_order_id)
        except ExchangeAPIError as exc:
            self._logger.error(
                "cancel_failed", order_id=order.exchange_order_id, error=str(exc)
            )
            self._store.save(
                ExecutionLog.record(
                    "cancel_order", success=False, target=("order", order.id), error=str(exc)
                )
            )
            return
        order.cancel("fill timeout")
        self._store.save(
            ExecutionLog.record("cancel_order", success=True, target=("order", order.id))
        )

    def _order_request(self, order: Order, reduce_only: bool) -> dict[str, Any]:
        return {
            "symbol": order.symbol,
            "side": order.side,
            "size": order.size,
            "order_type": order.order_type,
            "reduce_only": reduce_only,
            "paper": self._settings.is_paper_mode,
        }

    def _current_price(self, symbol: str) -> float:
        price = self._client.all_mids().get(symbol)
        if price is None:
            raise ExchangeAPIError(f"no price available for {symbol}")
        return price

    # ==================== decision outcomes ====================

    def _reject(self, decision: TradingDecision, reason: str) -> ExecutionResult:
        decision.reject(reason)
        self._store.save(decision)
        log_decision(
            self._logger,
            symbol=decision.symbol,
            operation=decision.operation,
            status=decision.status,
            decision_id=decision.id,
            reason=reason,
        )
        return ExecutionResult(success=False, decision_id=decision.id, error=reason)

    def _fail(self, decision: TradingDecision, error: str) -> ExecutionResult:
        decision.mark_failed(error)
        self._store.save(
            decision,
            ExecutionLog.record(
                "place_order",
                success=False,
                target=("decision", decision.id),
                request={"symbol": decision.symbol, "operation": decision.operation},
                error=error,
            ),
        )
        log_decision(
            self._logger,
            symbol=decision.symbol,
            operation=decision.operation,
            status=decision.status,
            decision_id=decision.id,
            error=error,
        )
        return ExecutionResult(success=False, decision_id=decision.id, error=error)

    def _succeed(self, decision: TradingDecision, result: ExecutionResult) -> ExecutionResult:
        decision.mark_executed()
        self._store.save(decision)
        log_decision(
            self._logger,
            symbol=decision.symbol,
            operation=decision.operation,
            status=decision.status,
            decision_id=decision.id,
            order_id=result.order_id,
            fill_price=result.fill_price,
        )
        return result
