"""Stop-loss / take-profit monitor for open positions."""

from __future__ import annotations

from perp_trading.exchange.base import ExchangeAPIError, ExchangeClient
from perp_trading.execution.executor import OrderExecutor
from perp_trading.storage.models import ExecutionLog, Position, TradingDecision
from perp_trading.storage.store import Store
from perp_trading.types import MonitorResult
from perp_trading.utils.logging import get_logger, log_risk_event

_TRIGGER_LABELS = {"sl_triggered": "Stop-loss", "tp_triggered": "Take-profit"}


class StopLossMonitor:
    """Scans open positions against live mids and market-closes triggered ones.

    Stop-loss is evaluated before take-profit. Every position with a price gets
    its current price and peak refreshed; one without a price or without any
    SL/TP level is then skipped, which is not an error.
    """

    def __init__(self, store: Store, client: ExchangeClient, executor: OrderExecutor) -> None:
        self._store = store
        self._client = client
        self._executor = executor
        self._logger = get_logger(__name__)

    def check_all_positions(self) -> MonitorResult:
        result = MonitorResult()
        positions = self._store.open_positions()
        if not positions:
            return result

        try:
            mids = self._client.all_mids()
        except ExchangeAPIError as exc:
            self._logger.error("price_fetch_failed", error=str(exc), positions=len(positions))
            result.skipped = len(positions)
            return result

        for position in positions:
            price = mids.get(position.symbol)
            if price is None:
                result.skipped += 1
                continue

            position.update_current_price(price)
            self._store.save(position)
            if position.stop_loss_price is None and position.take_profit_price is None:
                result.skipped += 1
                continue

            result.checked += 1

            if position.stop_loss_triggered(price):
                trigger = "sl_triggered"
            elif position.take_profit_triggered(price):
                trigger = "tp_triggered"
            else:
                continue

            if self._close(position, price, trigger):
                result.triggered += 1
                result.closed_position_ids.append(position.id)

        if result.triggered:
            self._logger.info(
                "stop_monitor_completed",
                triggered=result.triggered,
                checked=result.checked,
                skipped=result.skipped,
            )
        return result

    def _close(self, position: Position, price: float, trigger: str) -> bool:
        label = _TRIGGER_LABELS[trigger]
        if trigger == "sl_triggered":
            level = position.stop_loss_price
        else:
            level = position.take_profit_price
        decision = TradingDecision(
            symbol=position.symbol,
            operation="close",
            direction=position.direction,
            confidence=1.0,
            status="approved",
            parsed_decision={
                "operation": "close",
                "symbol": position.symbol,
                "direction": position.direction,
                "confidence": 1.0,
            },
            reasoning=f"{label} triggered at {price} (level {level})",
        )
        self._store.save(decision)
        log_risk_event(
            self._logger,
            event_type=trigger,
            action="close_position",
            position_id=position.id,
            symbol=position.symbol,
            price=price,
            level=level,
        )

        outcome = self._executor.execute(decision, close_reason=trigger)
        self._store.save(
            ExecutionLog.record(
                "risk_trigger",
                success=outcome.success,
                target=("position", position.id),
                request={"trigger": trigger, "price": price, "level": level},
                response={
                    "decision_id": decision.id,
                    "order_id": outcome.order_id,
                    "realized_pnl": outcome.realized_pnl,
                },
                error=outcome.error,
            )
        )
        return outcome.success
