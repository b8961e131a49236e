"""Local position bookkeeping and reconciliation with the exchange."""

from __future__ import annotations

from perp_trading.exchange.base import ExchangeAPIError, ExchangeClient
from perp_trading.storage.models import ExecutionLog, Position
from perp_trading.storage.store import Store
from perp_trading.utils.logging import get_logger, log_position_change


class PositionManager:
    """Creates, updates and closes Position rows."""

    def __init__(self, store: Store, client: ExchangeClient) -> None:
        self._store = store
        self._client = client
        self._logger = get_logger(__name__)

    def open_position(self, symbol: str, direction: str | None = None) -> Position | None:
        return self._store.open_position(symbol, direction)

    def has_open_position(self, symbol: str, direction: str | None = None) -> bool:
        return self._store.open_position(symbol, direction) is not None

    def open_positions(self) -> list[Position]:
        return self._store.open_positions()

    def open_positions_count(self) -> int:
        return self._store.open_position_count()

    def create(
        self,
        *,
        symbol: str,
        direction: str,
        size: float,
        entry_price: float,
        leverage: int,
        stop_loss_price: float | None = None,
        take_profit_price: float | None = None,
        risk_amount: float = 0.0,
    ) -> Position | None:
        """Insert an open position; ``None`` if one is already open for symbol+direction."""
        position = Position(
            symbol=symbol,
            direction=direction,
            size=size,
            entry_price=entry_price,
            current_price=entry_price,
            leverage=leverage,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            risk_amount=risk_amount,
            unrealized_pnl=0.0,
            status="open",
        )
        created = self._store.insert_open_position(position)
        if created is not None:
            log_position_change(
                self._logger,
                action="opened",
                position_id=created.id,
                symbol=symbol,
                direction=direction,
                size=size,
                price=entry_price,
            )
        return created

    def close(self, position: Position, price: float, reason: str) -> float:
        """Close the remaining size at ``price``.

        The position keeps the cumulative realized P&L including earlier partial
        closes; the return value is the P&L of this final leg only.
        """
        position.update_current_price(price)
        leg = position.unrealized_pnl
        realized = leg + (position.realized_pnl or 0.0)
        position.close(reason, pnl=realized)
        self._store.save(position)
        log_position_change(
            self._logger,
            action="closed",
            position_id=position.id,
            symbol=position.symbol,
            direction=position.direction,
            size=position.size,
            price=price,
            realized_pnl=realized,
            reason=reason,
        )
        return leg

    def reduce(self, position: Position, filled_size: float, price: float) -> float:
        """Book a partial close; the position stays open with the remaining size."""
        filled_size = min(filled_size, position.size)
        partial = filled_size * (price - position.entry_price) * position.direction_multiplier
        position.realized_pnl = (position.realized_pnl or 0.0) + partial
        position.size = position.size - filled_size
        position.update_current_price(price)
        self._store.save(position)
        log_position_change(
            self._logger,
            action="reduced",
            position_id=position.id,
            symbol=position.symbol,
            direction=position.direction,
            size=position.size,
            price=price,
            realized_pnl=partial,
            filled_size=filled_size,
        )
        return partial

    def update_prices(self, mids: dict[str, float] | None = None) -> int:
        """Refresh current price and unrealized P&L of open positions."""
        mids = self._client.all_mids() if mids is None else mids
        updated = 0
        for position in self._store.open_positions():
            price = mids.get(position.symbol)
            if price is None:
                continue
            position.update_current_price(price)
            self._store.save(position)
            updated += 1
        return updated

    def sync_from_exchange(self) -> dict[str, int]:
        """Make local open positions match the exchange.

        Exchange positions missing locally are created, existing ones updated,
        and local open positions the exchange no longer reports are closed.
        """
        try:
            remote = self._client.open_positions()
        except ExchangeAPIError as exc:
            self._store.save(ExecutionLog.record("sync_position", success=False, error=str(exc)))
            raise

        results = {"created": 0, "updated": 0, "closed": 0}
        seen: set[tuple[str, str]] = set()
        for item in remote:
            if item.size <= 0 or item.entry_price <= 0:
                self._logger.warning("sync_skipped_position", symbol=item.symbol)
                continue
            seen.add((item.symbol, item.direction))
            local = self._store.open_position(item.symbol, item.direction)
            if local is None:
                local = Position(
                    symbol=item.symbol,
                    direction=item.direction,
                    size=item.size,
                    entry_price=item.entry_price,
                    leverage=max(1, min(item.leverage, 100)),
                    status="open",
                )
                results["created"] += 1
            else:
                local.size = item.size
                local.entry_price = item.entry_price
                local.leverage = max(1, min(item.leverage, 100))
                results["updated"] += 1
            local.current_price = item.mark_price
            local.unrealized_pnl = item.unrealized_pnl
            local.liquidation_price = item.liquidation_price
            self._store.save(local)

        for local in self._store.open_positions():
            if (local.symbol, local.direction) not in seen:
                local.close("manual")
                self._store.save(local)
                log_position_change(
                    self._logger,
                    action="closed",
                    position_id=local.id,
                    symbol=local.symbol,
                    direction=local.direction,
                    size=local.size,
                    reason="missing on exchange",
                )
                results["closed"] += 1

        self._store.save(ExecutionLog.record("sync_position", success=True, response=results))
        self._logger.info("positions_synced", **results)
        return results
