"""Account state, margin math and capacity checks."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from perp_trading.config import Settings
from perp_trading.exchange.base import AccountState, ExchangeAPIError, ExchangeClient
from perp_trading.storage.models import ExecutionLog
from perp_trading.storage.store import Store
from perp_trading.utils.logging import get_logger


class AccountManager:
    """Reads the account from the exchange (or paper broker) and audits each sync."""

    def __init__(self, settings: Settings, store: Store, client: ExchangeClient) -> None:
        self._settings = settings
        self._store = store
        self._client = client
        self._logger = get_logger(__name__)

    def fetch_account_state(self) -> AccountState:
        request = {"mode": self._settings.mode.value}
        try:
            state = self._client.account_state()
        except ExchangeAPIError as exc:
            self._store.save(
                ExecutionLog.record("sync_account", success=False, request=request, error=str(exc))
            )
            raise
        self._store.save(
            ExecutionLog.record(
                "sync_account", success=True, request=request, response=asdict(state)
            )
        )
        self._logger.debug(
            "account_synced",
            account_value=state.account_value,
            available_margin=state.available_margin,
        )
        return state

    def account_value(self) -> float:
        return self.fetch_account_state().account_value

    def margin_for_position(self, size: float, price: float, leverage: int) -> float:
        return size * price / leverage

    def can_trade(self, margin_required: float, max_open_positions: int) -> bool:
        """Enough available margin and below the open position limit."""
        state = self.fetch_account_state()
        if state.available_margin < margin_required:
            return False
        return self._store.open_position_count() < max_open_positions

    def portfolio_summary(self) -> dict[str, Any]:
        state = self.fetch_account_state()
        positions = self._store.open_positions()
        return {
            "account_value": state.account_value,
            "margin_used": state.margin_used,
            "available_margin": state.available_margin,
            "open_positions": len(positions),
            "total_unrealized_pnl": sum(p.unrealized_pnl or 0.0 for p in positions),
            "positions": [
                {
                    "symbol": p.symbol,
                    "direction": p.direction,
                    "size": p.size,
                    "entry_price": p.entry_price,
                    "current_price": p.current_price,
                    "unrealized_pnl": p.unrealized_pnl,
                    "pnl_percent": round(p.pnl_percent, 2),
                    "stop_loss": p.stop_loss_price,
                    "take_profit": p.take_profit_price,
                }
                for p in positions
            ],
        }
