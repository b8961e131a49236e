"""Circuit breaker that halts new positions after sustained losses."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

from perp_trading.config import Settings
from perp_trading.exchange.base import ExchangeAPIError
from perp_trading.risk.profiles import TradingModeService
from perp_trading.storage.models import utcnow
from perp_trading.storage.store import DAILY_LOSS_COUNTER, Store
from perp_trading.utils.logging import get_logger, log_risk_event

BREAKER_ACTOR = "circuit_breaker"


class CircuitBreaker:
    """Tracks daily loss and losing streaks and gates new opens.

    States: allowed -> triggered (cooldown) -> allowed. Triggering also moves
    the trading mode to ``exit_only`` when it was ``enabled``; once the cooldown
    has passed the mode is restored only if the breaker was the one that set it.
    Closes are never blocked by the breaker.
    """

    def __init__(
        self,
        settings: Settings,
        store: Store,
        modes: TradingModeService,
        account_value: Callable[[], float],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._modes = modes
        self._account_value = account_value
        self._clock = clock
        self._logger = get_logger(__name__)

    def _today(self) -> date:
        return self._clock().date()

    # ==================== outcomes ====================

    def record_loss(self, amount: float) -> None:
        loss = abs(amount)
        daily = self._store.add_to_daily_counter(DAILY_LOSS_COUNTER, loss, self._today())
        streak = self._store.increment_consecutive_losses()
        self._logger.info("loss_recorded", amount=loss, daily_loss=daily, consecutive_losses=streak)
        self.check_and_update()

    def record_win(self, amount: float) -> None:
        self._store.reset_consecutive_losses()
        self._logger.info("win_recorded", amount=abs(amount))

    # ==================== state ====================

    def daily_loss(self) -> float:
        return self._store.daily_counter(DAILY_LOSS_COUNTER, self._today())

    def consecutive_losses(self) -> int:
        return self._store.breaker_state().consecutive_losses

    def daily_loss_pct(self) -> float:
        """Today's loss as a fraction of account value; 0 when the value is unavailable."""
        try:
            account_value = self._account_value()
        except ExchangeAPIError as exc:
            self._logger.error("account_value_unavailable", error=str(exc))
            return 0.0
        if not account_value or account_value <= 0:
            return 0.0
        return self.daily_loss() / account_value

    def check_and_update(self) -> bool:
        """Trigger when a threshold is reached. Returns True if this call triggered."""
        if self._store.breaker_state().triggered:
            return False
        if self.daily_loss_pct() >= self._settings.max_daily_loss:
            return self.trigger("max_daily_loss")
        if self.consecutive_losses() >= self._settings.max_consecutive_losses:
            return self.trigger("consecutive_losses")
        return False

    def trigger(self, reason: str) -> bool:
        human_reason = self._format_reason(reason)
        now = self._clock()
        cooldown_until = now + timedelta(hours=self._settings.cooldown_hours)
        if not self._store.trigger_breaker(human_reason, now, cooldown_until):
            return False

        if self._modes.current_mode() == "enabled":
            self._modes.switch_to("exit_only", changed_by=BREAKER_ACTOR, reason=human_reason)

        log_risk_event(
            self._logger,
            event_type="circuit_breaker",
            action="triggered",
            reason=human_reason,
            cooldown_until=cooldown_until.isoformat(),
        )
        return True

    def trading_allowed(self) -> bool:
        """False while in cooldown. An expired cooldown is cleared on read."""
        state = self._store.breaker_state()
        if not state.triggered:
            return True
        if state.cooldown_until is not None and self._clock() < state.cooldown_until:
            return False
        self._expire()
        return True

    def blocked_reason(self) -> str:
        return self._store.breaker_state().trigger_reason or "Circuit breaker active"

    def _expire(self) -> None:
        if not self._store.clear_breaker():
            return
        mode = self._modes.current()
        if mode.mode == "exit_only" and mode.changed_by == BREAKER_ACTOR:
            self._modes.switch_to("enabled", changed_by=BREAKER_ACTOR, reason="Cooldown expired")
        log_risk_event(
            self._logger, event_type="circuit_breaker", action="cooldown_expired", severity="info"
        )

    def reset(self) -> None:
        """Clear all breaker state and re-enable trading."""
        self._store.clear_breaker(only_if_triggered=False)
        self._store.reset_daily_counter(DAILY_LOSS_COUNTER, self._today())
        self._modes.switch_to("enabled", changed_by="system")
        self._logger.info("circuit_breaker_reset")

    def status(self) -> dict[str, Any]:
        allowed = self.trading_allowed()
        state = self._store.breaker_state()
        mode = self._modes.current()
        return {
            "trading_allowed": allowed,
            "can_open": allowed and mode.can_open,
            "daily_loss": self.daily_loss(),
            "daily_loss_pct": self.daily_loss_pct(),
            "consecutive_losses": state.consecutive_losses,
            "triggered": state.triggered,
            "trigger_reason": state.trigger_reason,
            "cooldown_until": state.cooldown_until.isoformat() if state.cooldown_until else None,
            "trading_mode": mode.mode,
            "trading_mode_changed_by": mode.changed_by,
        }

    def _format_reason(self, reason: str) -> str:
        if reason == "max_daily_loss":
            return f"Daily loss exceeded {self._settings.max_daily_loss * 100:.1f}%"
        if reason == "consecutive_losses":
            return f"{self._settings.max_consecutive_losses} consecutive losing trades"
        return reason
