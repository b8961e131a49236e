"""Trailing stops: stop-losses that follow the peak price of a profitable position."""

from __future__ import annotations

from typing import Literal

from perp_trading.config import RiskProfileParams
from perp_trading.risk.profiles import ProfileService
from perp_trading.storage.models import Position
from perp_trading.storage.store import Store
from perp_trading.types import TrailingStopResult
from perp_trading.utils.logging import get_logger, log_risk_event

Outcome = Literal["activated", "updated", "skipped"]


def trailing_stop_level(peak_price: float, direction: str, distance_pct: float) -> float:
    """Stop level ``distance_pct`` behind the peak: below it for longs, above it for shorts."""
    if direction == "long":
        return peak_price * (1 - distance_pct)
    return peak_price * (1 + distance_pct)


class TrailingStopManager:
    """Moves stop-losses behind the peak price once a position is far enough in profit.

    A position activates when its P&L percent reaches the profile's activation
    threshold; the original stop-loss is kept on the position. From then on
    the stop only moves forward (up for longs, down for shorts). Positions
    without a tracked peak are skipped. Prices and peaks are refreshed by the
    stop-loss monitor, which runs first in the same job.
    """

    def __init__(self, store: Store, profiles: ProfileService) -> None:
        self._store = store
        self._profiles = profiles
        self._logger = get_logger(__name__)

    def check_all_positions(self) -> TrailingStopResult:
        result = TrailingStopResult()
        params = self._profiles.current_params()
        if not params.trailing_stop_enabled:
            self._logger.debug("trailing_stop_disabled", profile=self._profiles.current_name())
            return result

        for position in self._store.open_positions():
            outcome = self._process(position, params)
            if outcome == "activated":
                result.activated += 1
            elif outcome == "updated":
                result.updated += 1
            else:
                result.skipped += 1

        if result.activated or result.updated:
            self._logger.info(
                "trailing_stops_checked",
                activated=result.activated,
                updated=result.updated,
                skipped=result.skipped,
            )
        return result

    def _process(self, position: Position, params: RiskProfileParams) -> Outcome:
        peak = position.peak_price
        if peak is None:
            return "skipped"

        if not position.trailing_stop_active:
            profit = position.pnl_percent / 100
            if profit < params.trailing_activation_pct:
                return "skipped"
            position.trailing_stop_active = True
            position.original_stop_loss_price = position.stop_loss_price
            self._advance(position, peak, params)
            self._store.save(position)
            log_risk_event(
                self._logger,
                event_type="trailing_stop",
                action="activated",
                severity="info",
                position_id=position.id,
                symbol=position.symbol,
                profit_pct=round(position.pnl_percent, 2),
                stop_loss=position.stop_loss_price,
            )
            return "activated"

        previous = position.stop_loss_price
        if not self._advance(position, peak, params):
            return "skipped"
        self._store.save(position)
        log_risk_event(
            self._logger,
            event_type="trailing_stop",
            action="stop_moved",
            severity="info",
            position_id=position.id,
            symbol=position.symbol,
            old_stop_loss=previous,
            new_stop_loss=position.stop_loss_price,
            peak_price=position.peak_price,
        )
        return "updated"

    def _advance(self, position: Position, peak: float, params: RiskProfileParams) -> bool:
        """Move the stop to the trailing level if that tightens it. Returns whether it moved."""
        level = trailing_stop_level(peak, position.direction, params.trailing_distance_pct)
        current = position.stop_loss_price
        if current is not None and (level - current) * position.direction_multiplier <= 0:
            return False
        position.stop_loss_price = level
        return True
