"""Percent-risk position sizing."""

from __future__ import annotations

from collections.abc import Callable

from perp_trading.config import Settings
from perp_trading.types import SizingResult
from perp_trading.utils.logging import get_logger


class SizingError(ValueError):
    """Raised when a size cannot be computed (zero stop distance, no account value)."""


class PositionSizer:
    """size = account_value * max_risk_fraction / |entry - stop_loss|."""

    def __init__(self, settings: Settings, account_value: Callable[[], float]) -> None:
        self._settings = settings
        self._account_value = account_value
        self._logger = get_logger(__name__)

    def calculate(
        self,
        entry_price: float,
        stop_loss: float,
        direction: str,
        account_value: float | None = None,
        max_risk_fraction: float | None = None,
    ) -> SizingResult:
        risk_per_unit = abs(entry_price - stop_loss)
        if risk_per_unit == 0:
            raise SizingError("stop loss equals entry price; risk per unit is zero")

        if account_value is None:
            account_value = self._account_value()
        if account_value <= 0:
            raise SizingError(f"account value must be positive (got {account_value})")

        if max_risk_fraction is None:
            max_risk_fraction = self._settings.max_risk_per_trade

        size = account_value * max_risk_fraction / risk_per_unit
        result = SizingResult(
            size=size,
            risk_amount=self.risk_amount(size, entry_price, stop_loss),
            risk_per_unit=risk_per_unit,
        )
        self._logger.debug(
            "position_sized",
            direction=direction,
            entry_price=entry_price,
            stop_loss=stop_loss,
            size=result.size,
            risk_amount=result.risk_amount,
        )
        return result

    @staticmethod
    def risk_amount(size: float, entry_price: float, stop_loss: float | None) -> float:
        """Dollar amount lost if the stop is hit; 0 without a stop."""
        if stop_loss is None:
            return 0.0
        return size * abs(entry_price - stop_loss)
