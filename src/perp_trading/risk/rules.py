"""Admission rules for trading decisions."""

from __future__ import annotations

from perp_trading.config import RiskProfileParams, Settings
from perp_trading.storage.models import TradingDecision
from perp_trading.types import RiskVerdict
from perp_trading.utils.logging import get_logger


def risk_reward_ratio(entry_price: float, stop_loss: float, take_profit: float) -> float | None:
    """|take_profit - entry| / |entry - stop_loss|; ``None`` when the risk distance is zero."""
    risk = abs(entry_price - stop_loss)
    if risk == 0:
        return None
    return abs(take_profit - entry_price) / risk


class RiskManager:
    """Pure approve/reject checks, evaluated in order and short-circuiting.

    1. confidence >= profile minimum (missing confidence counts as 0)
    2. leverage (profile default when absent) <= configured maximum
    3. position fraction (profile default when absent) <= configured maximum
    4. risk/reward >= profile minimum when both stop-loss and take-profit are set;
       rejects when ``enforce_risk_reward_ratio`` is on, otherwise only logs

    Checks 3 and 4 apply to opens only; a close is sized by the held position.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._logger = get_logger(__name__)

    def validate(
        self,
        decision: TradingDecision,
        entry_price: float,
        profile: RiskProfileParams | None = None,
    ) -> RiskVerdict:
        profile = profile or self._settings.profile_params(self._settings.default_risk_profile)

        if decision.is_hold:
            return RiskVerdict(approved=False, reason="Cannot execute hold operations")

        confidence = decision.confidence if decision.confidence is not None else 0.0
        if confidence < profile.min_confidence:
            return RiskVerdict(
                approved=False,
                reason=f"Confidence {confidence} below minimum {profile.min_confidence}",
            )

        leverage = decision.leverage if decision.leverage is not None else profile.default_leverage
        if leverage > self._settings.max_leverage:
            return RiskVerdict(
                approved=False,
                reason=f"Leverage {leverage} exceeds maximum {self._settings.max_leverage}",
            )

        if decision.is_close:
            return RiskVerdict(approved=True)

        fraction = decision.target_position
        if fraction is None:
            fraction = profile.max_position_size
        if fraction > self._settings.max_position_size:
            return RiskVerdict(
                approved=False,
                reason=(
                    f"Position size {fraction} exceeds maximum "
                    f"{self._settings.max_position_size}"
                ),
            )

        stop_loss, take_profit = decision.stop_loss, decision.take_profit
        if stop_loss is not None and take_profit is not None:
            ratio = risk_reward_ratio(entry_price, stop_loss, take_profit)
            if ratio is not None and ratio < profile.min_risk_reward_ratio:
                reason = (
                    f"Poor risk/reward ratio: {ratio:.2f} "
                    f"(minimum: {profile.min_risk_reward_ratio})"
                )
                if self._settings.enforce_risk_reward_ratio:
                    return RiskVerdict(approved=False, reason=reason)
                self._logger.warning(
                    "poor_risk_reward",
                    symbol=decision.symbol,
                    direction=decision.direction,
                    ratio=round(ratio, 2),
                    minimum=profile.min_risk_reward_ratio,
                )

        return RiskVerdict(approved=True)
