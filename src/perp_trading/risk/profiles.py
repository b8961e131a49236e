"""Risk profile and trading mode services over the persisted singletons."""

from __future__ import annotations

from perp_trading.config import RiskProfileParams, Settings
from perp_trading.storage.models import RISK_PROFILE_NAMES, TRADING_MODES, TradingMode
from perp_trading.storage.store import Store
from perp_trading.utils.logging import get_logger

_PROFILE_DESCRIPTIONS = {
    "cautious": (
        "CAUTIOUS: Conservative risk profile - fewer trades, stricter entry criteria, "
        "lower leverage"
    ),
    "moderate": "MODERATE: Balanced risk profile - standard entry criteria and leverage",
    "fearless": (
        "FEARLESS: Aggressive risk profile - more trades, relaxed entry criteria, "
        "higher leverage"
    ),
}


class ProfileService:
    """Resolves the parameters of the active risk profile."""

    def __init__(self, settings: Settings, store: Store) -> None:
        self._settings = settings
        self._store = store

    def current_name(self) -> str:
        return self._store.risk_profile(default_name=self._settings.default_risk_profile).name

    def current_params(self) -> RiskProfileParams:
        return self._settings.profile_params(self.current_name())

    def description(self) -> str:
        return _PROFILE_DESCRIPTIONS.get(self.current_name(), _PROFILE_DESCRIPTIONS["moderate"])

    def switch_to(self, name: str, changed_by: str = "operator") -> str:
        if name not in RISK_PROFILE_NAMES:
            expected = ", ".join(RISK_PROFILE_NAMES)
            raise ValueError(f"unknown risk profile: {name} (expected one of {expected})")
        self._store.set_risk_profile(name, changed_by=changed_by)
        get_logger(__name__).info("risk_profile_changed", profile=name, changed_by=changed_by)
        return name


class TradingModeService:
    """Operator override layer: enabled (open+close), exit_only (close), blocked (none)."""

    def __init__(self, store: Store) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def current(self) -> TradingMode:
        return self._store.trading_mode()

    def current_mode(self) -> str:
        return self.current().mode

    def switch_to(self, mode: str, changed_by: str, reason: str | None = None) -> TradingMode:
        if mode not in TRADING_MODES:
            expected = ", ".join(TRADING_MODES)
            raise ValueError(f"invalid trading mode: {mode} (expected one of {expected})")
        record = self._store.set_trading_mode(mode, changed_by=changed_by, reason=reason)
        self._logger.info("trading_mode_changed", mode=mode, changed_by=changed_by, reason=reason)
        return record

    def can_open(self) -> bool:
        return self.current().can_open

    def can_close(self) -> bool:
        return self.current().can_close
