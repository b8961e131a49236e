from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from perp_trading.app import Services
from perp_trading.config import Settings
from perp_trading.exchange.base import ExchangeAPIError
from perp_trading.risk.circuit_breaker import BREAKER_ACTOR, CircuitBreaker
from perp_trading.risk.profiles import ProfileService, TradingModeService
from perp_trading.storage.models import TradingDecision
from perp_trading.storage.store import Store

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _breaker(
    settings: Settings, store: Store, clock: _Clock, account_value: float = 10_000.0
) -> tuple[CircuitBreaker, TradingModeService]:
    modes = TradingModeService(store)
    return CircuitBreaker(settings, store, modes, lambda: account_value, clock=clock), modes


def test_daily_loss_at_limit_triggers_with_cooldown(settings: Settings, store: Store) -> None:
    breaker, modes = _breaker(settings, store, _Clock(NOW))
    breaker.record_loss(-500.0)

    state = store.breaker_state()
    assert state.triggered
    assert state.trigger_reason == "Daily loss exceeded 5.0%"
    assert state.cooldown_until == NOW + timedelta(hours=settings.cooldown_hours)
    assert not breaker.trading_allowed()
    assert modes.current_mode() == "exit_only"
    assert modes.current().changed_by == BREAKER_ACTOR


def test_loss_below_limit_does_not_trigger(settings: Settings, store: Store) -> None:
    breaker, _ = _breaker(settings, store, _Clock(NOW))
    breaker.record_loss(-499.0)

    assert breaker.trading_allowed()
    assert breaker.daily_loss_pct() == pytest.approx(0.0499)


def test_consecutive_losses_trigger(settings: Settings, store: Store) -> None:
    breaker, _ = _breaker(settings, store, _Clock(NOW))
    for _ in range(settings.max_consecutive_losses):
        breaker.record_loss(-1.0)

    assert not breaker.trading_allowed()
    assert breaker.blocked_reason() == "3 consecutive losing trades"


def test_win_resets_streak(settings: Settings, store: Store) -> None:
    breaker, _ = _breaker(settings, store, _Clock(NOW))
    breaker.record_loss(-1.0)
    breaker.record_loss(-1.0)
    breaker.record_win(10.0)
    breaker.record_loss(-1.0)

    assert breaker.consecutive_losses() == 1
    assert breaker.trading_allowed()


def test_daily_loss_resets_on_new_day(settings: Settings, store: Store) -> None:
    clock = _Clock(NOW)
    breaker, _ = _breaker(settings, store, clock)
    breaker.record_loss(-300.0)

    clock.now = NOW + timedelta(days=1)
    assert breaker.daily_loss() == 0.0
    breaker.record_loss(-300.0)
    assert breaker.trading_allowed()


def test_cooldown_expiry_restores_trading(settings: Settings, store: Store) -> None:
    clock = _Clock(NOW)
    breaker, modes = _breaker(settings, store, clock)
    breaker.trigger("max_daily_loss")

    clock.now = NOW + timedelta(hours=settings.cooldown_hours) - timedelta(seconds=1)
    assert not breaker.trading_allowed()

    clock.now = NOW + timedelta(hours=settings.cooldown_hours)
    assert breaker.trading_allowed()
    assert not store.breaker_state().triggered
    assert store.breaker_state().consecutive_losses == 0
    assert modes.current_mode() == "enabled"


def test_expiry_keeps_operator_mode(settings: Settings, store: Store) -> None:
    clock = _Clock(NOW)
    breaker, modes = _breaker(settings, store, clock)
    breaker.trigger("consecutive_losses")
    modes.switch_to("blocked", changed_by="operator")

    clock.now = NOW + timedelta(days=2)
    assert breaker.trading_allowed()
    assert modes.current_mode() == "blocked"


def test_trigger_is_not_repeated(settings: Settings, store: Store) -> None:
    breaker, _ = _breaker(settings, store, _Clock(NOW))
    assert breaker.trigger("max_daily_loss")
    assert not breaker.trigger("consecutive_losses")
    assert store.breaker_state().trigger_reason == "Daily loss exceeded 5.0%"


def test_reset_clears_everything(settings: Settings, store: Store) -> None:
    breaker, modes = _breaker(settings, store, _Clock(NOW))
    breaker.record_loss(-600.0)
    breaker.reset()

    status = breaker.status()
    assert status["trading_allowed"]
    assert status["can_open"]
    assert status["daily_loss"] == 0.0
    assert status["consecutive_losses"] == 0
    assert modes.current_mode() == "enabled"


def test_unavailable_account_value_reads_as_zero_loss(settings: Settings, store: Store) -> None:
    def _fail() -> float:
        raise ExchangeAPIError("down")

    breaker = CircuitBreaker(settings, store, TradingModeService(store), _fail, clock=_Clock(NOW))
    breaker.record_loss(-10_000.0)
    assert breaker.daily_loss_pct() == 0.0


def test_triggered_breaker_rejects_next_open(
    services: Services, make_decision: Callable[..., TradingDecision]
) -> None:
    services.breaker.record_loss(-500.0)

    decision = make_decision(leverage=3, target_position=0.05, stop_loss=95_000)
    result = services.executor.execute(decision)

    assert decision.status == "rejected"
    assert result.error == "Circuit breaker active: Daily loss exceeded 5.0%"


def test_trading_mode_switch_validates(store: Store) -> None:
    modes = TradingModeService(store)
    assert modes.can_open() and modes.can_close()

    modes.switch_to("exit_only", changed_by="operator", reason="maintenance")
    assert not modes.can_open() and modes.can_close()
    assert modes.current().reason == "maintenance"

    modes.switch_to("blocked", changed_by="operator")
    assert not modes.can_close()

    with pytest.raises(ValueError):
        modes.switch_to("paused", changed_by="operator")


def test_profile_switch(settings: Settings, store: Store) -> None:
    profiles = ProfileService(settings, store)
    assert profiles.current_name() == "moderate"

    profiles.switch_to("fearless")
    assert profiles.current_params() == settings.risk_profiles["fearless"]
    assert profiles.description().startswith("FEARLESS")

    with pytest.raises(ValueError):
        profiles.switch_to("reckless")


def test_breaker_status_reports_trigger(settings: Settings, store: Store) -> None:
    breaker, _ = _breaker(settings, store, _Clock(NOW))
    breaker.trigger("max_daily_loss")
    status: dict[str, Any] = breaker.status()

    assert status["triggered"]
    assert not status["can_open"]
    assert status["trading_mode"] == "exit_only"
    assert status["cooldown_until"] == (NOW + timedelta(hours=24)).isoformat()
