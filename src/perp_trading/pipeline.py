"""Trading cycle orchestration."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from time import perf_counter
from typing import Any

from perp_trading.ai.agents import MacroAgent, TradingAgent
from perp_trading.config import RiskProfileParams, Settings
from perp_trading.exchange.base import ExchangeAPIError, ExchangeClient
from perp_trading.execution.executor import OrderExecutor
from perp_trading.execution.positions import PositionManager
from perp_trading.features.indicators import clamp_interval, classify_volatility, most_volatile
from perp_trading.journal.store import JournalStore
from perp_trading.risk.circuit_breaker import CircuitBreaker
from perp_trading.risk.profiles import ProfileService, TradingModeService
from perp_trading.risk.readiness import ReadinessChecker
from perp_trading.risk.rules import RiskManager
from perp_trading.storage.models import MacroStrategy, TradingDecision, utcnow
from perp_trading.storage.store import Store
from perp_trading.types import CycleResult, ExecutionResult, VolatilityResult
from perp_trading.utils.coerce import coerce_float
from perp_trading.utils.logging import (
    bind_cycle_context,
    clear_cycle_context,
    get_logger,
    log_decision,
)


class TradingCycle:
    """One pass of gate -> reconcile -> macro -> decide/validate/execute -> volatility.

    Instruments are independent: an exchange error while handling one marks
    that decision failed and the cycle moves on. Anything else propagates.
    """

    def __init__(
        self,
        settings: Settings,
        store: Store,
        client: ExchangeClient,
        trading_agent: TradingAgent,
        macro_agent: MacroAgent,
        risk_manager: RiskManager,
        executor: OrderExecutor,
        positions: PositionManager,
        breaker: CircuitBreaker,
        modes: TradingModeService,
        profiles: ProfileService,
        journal: JournalStore | None = None,
        readiness: ReadinessChecker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._client = client
        self._trading_agent = trading_agent
        self._macro_agent = macro_agent
        self._risk_manager = risk_manager
        self._executor = executor
        self._positions = positions
        self._breaker = breaker
        self._modes = modes
        self._profiles = profiles
        self._journal = journal
        self._readiness = readiness
        self._clock = clock
        self._logger = get_logger(__name__)

    def run(self) -> CycleResult:
        started = perf_counter()
        result = CycleResult(status="unknown")
        cycle_id = bind_cycle_context(self._settings.mode.value)
        mode = self._modes.current()
        self._journal_event(
            "cycle_start",
            {
                "cycle_id": cycle_id,
                "mode": self._settings.mode.value,
                "trading_mode": mode.mode,
            },
        )

        try:
            if not mode.can_close:
                self._logger.warning("cycle_blocked", trading_mode=mode.mode, reason=mode.reason)
                result.warnings.append(f"trading mode is {mode.mode}")
                self._apply_volatility(result, [])
                return self._finish(result, started, status="blocked")

            open_block = None
            if not (mode.can_open and self._breaker.trading_allowed()):
                open_block = self._open_block_reason(mode.mode)

            if self._settings.is_live_mode:
                self._reconcile(result)

            macro = self._ensure_macro_strategy()
            if open_block is None:
                open_block = self._readiness_block()
            if open_block is not None:
                result.warnings.append(open_block)
            can_open = open_block is None

            symbols = self._symbols_to_evaluate(can_open)
            if not can_open:
                self._logger.info("cycle_exit_only", symbols=symbols)

            profile = self._profiles.current_params()
            decisions = [
                self._process(symbol, macro, profile, result, open_block) for symbol in symbols
            ]

            self._apply_volatility(result, decisions)
            status = "completed" if can_open else "completed_exit_only"
            return self._finish(result, started, status=status)
        except Exception as exc:
            self._logger.exception("cycle_failed", error=str(exc))
            self._journal_event("error", {"error": str(exc)})
            raise
        finally:
            clear_cycle_context()

    # ==================== steps ====================

    def _open_block_reason(self, mode: str) -> str:
        if mode != "enabled":
            return f"trading mode is {mode}: no new positions"
        return f"circuit breaker active: {self._breaker.blocked_reason()}"

    def _readiness_block(self) -> str | None:
        if self._readiness is None:
            return None
        readiness = self._readiness.check(self._clock())
        self._journal_event("readiness", {"ready": readiness.ready, "missing": readiness.missing})
        if readiness.ready:
            return None
        return f"data not ready: {readiness.reason}: no new positions"

    def _symbols_to_evaluate(self, can_open: bool) -> list[str]:
        if can_open:
            return list(self._settings.assets)
        held = {position.symbol for position in self._positions.open_positions()}
        return [symbol for symbol in self._settings.assets if symbol in held]

    def _reconcile(self, result: CycleResult) -> None:
        try:
            changes = self._positions.sync_from_exchange()
        except ExchangeAPIError as exc:
            self._logger.warning("reconcile_failed", error=str(exc))
            result.warnings.append(f"reconcile failed: {exc}")
            self._journal_event("error", {"stage": "reconcile", "error": str(exc)})
            return
        self._journal_event("reconcile", changes)

    def _ensure_macro_strategy(self) -> MacroStrategy | None:
        now = self._clock()
        if self._store.macro_needs_refresh(now):
            self._logger.info("macro_refresh_started")
            strategy = self._macro_agent.analyze()
            if strategy is not None:
                self._journal_event(
                    "macro_strategy",
                    {
                        "strategy_id": strategy.id,
                        "bias": strategy.bias,
                        "risk_tolerance": strategy.risk_tolerance,
                        "valid_until": strategy.valid_until.isoformat(),
                    },
                )
        return self._store.active_macro_strategy(now)

    def _process(
        self,
        symbol: str,
        macro: MacroStrategy | None,
        profile: RiskProfileParams,
        result: CycleResult,
        open_block: str | None = None,
    ) -> TradingDecision:
        decision = self._trading_agent.decide(symbol, macro)

        if decision.status == "pending":
            if decision.is_hold:
                self._executor.execute(decision)
            else:
                outcome = self._validate_and_execute(decision, profile, open_block)
                if outcome is not None:
                    result.orders.append(_order_summary(decision, outcome))
                    self._journal_event("order", _order_summary(decision, outcome))

        result.decision_ids.append(decision.id)
        summary = _decision_summary(decision)
        result.decisions.append(summary)
        self._journal_event("decision", summary)
        return decision

    def _validate_and_execute(
        self,
        decision: TradingDecision,
        profile: RiskProfileParams,
        open_block: str | None = None,
    ) -> ExecutionResult | None:
        if decision.is_open and open_block is not None:
            self._reject(decision, open_block)
            return None

        try:
            price = self._client.all_mids().get(decision.symbol)
        except ExchangeAPIError as exc:
            self._fail(decision, f"price fetch failed: {exc}")
            return None
        if price is None:
            self._fail(decision, f"no price available for {decision.symbol}")
            return None

        verdict = self._risk_manager.validate(decision, price, profile)
        self._journal_event(
            "risk_check",
            {
                "decision_id": decision.id,
                "symbol": decision.symbol,
                "approved": verdict.approved,
                "reason": verdict.reason,
                "price": price,
            },
        )
        if not verdict.approved:
            self._reject(decision, verdict.reason or "rejected by risk manager")
            return None

        decision.approve()
        self._store.save(decision)
        return self._executor.execute(decision)

    def _reject(self, decision: TradingDecision, reason: str) -> None:
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

    def _fail(self, decision: TradingDecision, error: str) -> None:
        decision.mark_failed(error)
        self._store.save(decision)
        log_decision(
            self._logger,
            symbol=decision.symbol,
            operation=decision.operation,
            status=decision.status,
            decision_id=decision.id,
            error=error,
        )

    # ==================== volatility ====================

    def classify_volatility(self) -> VolatilityResult:
        """Highest volatility across instruments, from the latest snapshot ATR."""
        results = []
        for symbol in self._settings.assets:
            snapshot = self._store.latest_snapshot(symbol)
            if snapshot is None:
                continue
            atr = coerce_float(snapshot.indicator("atr_14"))
            results.append(classify_volatility(atr, snapshot.price, symbol=symbol))
        return most_volatile(results)

    def _apply_volatility(self, result: CycleResult, decisions: list[TradingDecision]) -> None:
        volatility = self.classify_volatility()
        interval = clamp_interval(volatility.interval_minutes)
        for decision in decisions:
            decision.volatility_level = volatility.level
            decision.atr_value = volatility.atr
            decision.next_cycle_interval = interval
        if decisions:
            self._store.save(*decisions)

        result.volatility_level = volatility.level
        result.next_interval_minutes = interval
        self._journal_event(
            "volatility",
            {
                "level": volatility.level,
                "symbol": volatility.symbol,
                "atr": volatility.atr,
                "next_interval_minutes": interval,
            },
        )

    # ==================== bookkeeping ====================

    def _journal_event(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._journal is not None:
            self._journal.append(event_type, payload)

    def _finish(self, result: CycleResult, started: float, *, status: str) -> CycleResult:
        result.status = status
        result.elapsed_ms = (perf_counter() - started) * 1000
        self._journal_event(
            "cycle_end",
            {
                "status": status,
                "decisions": len(result.decision_ids),
                "orders": len(result.orders),
                "next_interval_minutes": result.next_interval_minutes,
                "elapsed_ms": result.elapsed_ms,
            },
        )
        self._logger.info(
            "cycle_completed",
            status=status,
            decisions=len(result.decision_ids),
            orders=len(result.orders),
            volatility=result.volatility_level,
            next_interval_minutes=result.next_interval_minutes,
            elapsed_ms=round(result.elapsed_ms, 2),
        )
        return result


def _decision_summary(decision: TradingDecision) -> dict[str, object]:
    return {
        "decision_id": decision.id,
        "symbol": decision.symbol,
        "operation": decision.operation,
        "direction": decision.direction,
        "confidence": decision.confidence,
        "status": decision.status,
        "rejection_reason": decision.rejection_reason,
    }


def _order_summary(decision: TradingDecision, outcome: ExecutionResult) -> dict[str, object]:
    return {
        "decision_id": decision.id,
        "symbol": decision.symbol,
        "operation": decision.operation,
        "success": outcome.success,
        "order_id": outcome.order_id,
        "position_id": outcome.position_id,
        "fill_price": outcome.fill_price,
        "filled_size": outcome.filled_size,
        "realized_pnl": outcome.realized_pnl,
        "error": outcome.error,
    }
