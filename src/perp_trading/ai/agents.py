"""Judgment agents: per-instrument trading decisions and the daily macro bias."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from perp_trading.ai.openrouter_client import JudgmentResult, JudgmentService
from perp_trading.ai.prompts import (
    macro_system_prompt,
    macro_user_prompt,
    trading_system_prompt,
    trading_user_prompt,
)
from perp_trading.ai.schemas import parse_macro_strategy, parse_trading_decision
from perp_trading.config import Settings
from perp_trading.context.assembler import LOOKBACK_DAYS_MACRO, ContextAssembler
from perp_trading.risk.profiles import ProfileService
from perp_trading.storage.models import MacroStrategy, TradingDecision, utcnow
from perp_trading.storage.store import Store
from perp_trading.utils.logging import get_logger, log_decision

RATE_LIMITED_REASON = "Rate limited - holding"
FALLBACK_MACRO_HOURS = 6
FALLBACK_NARRATIVE = "Unable to parse LLM response. Defaulting to neutral stance."


class TradingAgent:
    """Asks the judgment service for one decision per instrument and persists it.

    A decision is always persisted. Valid responses become ``pending``
    decisions; invalid responses and provider failures become ``hold``
    decisions that are already ``rejected`` with the reason.
    """

    def __init__(
        self,
        settings: Settings,
        store: Store,
        judgment: JudgmentService,
        assembler: ContextAssembler,
        profiles: ProfileService,
    ) -> None:
        self._settings = settings
        self._store = store
        self._judgment = judgment
        self._assembler = assembler
        self._profiles = profiles
        self._logger = get_logger(__name__)

    def system_prompt(self) -> str:
        return trading_system_prompt(
            self._profiles.current_params(),
            self._profiles.description(),
            self._settings.assets,
            self._settings.weights,
            self._settings.max_leverage,
        )

    def decide(self, symbol: str, macro_strategy: MacroStrategy | None = None) -> TradingDecision:
        context = self._assembler.for_trading(symbol, macro_strategy)
        result = self._judgment.complete(self.system_prompt(), trading_user_prompt(context))
        if not result.ok:
            return self._failed_call(symbol, result, macro_strategy)

        parsed = parse_trading_decision(result.text, self._settings.assets)
        if not parsed.valid:
            self._logger.warning("invalid_judgment", symbol=symbol, errors=parsed.errors)
            return self._persist(
                symbol,
                operation="hold",
                status="rejected",
                rejection_reason=f"Invalid LLM response: {', '.join(parsed.errors)}",
                parsed_decision={"operation": "hold", "reasoning": "Invalid LLM response"},
                context=context,
                raw_response=result.text,
                macro_strategy=macro_strategy,
            )

        data = parsed.data
        if data["symbol"] != symbol:
            self._logger.warning("symbol_mismatch", expected=symbol, received=data["symbol"])
            return self._persist(
                symbol,
                operation="hold",
                status="rejected",
                rejection_reason=f"Invalid LLM response: symbol: expected {symbol}",
                parsed_decision={"operation": "hold", "reasoning": "Invalid LLM response"},
                context=context,
                raw_response=result.text,
                macro_strategy=macro_strategy,
            )

        # unknown keys from the response are kept next to the validated fields
        parsed_decision = {**(parsed.raw or {}), **_non_null(data)}
        return self._persist(
            symbol,
            operation=data["operation"],
            direction=data.get("direction"),
            confidence=data["confidence"],
            reasoning=data.get("reasoning"),
            status="pending",
            parsed_decision=parsed_decision,
            context=context,
            raw_response=result.text,
            macro_strategy=macro_strategy,
        )

    def decide_all(self, macro_strategy: MacroStrategy | None = None) -> list[TradingDecision]:
        return [self.decide(symbol, macro_strategy) for symbol in self._settings.assets]

    def _failed_call(
        self, symbol: str, result: JudgmentResult, macro_strategy: MacroStrategy | None
    ) -> TradingDecision:
        if result.status == "rate_limited":
            self._logger.warning("judgment_rate_limited", symbol=symbol, error=result.error)
            reason = RATE_LIMITED_REASON
        elif result.status == "config_error":
            self._logger.error("judgment_misconfigured", symbol=symbol, error=result.error)
            reason = result.error or "judgment service is not configured"
        else:
            self._logger.error(
                "judgment_failed", symbol=symbol, status=result.status, error=result.error
            )
            reason = result.error or result.status
        return self._persist(
            symbol,
            operation="hold",
            status="rejected",
            rejection_reason=reason,
            parsed_decision={"operation": "hold", "reasoning": "Error during analysis"},
            context={},
            raw_response=None,
            macro_strategy=macro_strategy,
        )

    def _persist(
        self,
        symbol: str,
        *,
        operation: str,
        status: str,
        parsed_decision: dict[str, Any],
        context: dict[str, Any],
        raw_response: str | None,
        macro_strategy: MacroStrategy | None,
        direction: str | None = None,
        confidence: float = 0.0,
        reasoning: str | None = None,
        rejection_reason: str | None = None,
    ) -> TradingDecision:
        decision = TradingDecision(
            symbol=symbol,
            operation=operation,
            direction=direction,
            confidence=confidence,
            reasoning=reasoning,
            status=status,
            rejection_reason=rejection_reason,
            parsed_decision=parsed_decision,
            context_sent=context,
            llm_response=raw_response,
            llm_model=self._judgment.model,
            risk_profile_name=self._profiles.current_name(),
            macro_strategy_id=macro_strategy.id if macro_strategy is not None else None,
        )
        self._store.save(decision)
        log_decision(
            self._logger,
            symbol=symbol,
            operation=operation,
            status=status,
            decision_id=decision.id,
            confidence=confidence,
            reason=rejection_reason,
        )
        return decision


class MacroAgent:
    """Produces the daily macro strategy."""

    def __init__(
        self,
        settings: Settings,
        store: Store,
        judgment: JudgmentService,
        assembler: ContextAssembler,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._judgment = judgment
        self._assembler = assembler
        self._clock = clock
        self._logger = get_logger(__name__)

    def analyze(self) -> MacroStrategy | None:
        """Run the macro analysis.

        Returns the persisted strategy, a short-lived neutral fallback when the
        response does not validate, or ``None`` when the provider call failed.
        """
        context = self._assembler.for_macro_analysis()
        result = self._judgment.complete(
            macro_system_prompt(self._settings.assets),
            macro_user_prompt(context, LOOKBACK_DAYS_MACRO),
        )
        if not result.ok:
            log = self._logger.warning if result.status == "rate_limited" else self._logger.error
            log("macro_analysis_failed", status=result.status, error=result.error)
            return None

        now = self._clock()
        parsed = parse_macro_strategy(result.text)
        if not parsed.valid:
            self._logger.error("invalid_macro_response", errors=parsed.errors)
            strategy = MacroStrategy(
                market_narrative=FALLBACK_NARRATIVE,
                bias="neutral",
                risk_tolerance=0.5,
                key_levels={},
                context_used=context,
                llm_response={"raw": result.text, "errors": parsed.errors},
                llm_model=self._judgment.model,
                valid_until=now + timedelta(hours=FALLBACK_MACRO_HOURS),
                created_at=now,
            )
        else:
            data = parsed.data
            strategy = MacroStrategy(
                market_narrative=data["market_narrative"],
                bias=data["bias"],
                risk_tolerance=data["risk_tolerance"],
                key_levels=data["key_levels"],
                reasoning=data.get("reasoning"),
                context_used=context,
                llm_response={"raw": result.text, "parsed": data},
                llm_model=self._judgment.model,
                valid_until=now + timedelta(hours=self._settings.macro_validity_hours),
                created_at=now,
            )

        self._store.save(strategy)
        self._logger.info(
            "macro_strategy_created",
            strategy_id=strategy.id,
            bias=strategy.bias,
            risk_tolerance=strategy.risk_tolerance,
            valid_until=strategy.valid_until.isoformat(),
        )
        return strategy


def _non_null(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}
