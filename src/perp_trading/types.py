"""Shared result types for the trading engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

VolatilityLevel = Literal["very_high", "high", "medium", "low"]


@dataclass(slots=True)
class RiskVerdict:
    """Approve/reject outcome of the risk manager."""

    approved: bool
    reason: str | None = None


@dataclass(slots=True)
class SizingResult:
    """Risk-based position size."""

    size: float
    risk_amount: float
    risk_per_unit: float


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of executing one decision."""

    success: bool
    decision_id: int | None = None
    order_id: int | None = None
    position_id: int | None = None
    fill_price: float | None = None
    filled_size: float | None = None
    realized_pnl: float | None = None
    error: str | None = None


@dataclass(slots=True)
class MonitorResult:
    """Counts from one stop-loss/take-profit scan."""

    triggered: int = 0
    checked: int = 0
    skipped: int = 0
    closed_position_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class TrailingStopResult:
    """Counts from one trailing-stop pass."""

    activated: int = 0
    updated: int = 0
    skipped: int = 0


@dataclass(slots=True)
class ReadinessResult:
    """Whether the market data needed for new positions is present and fresh."""

    missing: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return not self.missing

    @property
    def reason(self) -> str:
        return ", ".join(self.missing)


@dataclass(slots=True)
class VolatilityResult:
    """Volatility classification and the cycle interval derived from it."""

    level: VolatilityLevel
    interval_minutes: int
    atr: float | None = None
    symbol: str | None = None


@dataclass(slots=True)
class CycleResult:
    """Outcome of one trading cycle run."""

    status: str
    decision_ids: list[int] = field(default_factory=list)
    decisions: list[dict[str, object]] = field(default_factory=list)
    orders: list[dict[str, object]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    next_interval_minutes: int = 12
    volatility_level: str | None = None
    elapsed_ms: float = 0.0
