"""SQLAlchemy ORM models for the trading engine.

Tables:
- macro_strategies: daily market bias produced by the macro agent
- trading_decisions: one row per instrument per cycle (append-only history)
- positions: open and closed positions
- orders: orders submitted for decisions
- execution_logs: audit trail of exchange and risk actions
- trading_modes / risk_profiles / circuit_breakers: singleton aggregates
- daily_counters: per-day accumulators (daily realized loss)
- market_snapshots: point-in-time prices and indicators per instrument
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Literal

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from perp_trading.utils.coerce import coerce_float, coerce_int

SINGLETON_ID = 1

DECISION_STATUSES = ("pending", "approved", "rejected", "executed", "failed")
OPERATIONS = ("open", "close", "hold")
DIRECTIONS = ("long", "short")
BIASES = ("bullish", "bearish", "neutral")
POSITION_STATUSES = ("open", "closing", "closed")
CLOSE_REASONS = ("sl_triggered", "tp_triggered", "manual", "signal", "liquidated")
ORDER_TYPES = ("market", "limit", "stop_limit")
ORDER_SIDES = ("buy", "sell")
ORDER_STATUSES = ("pending", "submitted", "filled", "partially_filled", "cancelled", "failed")
ORDER_TERMINAL_STATUSES = ("filled", "cancelled", "failed")
TRADING_MODES = ("enabled", "exit_only", "blocked")
RISK_PROFILE_NAMES = ("cautious", "moderate", "fearless")
LOGGABLE_KINDS = ("order", "position", "decision")
LOG_ACTIONS = ("place_order", "cancel_order", "sync_position", "sync_account", "risk_trigger")
LOG_STATUSES = ("success", "failure")

LoggableKind = Literal["order", "position", "decision"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvalidTransition(Exception):
    """Raised when a state machine is asked for a transition it does not allow."""


class UTCDateTime(TypeDecorator[datetime]):
    """Stores naive UTC, returns timezone-aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map = {datetime: UTCDateTime(), dict[str, Any]: JSON}

    def __init__(self, **kwargs: Any) -> None:
        # Column defaults are applied at construction so transient objects
        # behave the same as persisted ones.
        for column in self.__table__.columns:
            default = column.default
            if column.key in kwargs or default is None or column.primary_key:
                continue
            if default.is_scalar:
                kwargs[column.key] = default.arg
            elif default.is_callable:
                kwargs[column.key] = default.arg(None)
        cls = type(self)
        for key, value in kwargs.items():
            if not hasattr(cls, key):
                raise TypeError(f"{key!r} is an invalid keyword argument for {cls.__name__}")
            setattr(self, key, value)


def _require_choice(field: str, value: str | None, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(f"{field} must be one of {', '.join(choices)} (got {value!r})")


class MacroStrategy(Base):
    """Daily market bias. Immutable after creation."""

    __tablename__ = "macro_strategies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_narrative: Mapped[str] = mapped_column(Text)
    bias: Mapped[str] = mapped_column(String(10))
    risk_tolerance: Mapped[float] = mapped_column(Float)
    key_levels: Mapped[dict[str, Any]] = mapped_column(default=dict)
    reasoning: Mapped[str | None] = mapped_column(Text, default=None)
    valid_until: Mapped[datetime] = mapped_column(index=True)
    llm_model: Mapped[str | None] = mapped_column(String(100), default=None)
    llm_response: Mapped[dict[str, Any] | None] = mapped_column(default=None)
    context_used: Mapped[dict[str, Any] | None] = mapped_column(default=None)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, index=True)

    @validates("bias")
    def _validate_bias(self, key: str, value: str) -> str:
        _require_choice(key, value, BIASES)
        return value

    @validates("risk_tolerance")
    def _validate_risk_tolerance(self, key: str, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"risk_tolerance must be within [0, 1] (got {value})")
        return value

    def is_stale(self, now: datetime | None = None) -> bool:
        return self.valid_until <= (now or utcnow())

    def support_for(self, symbol: str) -> list[float]:
        return self._levels(symbol, "support")

    def resistance_for(self, symbol: str) -> list[float]:
        return self._levels(symbol, "resistance")

    def _levels(self, symbol: str, kind: str) -> list[float]:
        levels = (self.key_levels or {}).get(symbol)
        if not isinstance(levels, dict) or not isinstance(levels.get(kind), list):
            return []
        return list(levels[kind])


class TradingDecision(Base):
    """A decision for one instrument in one cycle.

    ``parsed_decision`` keeps the raw values exactly as the judgment service
    produced them; the numeric accessors coerce on read and never raise.
    """

    __tablename__ = "trading_decisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), index=True)
    operation: Mapped[str] = mapped_column(String(10))
    direction: Mapped[str | None] = mapped_column(String(10), default=None)
    confidence: Mapped[float | None] = mapped_column(Float, default=None)
    parsed_decision: Mapped[dict[str, Any]] = mapped_column(default=dict)
    reasoning: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(String(10), default="pending", index=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, default=None)
    risk_profile_name: Mapped[str | None] = mapped_column(String(20), default=None)
    volatility_level: Mapped[str | None] = mapped_column(String(20), default=None)
    atr_value: Mapped[float | None] = mapped_column(Float, default=None)
    next_cycle_interval: Mapped[int | None] = mapped_column(Integer, default=None)
    macro_strategy_id: Mapped[int | None] = mapped_column(Integer, default=None)
    context_sent: Mapped[dict[str, Any] | None] = mapped_column(default=None)
    llm_response: Mapped[str | None] = mapped_column(Text, default=None)
    llm_model: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    @validates("operation")
    def _validate_operation(self, key: str, value: str) -> str:
        _require_choice(key, value, OPERATIONS)
        return value

    @validates("direction")
    def _validate_direction(self, key: str, value: str | None) -> str | None:
        if value is not None:
            _require_choice(key, value, DIRECTIONS)
        return value

    @validates("status")
    def _validate_status(self, key: str, value: str) -> str:
        _require_choice(key, value, DECISION_STATUSES)
        return value

    # Coerced accessors

    @property
    def leverage(self) -> int | None:
        return coerce_int((self.parsed_decision or {}).get("leverage"))

    @property
    def target_position(self) -> float | None:
        return coerce_float((self.parsed_decision or {}).get("target_position"))

    @property
    def stop_loss(self) -> float | None:
        return coerce_float((self.parsed_decision or {}).get("stop_loss"))

    @property
    def take_profit(self) -> float | None:
        return coerce_float((self.parsed_decision or {}).get("take_profit"))

    @property
    def is_open(self) -> bool:
        return self.operation == "open"

    @property
    def is_close(self) -> bool:
        return self.operation == "close"

    @property
    def is_hold(self) -> bool:
        return self.operation == "hold"

    @property
    def is_actionable(self) -> bool:
        return self.operation in ("open", "close") and self.status == "approved"

    # Transitions

    def _transition(self, target: str, allowed_from: tuple[str, ...]) -> None:
        if self.status not in allowed_from:
            raise InvalidTransition(
                f"decision {self.id} cannot move from {self.status} to {target}"
            )
        self.status = target

    def approve(self) -> None:
        self._transition("approved", ("pending",))

    def reject(self, reason: str) -> None:
        self._transition("rejected", ("pending", "approved"))
        self.rejection_reason = reason

    def mark_executed(self) -> None:
        self._transition("executed", ("pending", "approved"))

    def mark_failed(self, reason: str) -> None:
        self._transition("failed", ("pending", "approved"))
        self.rejection_reason = reason


class Position(Base):
    """An exposure to one instrument in one direction."""

    __tablename__ = "positions"
    __table_args__ = (
        Index(
            "ix_positions_one_open_per_symbol_direction",
            "symbol",
            "direction",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), index=True)
    direction: Mapped[str] = mapped_column(String(10))
    size: Mapped[float] = mapped_column(Float)
    entry_price: Mapped[float] = mapped_column(Float)
    current_price: Mapped[float | None] = mapped_column(Float, default=None)
    leverage: Mapped[int] = mapped_column(Integer, default=1)
    stop_loss_price: Mapped[float | None] = mapped_column(Float, default=None)
    take_profit_price: Mapped[float | None] = mapped_column(Float, default=None)
    liquidation_price: Mapped[float | None] = mapped_column(Float, default=None)
    risk_amount: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(10), default="open", index=True)
    close_reason: Mapped[str | None] = mapped_column(String(20), default=None)
    realized_pnl: Mapped[float | None] = mapped_column(Float, default=None)
    unrealized_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    opened_at: Mapped[datetime] = mapped_column(default=utcnow)
    closed_at: Mapped[datetime | None] = mapped_column(default=None)
    peak_price: Mapped[float | None] = mapped_column(Float, default=None)
    peak_price_at: Mapped[datetime | None] = mapped_column(default=None)
    trailing_stop_active: Mapped[bool] = mapped_column(Boolean, default=False)
    original_stop_loss_price: Mapped[float | None] = mapped_column(Float, default=None)

    @validates("direction")
    def _validate_direction(self, key: str, value: str) -> str:
        _require_choice(key, value, DIRECTIONS)
        return value

    @validates("status")
    def _validate_status(self, key: str, value: str) -> str:
        _require_choice(key, value, POSITION_STATUSES)
        return value

    @validates("close_reason")
    def _validate_close_reason(self, key: str, value: str | None) -> str | None:
        if value is not None:
            _require_choice(key, value, CLOSE_REASONS)
        return value

    @validates("size", "entry_price")
    def _validate_positive(self, key: str, value: float) -> float:
        if value is None or value <= 0:
            raise ValueError(f"{key} must be greater than 0 (got {value})")
        return value

    @validates("stop_loss_price", "take_profit_price")
    def _validate_optional_positive(self, key: str, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError(f"{key} must be greater than 0 when present (got {value})")
        return value

    @validates("leverage")
    def _validate_leverage(self, key: str, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError(f"leverage must be within [1, 100] (got {value})")
        return value

    @validates("risk_amount")
    def _validate_risk_amount(self, key: str, value: float) -> float:
        if value < 0:
            raise ValueError(f"risk_amount must be >= 0 (got {value})")
        return value

    @property
    def is_long(self) -> bool:
        return self.direction == "long"

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    @property
    def direction_multiplier(self) -> int:
        return 1 if self.is_long else -1

    # Transitions

    def mark_closing(self) -> None:
        if self.status != "open":
            raise InvalidTransition(f"position {self.id} is {self.status}, not open")
        self.status = "closing"

    def reopen(self) -> None:
        """Back to open when a close order did not (fully) fill."""
        if self.status != "closing":
            raise InvalidTransition(f"position {self.id} is {self.status}, not closing")
        self.status = "open"

    def close(self, reason: str, pnl: float | None = None, now: datetime | None = None) -> None:
        """Close the position; realized P&L defaults to the last unrealized P&L."""
        if self.status not in ("open", "closing"):
            raise InvalidTransition(f"position {self.id} is already {self.status}")
        self.close_reason = reason
        self.realized_pnl = pnl if pnl is not None else (self.unrealized_pnl or 0.0)
        self.closed_at = now or utcnow()
        self.status = "closed"

    # P&L

    def unrealized_pnl_at(self, price: float) -> float:
        return self.size * (price - self.entry_price) * self.direction_multiplier

    def update_current_price(self, price: float, now: datetime | None = None) -> None:
        """Refresh price and P&L; the peak follows the most favourable price seen."""
        self.current_price = price
        self.unrealized_pnl = self.unrealized_pnl_at(price)
        if self.peak_price is None or (price - self.peak_price) * self.direction_multiplier > 0:
            self.peak_price = price
            self.peak_price_at = now or utcnow()

    @property
    def pnl_percent(self) -> float:
        if self.current_price is None or self.entry_price == 0:
            return 0.0
        change = (self.current_price - self.entry_price) / self.entry_price
        return change * self.direction_multiplier * 100

    @property
    def notional_value(self) -> float:
        return self.size * self.entry_price

    @property
    def margin_used(self) -> float:
        return self.notional_value / self.leverage

    # Triggers

    def stop_loss_triggered(self, price: float | None = None) -> bool:
        price = self.current_price if price is None else price
        if self.stop_loss_price is None or price is None:
            return False
        if self.is_long:
            return price <= self.stop_loss_price
        return price >= self.stop_loss_price

    def take_profit_triggered(self, price: float | None = None) -> bool:
        price = self.current_price if price is None else price
        if self.take_profit_price is None or price is None:
            return False
        if self.is_long:
            return price >= self.take_profit_price
        return price <= self.take_profit_price

    @property
    def risk_reward_ratio(self) -> float | None:
        if self.stop_loss_price is None or self.take_profit_price is None:
            return None
        risk = abs(self.entry_price - self.stop_loss_price)
        if risk == 0:
            return None
        return abs(self.take_profit_price - self.entry_price) / risk

    @property
    def stop_loss_distance_pct(self) -> float | None:
        if self.stop_loss_price is None or not self.current_price:
            return None
        return abs(self.current_price - self.stop_loss_price) / self.current_price * 100

    @property
    def take_profit_distance_pct(self) -> float | None:
        if self.take_profit_price is None or not self.current_price:
            return None
        return abs(self.take_profit_price - self.current_price) / self.current_price * 100

    def age_minutes(self, now: datetime | None = None) -> float:
        return ((now or utcnow()) - self.opened_at).total_seconds() / 60


class Order(Base):
    """An order sent (or simulated) for a decision."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20), index=True)
    order_type: Mapped[str] = mapped_column(String(12))
    side: Mapped[str] = mapped_column(String(4))
    size: Mapped[float] = mapped_column(Float)
    price: Mapped[float | None] = mapped_column(Float, default=None)
    stop_price: Mapped[float | None] = mapped_column(Float, default=None)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    filled_size: Mapped[float] = mapped_column(Float, default=0.0)
    average_fill_price: Mapped[float | None] = mapped_column(Float, default=None)
    exchange_order_id: Mapped[str | None] = mapped_column(String(100), default=None)
    trading_decision_id: Mapped[int | None] = mapped_column(Integer, default=None, index=True)
    position_id: Mapped[int | None] = mapped_column(Integer, default=None, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    cancel_reason: Mapped[str | None] = mapped_column(Text, default=None)
    submitted_at: Mapped[datetime | None] = mapped_column(default=None)
    filled_at: Mapped[datetime | None] = mapped_column(default=None)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

    @classmethod
    def build(
        cls,
        *,
        symbol: str,
        side: str,
        size: float,
        order_type: str = "market",
        price: float | None = None,
        stop_price: float | None = None,
        trading_decision_id: int | None = None,
        position_id: int | None = None,
    ) -> Order:
        """Construct a pending order, enforcing type/price invariants."""
        _require_choice("order_type", order_type, ORDER_TYPES)
        _require_choice("side", side, ORDER_SIDES)
        if size <= 0:
            raise ValueError(f"size must be greater than 0 (got {size})")
        if order_type in ("limit", "stop_limit") and price is None:
            raise ValueError(f"price is required for {order_type} orders")
        if order_type == "stop_limit" and stop_price is None:
            raise ValueError("stop_price is required for stop_limit orders")
        return cls(
            symbol=symbol,
            side=side,
            size=size,
            order_type=order_type,
            price=price,
            stop_price=stop_price,
            status="pending",
            filled_size=0.0,
            trading_decision_id=trading_decision_id,
            position_id=position_id,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in ORDER_TERMINAL_STATUSES

    @property
    def remaining_size(self) -> float:
        return max(self.size - (self.filled_size or 0.0), 0.0)

    @property
    def fill_percent(self) -> float:
        if not self.size:
            return 0.0
        return (self.filled_size or 0.0) / self.size * 100

    def _require(self, allowed_from: tuple[str, ...], target: str) -> None:
        if self.status not in allowed_from:
            raise InvalidTransition(f"order {self.id} cannot move from {self.status} to {target}")

    def submit(self, exchange_order_id: str, now: datetime | None = None) -> None:
        self._require(("pending",), "submitted")
        self.status = "submitted"
        self.exchange_order_id = exchange_order_id
        self.submitted_at = now or utcnow()

    def fill(self, filled_size: float, average_price: float, now: datetime | None = None) -> None:
        self._require(("submitted", "partially_filled"), "filled")
        self.status = "filled"
        self.filled_size = filled_size
        self.average_fill_price = average_price
        self.filled_at = now or utcnow()

    def partially_fill(self, filled_size: float, average_price: float) -> None:
        self._require(("submitted", "partially_filled"), "partially_filled")
        self.status = "partially_filled"
        self.filled_size = filled_size
        self.average_fill_price = average_price

    def cancel(self, reason: str | None = None) -> None:
        self._require(("pending", "submitted", "partially_filled"), "cancelled")
        self.status = "cancelled"
        self.cancel_reason = reason

    def fail(self, error: str) -> None:
        self._require(("pending", "submitted", "partially_filled"), "failed")
        self.status = "failed"
        self.error_message = error


class ExecutionLog(Base):
    """Audit entry attached to an order, a position, a decision, or nothing."""

    __tablename__ = "execution_logs"
    __table_args__ = (Index("ix_execution_logs_loggable", "loggable_kind", "loggable_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    loggable_kind: Mapped[str | None] = mapped_column(String(10), default=None)
    loggable_id: Mapped[int | None] = mapped_column(Integer, default=None)
    action: Mapped[str] = mapped_column(String(20), index=True)
    status: Mapped[str] = mapped_column(String(10))
    request_payload: Mapped[dict[str, Any]] = mapped_column(default=dict)
    response_payload: Mapped[dict[str, Any]] = mapped_column(default=dict)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    executed_at: Mapped[datetime] = mapped_column(default=utcnow, index=True)

    @classmethod
    def record(
        cls,
        action: str,
        *,
        success: bool,
        target: tuple[LoggableKind, int] | None = None,
        request: dict[str, Any] | None = None,
        response: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> ExecutionLog:
        _require_choice("action", action, LOG_ACTIONS)
        kind, target_id = target if target is not None else (None, None)
        if kind is not None:
            _require_choice("loggable_kind", kind, LOGGABLE_KINDS)
        return cls(
            loggable_kind=kind,
            loggable_id=target_id,
            action=action,
            status="success" if success else "failure",
            request_payload=request or {},
            response_payload=response or {},
            error_message=error,
        )


class TradingMode(Base):
    """Singleton operator override: enabled, exit_only or blocked."""

    __tablename__ = "trading_modes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    mode: Mapped[str] = mapped_column(String(10), default="enabled")
    changed_by: Mapped[str] = mapped_column(String(50), default="system")
    reason: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    @validates("mode")
    def _validate_mode(self, key: str, value: str) -> str:
        _require_choice(key, value, TRADING_MODES)
        return value

    @property
    def can_open(self) -> bool:
        return self.mode == "enabled"

    @property
    def can_close(self) -> bool:
        return self.mode in ("enabled", "exit_only")


class RiskProfile(Base):
    """Singleton selecting the active risk parameter set."""

    __tablename__ = "risk_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(20), default="moderate")
    changed_by: Mapped[str] = mapped_column(String(50), default="system")
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    @validates("name")
    def _validate_name(self, key: str, value: str) -> str:
        _require_choice(key, value, RISK_PROFILE_NAMES)
        return value


class CircuitBreakerState(Base):
    """Singleton circuit breaker record; the daily loss lives in daily_counters."""

    __tablename__ = "circuit_breakers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    triggered: Mapped[bool] = mapped_column(Boolean, default=False)
    trigger_reason: Mapped[str | None] = mapped_column(Text, default=None)
    triggered_at: Mapped[datetime | None] = mapped_column(default=None)
    cooldown_until: Mapped[datetime | None] = mapped_column(default=None)
    consecutive_losses: Mapped[int] = mapped_column(Integer, default=0)


class DailyCounter(Base):
    __tablename__ = "daily_counters"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    day: Mapped[date] = mapped_column(Date, primary_key=True)
    value: Mapped[float] = mapped_column(Float, default=0.0)


class MarketSnapshot(Base):
    """Point-in-time market data for one instrument."""

    __tablename__ = "market_snapshots"
    __table_args__ = (
        Index("ix_market_snapshots_symbol_captured", "symbol", "captured_at", unique=True),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(20))
    price: Mapped[float] = mapped_column(Float)
    high_24h: Mapped[float | None] = mapped_column(Float, default=None)
    low_24h: Mapped[float | None] = mapped_column(Float, default=None)
    volume_24h: Mapped[float | None] = mapped_column(Float, default=None)
    price_change_pct_24h: Mapped[float | None] = mapped_column(Float, default=None)
    indicators: Mapped[dict[str, Any]] = mapped_column(default=dict)
    sentiment: Mapped[dict[str, Any] | None] = mapped_column(default=None)
    captured_at: Mapped[datetime] = mapped_column(default=utcnow)

    def indicator(self, name: str) -> Any:
        return (self.indicators or {}).get(name)

    def above_ema(self, period: int) -> bool | None:
        ema = self.indicator(f"ema_{period}")
        if ema is None:
            return None
        return self.price > ema

    @property
    def rsi_signal(self) -> str | None:
        rsi = self.indicator("rsi_14")
        if rsi is None:
            return None
        if rsi <= 30:
            return "oversold"
        if rsi >= 70:
            return "overbought"
        return "neutral"

    @property
    def macd_signal(self) -> str | None:
        macd = self.indicator("macd")
        if not isinstance(macd, dict) or macd.get("histogram") is None:
            return None
        return "bullish" if macd["histogram"] > 0 else "bearish"
