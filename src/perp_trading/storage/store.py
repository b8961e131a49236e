"""Durable record store backed by SQLAlchemy.

All shared mutable state lives here. Counters and singleton aggregates are
changed with atomic UPDATE statements so separate worker processes can share
one database without in-process locks.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, TypeVar

from sqlalchemy import create_engine, func, inspect, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from perp_trading.config import Settings
from perp_trading.storage.models import (
    SINGLETON_ID,
    Base,
    CircuitBreakerState,
    DailyCounter,
    ExecutionLog,
    MacroStrategy,
    MarketSnapshot,
    Order,
    Position,
    RiskProfile,
    TradingDecision,
    TradingMode,
    utcnow,
)
from perp_trading.utils.logging import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)

DAILY_LOSS_COUNTER = "daily_loss"


class Store:
    """Repository over the trading database."""

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # one shared connection, otherwise each session sees an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

        logger.debug(
            "database_initialized",
            url=self.engine.url.render_as_string(hide_password=True),
            tables=inspect(self.engine).get_table_names(),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> Store:
        settings.ensure_directories()
        return cls(settings.database_url)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Get a database session with automatic commit/rollback."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ==================== generic CRUD ====================

    def save(self, *objects: Base) -> None:
        """Insert new objects or flush changes made to detached ones."""
        with self.session() as session:
            session.add_all(objects)

    def get(self, model: type[ModelT], object_id: int) -> ModelT | None:
        with self.session() as session:
            return session.get(model, object_id)

    # ==================== macro strategies ====================

    def active_macro_strategy(self, now: datetime | None = None) -> MacroStrategy | None:
        """Most recently created strategy that is not stale."""
        now = now or utcnow()
        with self.session() as session:
            stmt = (
                select(MacroStrategy)
                .where(MacroStrategy.valid_until > now)
                .order_by(MacroStrategy.created_at.desc(), MacroStrategy.id.desc())
                .limit(1)
            )
            return session.scalars(stmt).first()

    def macro_needs_refresh(self, now: datetime | None = None) -> bool:
        return self.active_macro_strategy(now) is None

    def latest_macro_strategy(self) -> MacroStrategy | None:
        with self.session() as session:
            stmt = select(MacroStrategy).order_by(
                MacroStrategy.created_at.desc(), MacroStrategy.id.desc()
            )
            return session.scalars(stmt.limit(1)).first()

    # ==================== decisions and orders ====================

    def recent_decisions(self, limit: int = 20, symbol: str | None = None) -> list[TradingDecision]:
        with self.session() as session:
            stmt = select(TradingDecision)
            if symbol is not None:
                stmt = stmt.where(TradingDecision.symbol == symbol)
            stmt = stmt.order_by(TradingDecision.created_at.desc(), TradingDecision.id.desc())
            return list(session.scalars(stmt.limit(limit)))

    def orders_for_decision(self, decision_id: int) -> list[Order]:
        with self.session() as session:
            stmt = (
                select(Order)
                .where(Order.trading_decision_id == decision_id)
                .order_by(Order.id)
            )
            return list(session.scalars(stmt))

    def execution_logs_for(self, kind: str, loggable_id: int) -> list[ExecutionLog]:
        with self.session() as session:
            stmt = (
                select(ExecutionLog)
                .where(ExecutionLog.loggable_kind == kind, ExecutionLog.loggable_id == loggable_id)
                .order_by(ExecutionLog.id)
            )
            return list(session.scalars(stmt))

    def recent_execution_logs(self, limit: int = 20) -> list[ExecutionLog]:
        with self.session() as session:
            stmt = select(ExecutionLog).order_by(ExecutionLog.id.desc()).limit(limit)
            return list(session.scalars(stmt))

    # ==================== positions ====================

    def open_positions(self, symbol: str | None = None) -> list[Position]:
        with self.session() as session:
            stmt = select(Position).where(Position.status == "open")
            if symbol is not None:
                stmt = stmt.where(Position.symbol == symbol)
            return list(session.scalars(stmt.order_by(Position.opened_at.desc())))

    def open_position(self, symbol: str, direction: str | None = None) -> Position | None:
        with self.session() as session:
            stmt = select(Position).where(Position.status == "open", Position.symbol == symbol)
            if direction is not None:
                stmt = stmt.where(Position.direction == direction)
            return session.scalars(stmt.order_by(Position.opened_at.desc()).limit(1)).first()

    def open_position_count(self) -> int:
        with self.session() as session:
            stmt = select(func.count()).select_from(Position).where(Position.status == "open")
            return int(session.scalar(stmt) or 0)

    def insert_open_position(self, position: Position) -> Position | None:
        """Insert an open position; ``None`` if one already exists for symbol+direction."""
        try:
            self.save(position)
        except IntegrityError:
            logger.warning(
                "duplicate_open_position",
                symbol=position.symbol,
                direction=position.direction,
            )
            return None
        return position

    # ==================== market snapshots ====================

    def latest_snapshot(self, symbol: str) -> MarketSnapshot | None:
        with self.session() as session:
            stmt = (
                select(MarketSnapshot)
                .where(MarketSnapshot.symbol == symbol)
                .order_by(MarketSnapshot.captured_at.desc())
                .limit(1)
            )
            return session.scalars(stmt).first()

    def latest_snapshot_any(self) -> MarketSnapshot | None:
        with self.session() as session:
            stmt = select(MarketSnapshot).order_by(MarketSnapshot.captured_at.desc()).limit(1)
            return session.scalars(stmt).first()

    def snapshots_since(
        self, symbol: str, since: datetime, limit: int | None = None
    ) -> list[MarketSnapshot]:
        """Snapshots newer than ``since``, newest first."""
        with self.session() as session:
            stmt = (
                select(MarketSnapshot)
                .where(MarketSnapshot.symbol == symbol, MarketSnapshot.captured_at >= since)
                .order_by(MarketSnapshot.captured_at.desc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(session.scalars(stmt))

    # ==================== singletons ====================

    def _singleton(self, model: type[ModelT], **defaults: Any) -> ModelT:
        with self.session() as session:
            existing = session.get(model, SINGLETON_ID)
            if existing is not None:
                return existing
        try:
            with self.session() as session:
                created = model(id=SINGLETON_ID, **defaults)
                session.add(created)
            return created
        except IntegrityError:
            # another worker created it first
            with self.session() as session:
                existing = session.get(model, SINGLETON_ID)
            if existing is None:
                raise
            return existing

    def trading_mode(self) -> TradingMode:
        return self._singleton(TradingMode, mode="enabled", changed_by="system")

    def set_trading_mode(
        self, mode: str, changed_by: str, reason: str | None = None
    ) -> TradingMode:
        record = self.trading_mode()
        record.mode = mode
        record.changed_by = changed_by
        record.reason = reason
        self.save(record)
        return record

    def risk_profile(self, default_name: str = "moderate") -> RiskProfile:
        return self._singleton(RiskProfile, name=default_name, changed_by="system")

    def set_risk_profile(self, name: str, changed_by: str) -> RiskProfile:
        record = self.risk_profile(default_name=name)
        record.name = name
        record.changed_by = changed_by
        self.save(record)
        return record

    def breaker_state(self) -> CircuitBreakerState:
        return self._singleton(CircuitBreakerState, triggered=False, consecutive_losses=0)

    def increment_consecutive_losses(self) -> int:
        self.breaker_state()
        with self.session() as session:
            session.execute(
                update(CircuitBreakerState)
                .where(CircuitBreakerState.id == SINGLETON_ID)
                .values(consecutive_losses=CircuitBreakerState.consecutive_losses + 1)
            )
            value = session.scalar(
                select(CircuitBreakerState.consecutive_losses).where(
                    CircuitBreakerState.id == SINGLETON_ID
                )
            )
        return int(value or 0)

    def reset_consecutive_losses(self) -> None:
        self.breaker_state()
        with self.session() as session:
            session.execute(
                update(CircuitBreakerState)
                .where(CircuitBreakerState.id == SINGLETON_ID)
                .values(consecutive_losses=0)
            )

    def trigger_breaker(
        self, reason: str, triggered_at: datetime, cooldown_until: datetime
    ) -> bool:
        """Set the breaker; ``False`` when it was already triggered."""
        self.breaker_state()
        with self.session() as session:
            result = session.execute(
                update(CircuitBreakerState)
                .where(
                    CircuitBreakerState.id == SINGLETON_ID,
                    CircuitBreakerState.triggered.is_(False),
                )
                .values(
                    triggered=True,
                    trigger_reason=reason,
                    triggered_at=triggered_at,
                    cooldown_until=cooldown_until,
                )
            )
            return result.rowcount == 1

    def clear_breaker(self, *, only_if_triggered: bool = True) -> bool:
        """Clear the halt and consecutive losses; ``False`` if nothing changed."""
        self.breaker_state()
        with self.session() as session:
            stmt = update(CircuitBreakerState).where(CircuitBreakerState.id == SINGLETON_ID)
            if only_if_triggered:
                stmt = stmt.where(CircuitBreakerState.triggered.is_(True))
            result = session.execute(
                stmt.values(
                    triggered=False,
                    trigger_reason=None,
                    triggered_at=None,
                    cooldown_until=None,
                    consecutive_losses=0,
                )
            )
            return result.rowcount == 1

    # ==================== daily counters ====================

    def add_to_daily_counter(self, name: str, amount: float, day: date) -> float:
        """Atomically add ``amount`` to the counter for ``day`` and return the new value."""
        for _ in range(2):
            with self.session() as session:
                result = session.execute(
                    update(DailyCounter)
                    .where(DailyCounter.name == name, DailyCounter.day == day)
                    .values(value=DailyCounter.value + amount)
                )
                if result.rowcount == 1:
                    break
            try:
                with self.session() as session:
                    session.add(DailyCounter(name=name, day=day, value=amount))
                break
            except IntegrityError:
                # row created concurrently; retry the update
                continue
        return self.daily_counter(name, day)

    def daily_counter(self, name: str, day: date) -> float:
        with self.session() as session:
            value = session.scalar(
                select(DailyCounter.value).where(DailyCounter.name == name, DailyCounter.day == day)
            )
            return float(value or 0.0)

    def reset_daily_counter(self, name: str, day: date) -> None:
        with self.session() as session:
            session.execute(
                update(DailyCounter)
                .where(DailyCounter.name == name, DailyCounter.day == day)
                .values(value=0.0)
            )
