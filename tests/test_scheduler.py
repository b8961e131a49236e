from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from perp_trading.app import Services
from perp_trading.scheduler import CYCLE_JOB_ID, TradingScheduler
from perp_trading.storage.models import Position
from perp_trading.types import CycleResult

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class _FakeScheduler:
    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.started = False

    def add_job(self, func: Any, trigger: Any = None, **kwargs: Any) -> dict[str, Any]:
        job = {"func": func, "trigger": trigger, **kwargs}
        self.jobs[kwargs["id"]] = job
        return job

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        return self.jobs.get(job_id)

    def start(self) -> None:
        self.started = True
        raise KeyboardInterrupt


class _FakeCycle:
    def __init__(self, interval: int = 6, error: Exception | None = None) -> None:
        self.interval = interval
        self.error = error
        self.runs = 0

    def run(self) -> CycleResult:
        self.runs += 1
        if self.error is not None:
            raise self.error
        return CycleResult(status="completed", next_interval_minutes=self.interval)


class _FailingTask:
    def run(self) -> None:
        raise RuntimeError("binance unreachable")


def _scheduler(services: Services) -> tuple[TradingScheduler, _FakeScheduler]:
    fake = _FakeScheduler()
    return TradingScheduler(services, scheduler=fake, clock=lambda: NOW), fake


def test_register_adds_recurring_jobs(services: Services) -> None:
    scheduler, fake = _scheduler(services)
    scheduler.register()

    assert set(fake.jobs) == {"market_snapshots", "risk_monitor", "macro_strategy", "bootstrap"}
    assert fake.jobs["market_snapshots"]["minutes"] == 1
    assert fake.jobs["market_snapshots"]["next_run_time"] == NOW
    assert fake.jobs["risk_monitor"]["minutes"] == 1
    assert fake.jobs["bootstrap"]["minutes"] == 30
    assert isinstance(fake.jobs["macro_strategy"]["trigger"], CronTrigger)
    assert all(job["max_instances"] == 1 for job in fake.jobs.values())


def test_start_stops_cleanly_on_interrupt(services: Services) -> None:
    scheduler, fake = _scheduler(services)
    scheduler.start()
    assert fake.started


def test_bootstrap_starts_chain_once(services: Services) -> None:
    scheduler, fake = _scheduler(services)

    assert scheduler.bootstrap()
    assert fake.jobs[CYCLE_JOB_ID]["run_date"] == NOW
    assert fake.jobs[CYCLE_JOB_ID]["trigger"] == "date"

    assert not scheduler.bootstrap()


def test_cycle_reschedules_at_volatility_interval(services: Services) -> None:
    cycle = _FakeCycle(interval=6)
    services.cycle = cycle  # type: ignore[assignment]
    scheduler, fake = _scheduler(services)

    scheduler.run_cycle()

    assert cycle.runs == 1
    job = fake.jobs[CYCLE_JOB_ID]
    assert job["run_date"] == NOW + timedelta(minutes=6)
    assert job["replace_existing"]


def test_failed_cycle_still_schedules_default_interval(services: Services) -> None:
    services.cycle = _FakeCycle(error=RuntimeError("exchange down"))  # type: ignore[assignment]
    scheduler, fake = _scheduler(services)

    scheduler.run_cycle()

    assert fake.jobs[CYCLE_JOB_ID]["run_date"] == NOW + timedelta(minutes=12)


def test_next_cycle_interval_is_clamped(services: Services) -> None:
    scheduler, _ = _scheduler(services)

    assert scheduler.schedule_next_cycle(1) == NOW + timedelta(minutes=3)
    assert scheduler.schedule_next_cycle(60) == NOW + timedelta(minutes=25)


def test_job_failures_are_contained(services: Services) -> None:
    services.snapshots = _FailingTask()  # type: ignore[assignment]
    services.cycle = _FakeCycle()  # type: ignore[assignment]
    scheduler, _ = _scheduler(services)

    scheduler.run_snapshots()
    scheduler.run_risk_monitor()
    scheduler.run_macro()


def test_risk_monitor_job_moves_trailing_stops(
    services: Services, prices: dict[str, float]
) -> None:
    position = services.positions.create(
        symbol="BTC",
        direction="long",
        size=0.01,
        entry_price=100_000.0,
        leverage=3,
        stop_loss_price=95_000.0,
    )
    assert position is not None
    prices["BTC"] = 103_000.0
    scheduler, _ = _scheduler(services)

    scheduler.run_risk_monitor()

    stored = services.store.get(Position, position.id)
    assert stored is not None and stored.trailing_stop_active
    assert stored.stop_loss_price == pytest.approx(103_000.0 * 0.99)
