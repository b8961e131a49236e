"""Recurring jobs: snapshots, risk monitor, trading cycle chain, daily macro, bootstrap."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from apscheduler.schedulers.base import BaseScheduler  # type: ignore[import-untyped]
from apscheduler.schedulers.blocking import BlockingScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from perp_trading.app import Services, snapshot_task
from perp_trading.features.indicators import clamp_interval
from perp_trading.storage.models import utcnow
from perp_trading.utils.logging import get_logger

CYCLE_JOB_ID = "trading_cycle"
DEFAULT_CYCLE_INTERVAL_MIN = 12


class TradingScheduler:
    """Owns the APScheduler jobs of a running engine.

    The trading cycle is a chain of one-shot jobs: every run schedules the
    next one at the interval derived from current volatility, and a failed
    run still schedules the next one at the default interval. The bootstrap
    job restarts the chain whenever no cycle job is pending.
    """

    def __init__(
        self,
        services: Services,
        scheduler: BaseScheduler | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._services = services
        self._settings = services.settings
        self._scheduler = scheduler or BlockingScheduler(timezone="UTC")
        self._clock = clock
        self._logger = get_logger(__name__)

    def register(self) -> None:
        settings = self._settings
        self._scheduler.add_job(
            self.run_snapshots,
            "interval",
            minutes=settings.snapshot_interval_min,
            id="market_snapshots",
            next_run_time=self._clock(),
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self.run_risk_monitor,
            "interval",
            minutes=settings.monitor_interval_min,
            id="risk_monitor",
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self.run_macro,
            CronTrigger(hour=settings.macro_hour_utc, minute=0, timezone="UTC"),
            id="macro_strategy",
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            self.bootstrap,
            "interval",
            minutes=settings.bootstrap_interval_min,
            id="bootstrap",
            next_run_time=self._clock(),
            coalesce=True,
            max_instances=1,
        )
        self._logger.info(
            "scheduler_jobs_registered",
            snapshot_interval_min=settings.snapshot_interval_min,
            monitor_interval_min=settings.monitor_interval_min,
            macro_hour_utc=settings.macro_hour_utc,
            bootstrap_interval_min=settings.bootstrap_interval_min,
        )

    def start(self) -> None:
        """Register the jobs and block until interrupted."""
        self.register()
        self._logger.info("scheduler_started", mode=self._settings.mode.value)
        try:
            self._scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            self._logger.info("scheduler_stopped")

    # ==================== jobs ====================

    def run_cycle(self) -> None:
        interval = DEFAULT_CYCLE_INTERVAL_MIN
        try:
            result = self._services.cycle.run()
            interval = result.next_interval_minutes
        except Exception as exc:
            self._logger.exception("trading_cycle_job_failed", error=str(exc))
        self.schedule_next_cycle(interval)

    def schedule_next_cycle(self, minutes: int) -> datetime:
        minutes = clamp_interval(minutes)
        run_at = self._clock() + timedelta(minutes=minutes)
        self._add_cycle_job(run_at)
        self._logger.info("next_cycle_scheduled", minutes=minutes, run_at=run_at.isoformat())
        return run_at

    def bootstrap(self) -> bool:
        """Start the cycle chain now if nothing is scheduled. Returns True if started."""
        if self._scheduler.get_job(CYCLE_JOB_ID) is not None:
            self._logger.debug("bootstrap_skipped", reason="cycle already scheduled")
            return False
        self._logger.info("bootstrap_starting_cycle_chain")
        self._add_cycle_job(self._clock())
        return True

    def run_snapshots(self) -> None:
        try:
            snapshot_task(self._services).run()
        except Exception as exc:
            self._logger.exception("snapshot_job_failed", error=str(exc))

    def run_risk_monitor(self) -> None:
        try:
            result = self._services.monitor.check_all_positions()
            self._services.trailing.check_all_positions()
            self._services.breaker.check_and_update()
        except Exception as exc:
            self._logger.exception("risk_monitor_job_failed", error=str(exc))
            return
        if result.triggered:
            self._logger.info(
                "risk_monitor_closed_positions",
                triggered=result.triggered,
                position_ids=result.closed_position_ids,
            )

    def run_macro(self) -> None:
        try:
            strategy = self._services.macro_agent.analyze()
        except Exception as exc:
            self._logger.exception("macro_job_failed", error=str(exc))
            return
        if strategy is None:
            self._logger.warning("macro_job_no_strategy")

    def _add_cycle_job(self, run_at: datetime) -> Any:
        return self._scheduler.add_job(
            self.run_cycle,
            "date",
            run_date=run_at,
            id=CYCLE_JOB_ID,
            replace_existing=True,
            misfire_grace_time=300,
        )
