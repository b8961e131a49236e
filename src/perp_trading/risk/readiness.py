"""Data readiness gate for opening new positions."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

from perp_trading.ai.agents import FALLBACK_NARRATIVE
from perp_trading.config import Settings
from perp_trading.storage.models import utcnow
from perp_trading.storage.store import Store
from perp_trading.types import ReadinessResult
from perp_trading.utils.logging import get_logger


class ReadinessChecker:
    """Checks that the context behind a new position is present and fresh.

    - valid_macro_strategy: an active strategy that is not the parse-error fallback
    - fresh_market_data: every configured asset has a snapshot newer than the limit
    - sentiment_data: the newest snapshot carries a Fear & Greed value within its age limit

    Each check can be switched off in settings; a disabled check always passes.
    """

    def __init__(
        self, settings: Settings, store: Store, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self._settings = settings
        self._store = store
        self._clock = clock
        self._logger = get_logger(__name__)

    def check(self, now: datetime | None = None) -> ReadinessResult:
        now = now or self._clock()
        result = ReadinessResult()
        if not self.valid_macro_strategy(now):
            result.missing.append("valid_macro_strategy")
        if not self.fresh_market_data(now):
            result.missing.append("fresh_market_data")
        if not self.sentiment_available(now):
            result.missing.append("sentiment_data")
        if not result.ready:
            self._logger.warning("data_not_ready", missing=result.missing)
        return result

    def status(self, now: datetime | None = None) -> dict[str, bool]:
        now = now or self._clock()
        checks = {
            "valid_macro_strategy": self.valid_macro_strategy(now),
            "fresh_market_data": self.fresh_market_data(now),
            "sentiment_available": self.sentiment_available(now),
        }
        checks["ready"] = all(checks.values())
        return checks

    def valid_macro_strategy(self, now: datetime) -> bool:
        if not self._settings.readiness_require_macro:
            return True
        strategy = self._store.active_macro_strategy(now)
        return strategy is not None and strategy.market_narrative != FALLBACK_NARRATIVE

    def fresh_market_data(self, now: datetime) -> bool:
        if not self._settings.readiness_require_fresh_market_data:
            return True
        cutoff = now - timedelta(minutes=self._settings.readiness_market_data_max_age_min)
        for symbol in self._settings.assets:
            snapshot = self._store.latest_snapshot(symbol)
            if snapshot is None or snapshot.captured_at <= cutoff:
                return False
        return True

    def sentiment_available(self, now: datetime) -> bool:
        if not self._settings.readiness_require_sentiment:
            return True
        snapshot = self._store.latest_snapshot_any()
        if snapshot is None or not snapshot.sentiment:
            return False
        cutoff = now - timedelta(hours=self._settings.readiness_sentiment_max_age_hours)
        if snapshot.captured_at <= cutoff:
            return False
        fear_greed = snapshot.sentiment.get("fear_greed") or {}
        return fear_greed.get("value") is not None
