"""Fear & Greed index from alternative.me."""

from __future__ import annotations

from typing import Any

import httpx

from perp_trading.storage.models import utcnow
from perp_trading.utils.logging import get_logger

FEAR_GREED_URL = "https://api.alternative.me/fng/"


class SentimentFetcher:
    def __init__(self, timeout: float = 10.0, http: httpx.Client | None = None) -> None:
        self._timeout = timeout
        self._http = http
        self._logger = get_logger(__name__)

    def fetch_all(self) -> dict[str, Any]:
        """Sentiment block stored on every snapshot; errors are recorded, not raised."""
        fetched_at = utcnow().isoformat()
        try:
            return {"fear_greed": self.fetch_fear_greed(), "fetched_at": fetched_at}
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("sentiment_fetch_failed", error=str(exc))
            return {"error": str(exc), "fetched_at": fetched_at}

    def fetch_fear_greed(self) -> dict[str, Any]:
        if self._http is not None:
            response = self._http.get(FEAR_GREED_URL, params={"limit": 1}, timeout=self._timeout)
        else:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.get(FEAR_GREED_URL, params={"limit": 1})
        response.raise_for_status()

        rows = response.json().get("data") or []
        if not rows:
            return {"error": "No data available"}
        row = rows[0]
        return {
            "value": int(row["value"]),
            "classification": row.get("value_classification"),
            "timestamp": row.get("timestamp"),
        }
