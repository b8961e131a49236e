from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from tenacity import wait_none

from perp_trading.ai.openrouter_client import OpenRouterClient
from perp_trading.config import Settings
from perp_trading.data.sentiment import SentimentFetcher
from perp_trading.exchange.base import ExchangeAPIError
from perp_trading.exchange.hyperliquid import HyperliquidClient

Handler = Callable[[httpx.Request], httpx.Response]


class _Recorder:
    """Replays responses in order and keeps every request."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


@pytest.fixture(autouse=True)
def _no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(OpenRouterClient._request_completion.retry, "wait", wait_none())
    monkeypatch.setattr(HyperliquidClient._post_info.retry, "wait", wait_none())


def _completion(content: str | None) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _openrouter(settings: Settings, handler: Handler) -> OpenRouterClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return OpenRouterClient(settings, max_tokens=500, temperature=0.2, http=http)


def test_completion_success(settings: Settings) -> None:
    recorder = _Recorder(_completion('{"operation": "hold"}'))
    result = _openrouter(settings, recorder).complete("system", "user")

    assert result.ok
    assert result.text == '{"operation": "hold"}'
    assert result.model == settings.openrouter_model

    request = recorder.requests[0]
    assert request.headers["Authorization"] == "Bearer test-key"
    body = json.loads(request.content)
    assert body["max_tokens"] == 500
    assert body["temperature"] == 0.2
    assert [m["role"] for m in body["messages"]] == ["system", "user"]


@pytest.mark.parametrize(
    ("response", "status", "error"),
    [
        (httpx.Response(429), "rate_limited", "rate limited by provider (429)"),
        (httpx.Response(401), "config_error", "Authentication failed: HTTP 401"),
        (_completion("   "), "empty_response", "Empty response from LLM"),
        (httpx.Response(200, json={"choices": []}), "empty_response", "Empty response from LLM"),
    ],
)
def test_completion_failures_are_values(
    settings: Settings, response: httpx.Response, status: str, error: str
) -> None:
    result = _openrouter(settings, _Recorder(response)).complete("system", "user")

    assert result.status == status
    assert result.error == error
    assert not result.ok


def test_client_errors_are_not_retried(settings: Settings) -> None:
    recorder = _Recorder(httpx.Response(400, text="bad model"))
    result = _openrouter(settings, recorder).complete("system", "user")

    assert result.status == "api_error"
    assert result.error == "request rejected (400): bad model"
    assert len(recorder.requests) == 1


def test_server_errors_are_retried(settings: Settings) -> None:
    recorder = _Recorder(httpx.Response(502), _completion("recovered"))
    result = _openrouter(settings, recorder).complete("system", "user")

    assert result.ok and result.text == "recovered"
    assert len(recorder.requests) == 2


def test_server_errors_give_up_after_three_attempts(settings: Settings) -> None:
    recorder = _Recorder(*[httpx.Response(503) for _ in range(3)])
    result = _openrouter(settings, recorder).complete("system", "user")

    assert result.status == "api_error"
    assert result.error == "server error (503)"
    assert len(recorder.requests) == 3


def test_missing_api_key_never_calls_provider(settings: Settings) -> None:
    recorder = _Recorder()
    unconfigured = settings.model_copy(update={"openrouter_api_key": ""})
    result = _openrouter(unconfigured, recorder).complete("system", "user")

    assert result.status == "config_error"
    assert result.error == "OPENROUTER_API_KEY is required"
    assert recorder.requests == []


def _hyperliquid(settings: Settings, handler: Handler, address: str = "0xabc") -> HyperliquidClient:
    configured = settings.model_copy(update={"hyperliquid_address": address})
    http = httpx.Client(base_url="https://api.test", transport=httpx.MockTransport(handler))
    return HyperliquidClient(configured, http=http)


def test_mids_skip_unparseable_prices(settings: Settings) -> None:
    mids_payload = {"BTC": "100000.5", "ETH": "3000", "XYZ": "n/a"}
    recorder = _Recorder(httpx.Response(200, json=mids_payload))
    mids = _hyperliquid(settings, recorder).all_mids()

    assert mids == {"BTC": 100_000.5, "ETH": 3_000.0}
    assert json.loads(recorder.requests[0].content) == {"type": "allMids"}


def test_positions_and_account_state(settings: Settings) -> None:
    state: dict[str, Any] = {
        "marginSummary": {"accountValue": "12500.0", "totalMarginUsed": "2000.0"},
        "withdrawable": "9000.0",
        "assetPositions": [
            {
                "position": {
                    "coin": "ETH",
                    "szi": "-2.0",
                    "entryPx": "3100.0",
                    "positionValue": "6000.0",
                    "unrealizedPnl": "200.0",
                    "leverage": {"type": "cross", "value": 4},
                    "liquidationPx": "3900.0",
                    "marginUsed": "1500.0",
                }
            },
            {"position": {"coin": "SOL", "szi": "0"}},
        ],
    }
    client = _hyperliquid(
        settings, _Recorder(httpx.Response(200, json=state), httpx.Response(200, json=state))
    )

    account = client.account_state()
    assert (account.account_value, account.margin_used, account.available_margin) == (
        12_500.0,
        2_000.0,
        9_000.0,
    )

    positions = client.open_positions()
    assert len(positions) == 1
    eth = positions[0]
    assert (eth.symbol, eth.direction, eth.size, eth.leverage) == ("ETH", "short", 2.0, 4)
    assert eth.mark_price == 3_000.0
    assert eth.liquidation_price == 3_900.0


def test_order_status_maps_partial_fill(settings: Settings) -> None:
    payload = {
        "status": "order",
        "order": {"status": "open", "order": {"origSz": "1.0", "sz": "0.4", "limitPx": "100.0"}},
    }
    status = _hyperliquid(settings, _Recorder(httpx.Response(200, json=payload))).order_status(
        "BTC", "42"
    )

    assert status.status == "partially_filled"
    assert status.filled_size == pytest.approx(0.6)
    assert status.average_price == 100.0


def test_hyperliquid_errors_surface_as_exchange_errors(settings: Settings) -> None:
    recorder = _Recorder(*[httpx.Response(500) for _ in range(3)])
    with pytest.raises(ExchangeAPIError):
        _hyperliquid(settings, recorder).all_mids()
    assert len(recorder.requests) == 3

    with pytest.raises(ExchangeAPIError):
        _hyperliquid(settings, _Recorder(httpx.Response(422, text="bad"))).all_mids()

    with pytest.raises(ExchangeAPIError, match="HYPERLIQUID_ADDRESS"):
        _hyperliquid(settings, _Recorder(), address="").account_state()


def test_order_writes_need_signing_backend(settings: Settings) -> None:
    client = _hyperliquid(settings, _Recorder())
    with pytest.raises(ExchangeAPIError, match="no order signing backend"):
        client.place_order("BTC", "buy", 0.01)
    with pytest.raises(ExchangeAPIError):
        client.cancel_order("BTC", "42")


def test_fear_greed_parsing() -> None:
    payload = {"data": [{"value": "27", "value_classification": "Fear", "timestamp": "1772409600"}]}
    http = httpx.Client(transport=httpx.MockTransport(_Recorder(httpx.Response(200, json=payload))))

    sentiment = SentimentFetcher(http=http).fetch_all()

    assert sentiment["fear_greed"] == {
        "value": 27,
        "classification": "Fear",
        "timestamp": "1772409600",
    }
    assert "fetched_at" in sentiment


def test_fear_greed_failure_is_recorded() -> None:
    http = httpx.Client(transport=httpx.MockTransport(_Recorder(httpx.Response(503))))

    sentiment = SentimentFetcher(http=http).fetch_all()

    assert "error" in sentiment
    assert "fear_greed" not in sentiment
