"""OpenRouter judgment client."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from perp_trading.config import Settings
from perp_trading.utils.logging import get_logger, log_llm_call

_OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"

JudgmentStatus = Literal["success", "rate_limited", "config_error", "api_error", "empty_response"]


@dataclass(slots=True)
class JudgmentResult:
    """Outcome of one completion request. Failures are values, not exceptions."""

    status: JudgmentStatus
    text: str | None = None
    error: str | None = None
    model: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class JudgmentService(Protocol):
    """Anything that turns a (system, user) prompt pair into text."""

    model: str

    def complete(self, system_prompt: str, user_prompt: str) -> JudgmentResult: ...


class _TransientError(Exception):
    """Transport failure or 5xx; retried."""


class _RateLimited(Exception):
    pass


class _AuthFailed(Exception):
    pass


class _RequestRejected(Exception):
    """Non-retryable 4xx."""


class OpenRouterClient:
    """Chat completion client for OpenRouter."""

    def __init__(
        self,
        settings: Settings,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        http: httpx.Client | None = None,
    ) -> None:
        self._settings = settings
        self.model = settings.openrouter_model
        self._max_tokens = max_tokens or settings.trading_max_tokens
        self._temperature = settings.trading_temperature if temperature is None else temperature
        self._http = http
        self._logger = get_logger(__name__)

    def complete(self, system_prompt: str, user_prompt: str) -> JudgmentResult:
        if not self._settings.openrouter_api_key:
            self._logger.error("openrouter_not_configured")
            return JudgmentResult(
                status="config_error",
                error="OPENROUTER_API_KEY is required",
                model=self.model,
            )

        started = time.perf_counter()
        status: JudgmentStatus
        text: str | None = None
        error: str | None = None
        try:
            text = self._request_completion(system_prompt, user_prompt)
        except _RateLimited as exc:
            status, error = "rate_limited", str(exc)
        except _AuthFailed as exc:
            status, error = "config_error", f"Authentication failed: {exc}"
        except (_TransientError, _RequestRejected) as exc:
            status, error = "api_error", str(exc)
        else:
            if text is None or not text.strip():
                status, error = "empty_response", "Empty response from LLM"
            else:
                status = "success"

        log_llm_call(
            self._logger,
            model=self.model,
            success=status == "success",
            latency_ms=(time.perf_counter() - started) * 1000,
            status=status,
            error=error,
        )
        return JudgmentResult(status=status, text=text, error=error, model=self.model)

    @retry(
        retry=retry_if_exception_type(_TransientError),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _request_completion(self, system_prompt: str, user_prompt: str) -> str | None:
        headers = {
            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

        try:
            if self._http is not None:
                response = self._http.post(
                    _OPENROUTER_URL,
                    headers=headers,
                    json=payload,
                    timeout=self._settings.openrouter_timeout,
                )
            else:
                with httpx.Client(timeout=self._settings.openrouter_timeout) as client:
                    response = client.post(_OPENROUTER_URL, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise _TransientError(str(exc)) from exc

        code = response.status_code
        if code == 429:
            raise _RateLimited(f"rate limited by provider ({code})")
        if code in (401, 403):
            raise _AuthFailed(f"HTTP {code}")
        if code >= 500:
            raise _TransientError(f"server error ({code})")
        if code >= 400:
            raise _RequestRejected(f"request rejected ({code}): {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as exc:
            raise _RequestRejected(f"malformed provider response: {exc}") from exc
        return _extract_message_content(body)


def _extract_message_content(payload: Any) -> str | None:
    """Read assistant content from an OpenRouter response payload."""
    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if isinstance(content, str):
        return content
    return None
