"""Judgment output schemas and tolerant parsing helpers."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from perp_trading.utils.coerce import coerce_float, coerce_int

PARSE_FAILURE = "failed to parse JSON from response"

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)
# outermost {...} span with up to three levels of nesting
_BALANCED_OBJECT = re.compile(r"\{(?:[^{}]|\{(?:[^{}]|\{[^{}]*\})*\})*\}")


@dataclass(slots=True)
class ParseResult:
    """Outcome of validating one judgment response."""

    valid: bool
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    raw: dict[str, Any] | None = None


def _keep_if_unparseable(value: Any, coerced: Any) -> Any:
    # unparseable input is handed to pydantic unchanged so it reports the error
    return value if coerced is None else coerced


class TradingDecisionPayload(BaseModel):
    """Per-instrument trade decision."""

    model_config = ConfigDict(extra="ignore")

    operation: Literal["open", "close", "hold"]
    symbol: str
    confidence: float = Field(ge=0.0, le=1.0)
    direction: Literal["long", "short"] | None = None
    leverage: int | None = Field(default=None, ge=1, le=10)
    target_position: float | None = Field(default=None, gt=0.0, le=1.0)
    stop_loss: float | None = Field(default=None, gt=0.0)
    take_profit: float | None = Field(default=None, gt=0.0)
    reasoning: str | None = None

    @field_validator("leverage", mode="before")
    @classmethod
    def coerce_leverage(cls, v: Any) -> Any:
        return None if v is None else _keep_if_unparseable(v, coerce_int(v))

    @field_validator("confidence", "target_position", "stop_loss", "take_profit", mode="before")
    @classmethod
    def coerce_numeric(cls, v: Any) -> Any:
        return None if v is None else _keep_if_unparseable(v, coerce_float(v))

    @field_validator("operation", "direction", mode="before")
    @classmethod
    def normalize_choice(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("symbol")
    @classmethod
    def symbol_in_whitelist(cls, v: str, info: ValidationInfo) -> str:
        symbols = (info.context or {}).get("symbols")
        if symbols is not None and v not in symbols:
            raise ValueError(f"must be one of {', '.join(symbols)}")
        return v


class MacroStrategyPayload(BaseModel):
    """Daily macro bias."""

    model_config = ConfigDict(extra="ignore")

    market_narrative: str = Field(min_length=10)
    bias: Literal["bullish", "bearish", "neutral"]
    risk_tolerance: float = Field(ge=0.0, le=1.0)
    key_levels: dict[str, Any] = Field(default_factory=dict)
    reasoning: str | None = None

    @field_validator("bias", mode="before")
    @classmethod
    def normalize_bias(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("risk_tolerance", mode="before")
    @classmethod
    def coerce_tolerance(cls, v: Any) -> Any:
        return _keep_if_unparseable(v, coerce_float(v))


def extract_json(text: str | None) -> dict[str, Any] | None:
    """Find the JSON object in a judgment response.

    Tries, in order: the whole text, the first fenced code block, the outermost
    balanced ``{...}`` span. Returns ``None`` when nothing decodes, or when the
    first decoded value is not an object.
    """
    if not text or not text.strip():
        return None

    candidates = [text.strip()]
    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    braced = _BALANCED_OBJECT.search(text)
    if braced:
        candidates.append(braced.group(0))

    for candidate in candidates:
        try:
            decoded = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        # the first candidate that decodes wins, even when it is not an object
        return decoded if isinstance(decoded, dict) else None
    return None


def _format_errors(exc: ValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "response"
        messages.append(f"{location}: {error['msg']}")
    return messages


def parse_trading_decision(text: str | None, symbols: list[str] | None = None) -> ParseResult:
    """Validate a trade decision; failures come back as field-level messages."""
    raw = extract_json(text)
    if raw is None:
        return ParseResult(valid=False, errors=[PARSE_FAILURE])

    try:
        payload = TradingDecisionPayload.model_validate(raw, context={"symbols": symbols})
    except ValidationError as exc:
        return ParseResult(valid=False, errors=_format_errors(exc), raw=raw)

    errors = []
    if payload.operation == "open":
        for required in ("direction", "stop_loss", "leverage"):
            if getattr(payload, required) is None:
                errors.append(f"{required}: is required when opening a position")
    if errors:
        return ParseResult(valid=False, errors=errors, raw=raw)

    return ParseResult(valid=True, data=payload.model_dump(), raw=raw)


def parse_macro_strategy(text: str | None) -> ParseResult:
    """Validate a macro strategy response."""
    raw = extract_json(text)
    if raw is None:
        return ParseResult(valid=False, errors=[PARSE_FAILURE])
    try:
        payload = MacroStrategyPayload.model_validate(raw)
    except ValidationError as exc:
        return ParseResult(valid=False, errors=_format_errors(exc), raw=raw)
    return ParseResult(valid=True, data=payload.model_dump(), raw=raw)
