from __future__ import annotations

import json

from perp_trading.ai.schemas import (
    PARSE_FAILURE,
    extract_json,
    parse_macro_strategy,
    parse_trading_decision,
)

SYMBOLS = ["BTC", "ETH"]

OPEN_LONG = {
    "operation": "open",
    "symbol": "BTC",
    "direction": "long",
    "confidence": 0.8,
    "leverage": 3,
    "target_position": 0.05,
    "stop_loss": 95_000,
    "take_profit": 115_000,
    "reasoning": "Trend continuation above the 50 EMA",
}


def test_string_numerics_are_coerced() -> None:
    text = json.dumps(
        {
            "operation": "open",
            "symbol": "BTC",
            "direction": "long",
            "confidence": "0.7",
            "leverage": "5",
            "stop_loss": "95000",
        }
    )
    result = parse_trading_decision(text, SYMBOLS)

    assert result.valid, result.errors
    assert result.data["leverage"] == 5
    assert isinstance(result.data["leverage"], int)
    assert result.data["stop_loss"] == 95_000.0
    assert isinstance(result.data["stop_loss"], float)


def test_fenced_and_prose_wrapped_json_parse_like_bare_json() -> None:
    bare = json.dumps(OPEN_LONG)
    fenced = f"Here is my decision:\n```json\n{bare}\n```\nGood luck."
    prose = f"After weighing the signals I settled on {bare} as the plan."

    expected = parse_trading_decision(bare, SYMBOLS)
    assert expected.valid
    assert parse_trading_decision(fenced, SYMBOLS).data == expected.data
    assert parse_trading_decision(prose, SYMBOLS).data == expected.data


def test_open_requires_direction_stop_and_leverage() -> None:
    text = json.dumps({"operation": "open", "symbol": "BTC", "confidence": 0.9})
    result = parse_trading_decision(text, SYMBOLS)

    assert not result.valid
    assert "direction: is required when opening a position" in result.errors
    assert "stop_loss: is required when opening a position" in result.errors
    assert "leverage: is required when opening a position" in result.errors


def test_hold_needs_only_operation_symbol_and_confidence() -> None:
    result = parse_trading_decision('{"operation": "HOLD", "symbol": "eth", "confidence": 0.4}')

    assert result.valid
    assert result.data["operation"] == "hold"
    assert result.data["symbol"] == "ETH"


def test_out_of_range_fields_are_reported_per_field() -> None:
    payload = {**OPEN_LONG, "leverage": 20, "confidence": 1.5, "target_position": 0}
    result = parse_trading_decision(json.dumps(payload), SYMBOLS)

    assert not result.valid
    fields = {error.split(":")[0] for error in result.errors}
    assert {"leverage", "confidence", "target_position"} <= fields
    assert result.raw == payload


def test_symbol_outside_whitelist_is_rejected() -> None:
    result = parse_trading_decision(json.dumps({**OPEN_LONG, "symbol": "DOGE"}), SYMBOLS)

    assert not result.valid
    assert any(error.startswith("symbol:") for error in result.errors)


def test_unparseable_numeric_is_an_error_not_an_exception() -> None:
    result = parse_trading_decision(json.dumps({**OPEN_LONG, "stop_loss": "soon"}), SYMBOLS)

    assert not result.valid
    assert any(error.startswith("stop_loss:") for error in result.errors)


def test_no_json_yields_parse_failure() -> None:
    assert parse_trading_decision("I would rather not say.").errors == [PARSE_FAILURE]
    assert parse_trading_decision("").errors == [PARSE_FAILURE]
    assert parse_trading_decision(None).errors == [PARSE_FAILURE]


def test_extract_json_ignores_non_objects() -> None:
    assert extract_json("[1, 2, 3]") is None
    assert extract_json('prefix {"a": {"b": 1}} suffix') == {"a": {"b": 1}}


def test_macro_strategy_parses_and_normalizes_bias() -> None:
    text = json.dumps(
        {
            "market_narrative": "Liquidity is returning and majors are breaking out.",
            "bias": "Bullish",
            "risk_tolerance": "0.7",
            "key_levels": {"BTC": {"support": [95_000], "resistance": [110_000]}},
        }
    )
    result = parse_macro_strategy(text)

    assert result.valid
    assert result.data["bias"] == "bullish"
    assert result.data["risk_tolerance"] == 0.7


def test_macro_strategy_rejects_short_narrative_and_bad_bias() -> None:
    text = json.dumps({"market_narrative": "meh", "bias": "sideways", "risk_tolerance": 0.5})
    result = parse_macro_strategy(text)

    assert not result.valid
    fields = {error.split(":")[0] for error in result.errors}
    assert {"market_narrative", "bias"} <= fields
