"""Prompt builders for the trading and macro agents."""

from __future__ import annotations

from typing import Any

from perp_trading.config import ContextWeights, RiskProfileParams

RECENT_NEWS_LIMIT = 5
WHALE_ALERTS_LIMIT = 5


def trading_system_prompt(
    params: RiskProfileParams,
    profile_description: str,
    symbols: list[str],
    weights: ContextWeights,
    max_leverage: int,
) -> str:
    """System prompt for per-instrument decisions, parameterised by the active profile."""
    symbol_choices = " | ".join(f'"{s}"' for s in symbols)
    return f"""# Financial analysis of the crypto market

## Role
You are a cryptocurrency trade execution specialist for an autonomous perpetual-futures
trading system. You make one specific trading decision for one instrument at a time.

## Current Risk Profile
{profile_description}

## Position Awareness
You will receive information about whether a position already exists for this symbol.
- If NO position exists (has_position: false): you can only choose "open" or "hold"
- If a position EXISTS (has_position: true): you can choose "close" or "hold" (NOT "open")

## Direction Independence from Macro
The macro bias is a suggestion, not a requirement. Strong technical signals (RSI extreme
plus MACD confirmation) override the macro bias in either direction.

## RSI Entry Filters (check BEFORE opening)
- NEVER open LONG if RSI > {params.rsi_overbought} - wait for a pullback below {params.rsi_pullback_threshold}
- NEVER open SHORT if RSI < {params.rsi_oversold} - wait for a bounce above {params.rsi_bounce_threshold}
- When RSI is {params.rsi_pullback_threshold}-{params.rsi_overbought} and opening LONG, reduce confidence by 0.15
- When RSI is {params.rsi_oversold}-{params.rsi_bounce_threshold} and opening SHORT, reduce confidence by 0.15

## CLOSE Operation Rules
Close only when one of these holds:
1. Price is close to the take-profit level
2. Price is within 1% of the stop-loss level
3. RSI and MACD both confirm a reversal against the position
4. The position has been held 4+ hours with less than 1% progress toward take-profit
Do not close on minor pullbacks within normal volatility.

## Input Weighting System
- TECHNICAL (weight: {weights.technical}) - EMA, RSI, MACD; the primary signal
- SENTIMENT (weight: {weights.sentiment}) - Fear & Greed and news
- FORECAST (weight: {weights.forecast}) - price predictions, supplementary
- WHALE_ALERTS (weight: {weights.whale_alerts}) - large capital movements
If a source is unavailable, redistribute its weight to the available ones.

## Output JSON schema for OPEN (only when NO position exists):
{{
  "operation": "open",
  "symbol": {symbol_choices},
  "direction": "long" | "short",
  "leverage": integer (1-{max_leverage}),
  "target_position": number (0.01 to {params.max_position_size}),
  "stop_loss": number (price level),
  "take_profit": number (price level),
  "confidence": number ({params.min_confidence} to 1.0),
  "reasoning": "concise explanation referencing weighted inputs"
}}

## Output JSON schema for CLOSE (only when a position EXISTS):
{{
  "operation": "close",
  "symbol": {symbol_choices},
  "confidence": number ({params.min_confidence} to 1.0),
  "reasoning": "must cite the close condition that was met"
}}

## Output JSON schema for HOLD:
{{
  "operation": "hold",
  "symbol": {symbol_choices},
  "confidence": number (0.0 to 1.0),
  "reasoning": "why not trading"
}}

## Rules
- "hold" is the default when conditions are unclear or no edge exists
- Confidence below {params.min_confidence} should result in "hold"
- Stop-loss is REQUIRED for any "open" operation
- Aim for a risk/reward ratio of at least {params.min_risk_reward_ratio}:1
- Respond ONLY with valid JSON. No explanations outside the JSON.
"""


def trading_user_prompt(context: dict[str, Any]) -> str:
    weights = context.get("weights") or {}
    indicators = context.get("technical_indicators") or {}
    signals = indicators.get("signals") or {}
    market = context.get("market_data") or {}
    sentiment = context.get("sentiment") or {}
    action = context.get("recent_price_action") or {}
    risk = context.get("risk_parameters") or {}

    return f"""Make a trading decision for {context.get("symbol")} based on the following data:

## Current Time
{context.get("timestamp")}

## Current Position Status
{format_position(context.get("current_position"))}

## Input Weights (prioritize accordingly)
{format_weights(weights)}

---

## [FORECAST] Price Predictions (weight: {weights.get("forecast")})
{format_forecast(context.get("forecast"))}

---

## [SENTIMENT] Market Sentiment (weight: {weights.get("sentiment")})
- Fear & Greed Index: {sentiment.get("fear_greed_value")} ({sentiment.get("fear_greed_classification")})
{format_news(context.get("news"))}

---

## [TECHNICAL] Technical Analysis (weight: {weights.get("technical")})
Current Price: ${market.get("price")} (24h: {market.get("price_change_pct_24h")}%)

Indicators:
- EMA-20: ${format_number(indicators.get("ema_20"))}
- EMA-50: ${format_number(indicators.get("ema_50"))}
- EMA-100: ${format_number(indicators.get("ema_100"))}
- EMA-200: ${format_number(indicators.get("ema_200"))} (long-term trend)
- RSI(14): {format_number(indicators.get("rsi_14"))}
- ATR(14): {format_number(indicators.get("atr_14"))}
- MACD: {format_macd(indicators.get("macd"))}

Signals:
- RSI Signal: {signals.get("rsi")}
- MACD Signal: {signals.get("macd")}
- Above EMA-20: {signals.get("above_ema_20")}
- Above EMA-50: {signals.get("above_ema_50")}
- Above EMA-200: {signals.get("above_ema_200")}

Recent Action:
- Trend: {action.get("trend")}
- 24h Range: ${action.get("low")} - ${action.get("high")}

---

## [WHALE_ALERTS] Large Capital Movements (weight: {weights.get("whale_alerts")})
{format_whale_alerts(context.get("whale_alerts"))}

---

## Macro Strategy
{format_macro_context(context.get("macro_context") or {})}

## Risk Parameters
- Risk Profile: {risk.get("risk_profile")}
- Max Position: {(risk.get("max_position_size") or 0.05) * 100:.1f}% of capital
- Max Leverage: {risk.get("max_leverage") or 10}x
- Min Confidence: {(risk.get("min_confidence") or 0.6) * 100:.0f}%

Provide your trading decision in JSON format, weighing inputs according to their assigned weights.
"""


MACRO_SYSTEM_PROMPT = """You are a senior cryptocurrency macro strategist for an autonomous trading system.
Your role is to analyze market conditions and provide strategic guidance for the day.

IMPORTANT: You must respond ONLY with valid JSON. No explanations outside the JSON.

## Analysis Framework
1. Start with FORECAST signals to determine the primary bias direction
2. Confirm with SENTIMENT (Fear & Greed, recent news)
3. Validate with TECHNICAL trends across assets
4. Factor in WHALE_ALERTS for institutional positioning
5. Set risk tolerance based on signal agreement

## Output JSON schema:
{{
  "market_narrative": "2-3 sentence summary referencing weighted inputs",
  "bias": "bullish" | "bearish" | "neutral",
  "risk_tolerance": number (0.0 to 1.0, where 1.0 = aggressive, 0.0 = conservative),
  "key_levels": {{
{key_levels}
  }},
  "reasoning": "how the weighted inputs influenced the decision"
}}

## Guidelines for risk_tolerance:
- 0.0-0.3: Extreme caution (high fear, conflicting signals)
- 0.3-0.5: Conservative (elevated risk, some signal conflict)
- 0.5-0.7: Normal (balanced conditions)
- 0.7-0.9: Opportunistic (strong signal agreement)
- 0.9-1.0: Aggressive (all weighted inputs align strongly)

Be decisive. Neutral bias should only be used when signals genuinely conflict.
"""


def macro_system_prompt(symbols: list[str]) -> str:
    key_levels = ",\n".join(
        f'    "{s}": {{ "support": [price1, price2], "resistance": [price1, price2] }}'
        for s in symbols
    )
    return MACRO_SYSTEM_PROMPT.format(key_levels=key_levels)


def macro_user_prompt(context: dict[str, Any], lookback_days: int) -> str:
    weights = context.get("weights") or {}
    sentiment = context.get("market_sentiment") or {}
    risk = context.get("risk_parameters") or {}
    return f"""Analyze the following market data and provide your macro strategy for today:

## Current Timestamp
{context.get("timestamp")}

## Input Weights (prioritize accordingly)
{format_weights(weights)}

---

## [FORECAST] Price Predictions (weight: {weights.get("forecast")})
{format_macro_forecasts(context.get("forecasts"))}

---

## [SENTIMENT] Market Sentiment (weight: {weights.get("sentiment")})
Fear & Greed Index: {sentiment.get("fear_greed_value")} ({sentiment.get("fear_greed_classification")})
{format_news(context.get("news"))}

---

## [TECHNICAL] Technical Analysis (weight: {weights.get("technical")})
### Assets Overview
{format_assets_overview(context.get("assets_overview"))}

### Historical Trends ({lookback_days} days)
{format_historical_trends(context.get("historical_trends"))}

---

## [WHALE_ALERTS] Large Capital Movements (weight: {weights.get("whale_alerts")})
{format_whale_alerts(context.get("whale_alerts"))}

---

## Risk Parameters
- Max Position Size: {risk.get("max_position_size")}
- Max Leverage: {risk.get("max_leverage")}

Provide your macro strategy in JSON format, weighing inputs according to their assigned weights.
"""


# ==================== formatting helpers ====================


def format_number(value: Any) -> Any:
    if value is None:
        return "N/A"
    if isinstance(value, float):
        return round(value, 2)
    return value


def format_weights(weights: dict[str, Any]) -> str:
    return "\n".join(f"- {key.upper()}: {value}" for key, value in weights.items())


def format_position_age(minutes: int | None) -> str:
    if minutes is None:
        return "Unknown"
    if minutes < 60:
        return f"{minutes} min"
    if minutes < 1440:
        return f"{minutes / 60:.1f} hours"
    return f"{minutes / 1440:.1f} days"


def format_position(position: dict[str, Any] | None) -> str:
    if not position or not position.get("has_position"):
        return "NO POSITION - You can OPEN a new position or HOLD"

    def distance(key: str) -> str:
        value = position.get(key)
        return "N/A" if value is None else f"{value}%"

    return "\n".join(
        [
            f"ACTIVE {str(position.get('direction')).upper()} POSITION:",
            f"- Entry: ${format_number(position.get('entry_price'))}"
            f" | Current: ${format_number(position.get('current_price'))}",
            f"- Unrealized PnL: ${format_number(position.get('unrealized_pnl'))}"
            f" ({format_number(position.get('pnl_percent'))}%)",
            f"- Leverage: {position.get('leverage')}x"
            f" | Age: {format_position_age(position.get('position_age_minutes'))}",
            "",
            "TARGETS:",
            f"- Stop Loss: ${format_number(position.get('stop_loss_price'))}"
            f" ({distance('pct_to_stop_loss')} away)",
            f"- Take Profit: ${format_number(position.get('take_profit_price'))}"
            f" ({distance('pct_to_take_profit')} away)",
            "",
            "ACTION OPTIONS: You can CLOSE this position or HOLD",
        ]
    )


def format_forecast(forecast: dict[str, Any] | None) -> str:
    if not forecast:
        return "No forecast data available - redistribute weight to other signals"
    lines = []
    for timeframe, data in forecast.items():
        lines.append(
            f"- {timeframe}: Current ${format_number(data.get('current_price'))}"
            f" -> Predicted ${format_number(data.get('predicted_price'))} ({data.get('direction')})"
        )
    return "\n".join(lines)


def format_macro_forecasts(forecasts: dict[str, Any] | None) -> str:
    if not forecasts:
        return "No forecast data available - redistribute weight to other signals"
    return "\n".join(
        f"- {symbol}: Current ${format_number(data.get('current_price'))}"
        f" -> 1h Predicted ${format_number(data.get('predicted_1h'))}"
        for symbol, data in forecasts.items()
    )


def format_news(news: list[dict[str, Any]] | None) -> str:
    if not news:
        return ""
    lines = ["", "Recent News:"]
    lines.extend(f"- {item.get('title')}" for item in news[:RECENT_NEWS_LIMIT])
    return "\n".join(lines)


def format_whale_alerts(alerts: list[dict[str, Any]] | None) -> str:
    if not alerts:
        return "No recent whale alerts"
    return "\n".join(
        f"- {alert.get('action')}: {alert.get('amount')} ({alert.get('usd_value')})"
        for alert in alerts[:WHALE_ALERTS_LIMIT]
    )


def format_macd(macd: dict[str, Any] | None) -> str:
    if not macd:
        return "N/A"
    return (
        f"Line: {format_number(macd.get('macd'))}, "
        f"Signal: {format_number(macd.get('signal'))}, "
        f"Histogram: {format_number(macd.get('histogram'))}"
    )


def format_macro_context(context: dict[str, Any]) -> str:
    if not context.get("available"):
        return "Not available - using default neutral stance"
    tolerance = context.get("risk_tolerance")
    tolerance = 0.5 if tolerance is None else tolerance
    return "\n".join(
        [
            f"- Bias: {str(context.get('bias')).upper()}",
            f"- Risk Tolerance: {round(tolerance * 100)}%",
            f"- Narrative: {context.get('market_narrative')}",
        ]
    )


def format_assets_overview(assets: list[dict[str, Any]] | None) -> str:
    if not assets:
        return "No asset data available"
    blocks = []
    for asset in assets:
        market = asset.get("market_data") or {}
        if not market:
            continue
        indicators = asset.get("technical_indicators") or {}
        signals = indicators.get("signals") or {}
        blocks.append(
            "\n".join(
                [
                    f"### {asset.get('symbol')}",
                    f"- Price: ${format_number(market.get('price'))}",
                    f"- 24h Change: {format_number(market.get('price_change_pct_24h'))}%",
                    f"- RSI(14): {format_number(indicators.get('rsi_14'))}",
                    f"- MACD Signal: {signals.get('macd')}",
                    f"- Above EMA-50: {signals.get('above_ema_50')}",
                ]
            )
        )
    return "\n\n".join(blocks) or "No asset data available"


def format_historical_trends(trends: dict[str, Any] | None) -> str:
    if not trends:
        return "No historical data available"
    return "\n".join(
        f"- {symbol}: {data.get('change_pct')}% change, volatility: {data.get('volatility')}%"
        for symbol, data in trends.items()
    )
