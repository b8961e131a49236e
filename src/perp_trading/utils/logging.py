"""结构化日志配置模块。

使用 structlog 输出结构化事件，支持 JSON 与控制台两种格式。
交易循环期间通过 contextvars 绑定 cycle_id，同一循环内的所有事件可关联检索。
"""

import logging
import sys
import uuid
from typing import Any

import structlog
from structlog.types import Processor

from perp_trading.config import LogFormat, Settings, get_settings

# 第三方库日志在 INFO 级别过于啰嗦（httpx 每个请求一行）
_NOISY_LOGGERS = ("apscheduler", "httpx", "httpcore", "binance", "urllib3")

_FAILED_ORDER_STATES = frozenset({"failed", "rejected", "cancelled"})


def setup_logging(settings: Settings | None = None) -> None:
    """配置结构化日志系统。

    标准库 logging 负责输出与级别过滤，structlog 负责事件格式化。
    """
    settings = settings or get_settings()

    log_level = getattr(logging, settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。"""
    return structlog.get_logger(name)


# ==================== 循环上下文 ====================


def bind_cycle_context(mode: str) -> str:
    """为当前交易循环生成 cycle_id 并绑定到日志上下文，返回该 id。"""
    cycle_id = uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(cycle_id=cycle_id, run_mode=mode)
    return cycle_id


def clear_cycle_context() -> None:
    """解除交易循环的日志上下文。"""
    structlog.contextvars.unbind_contextvars("cycle_id", "run_mode")


# ==================== 领域事件 ====================


def log_decision(
    logger: structlog.stdlib.BoundLogger,
    *,
    symbol: str,
    operation: str,
    status: str,
    **kwargs: Any,
) -> None:
    """记录交易决策；被拒绝或失败的决策以 warning 级别输出。"""
    level = "warning" if status in ("rejected", "failed") else "info"
    getattr(logger, level)(
        "trading_decision",
        symbol=symbol,
        operation=operation,
        status=status,
        **kwargs,
    )


def log_llm_call(
    logger: structlog.stdlib.BoundLogger,
    *,
    model: str,
    success: bool,
    latency_ms: float,
    **kwargs: Any,
) -> None:
    """记录一次 LLM 判断调用。"""
    level = "info" if success else "warning"
    getattr(logger, level)(
        "llm_call",
        model=model,
        success=success,
        latency_ms=round(latency_ms, 2),
        **kwargs,
    )


def log_order_execution(
    logger: structlog.stdlib.BoundLogger,
    *,
    order_id: int | None,
    symbol: str,
    side: str,
    status: str,
    filled_size: float = 0.0,
    price: float | None = None,
    exchange_order_id: str | None = None,
    **kwargs: Any,
) -> None:
    """记录订单结果；未成交的终态以 warning 级别输出。"""
    level = "warning" if status in _FAILED_ORDER_STATES else "info"
    getattr(logger, level)(
        "order_execution",
        order_id=order_id,
        exchange_order_id=exchange_order_id,
        symbol=symbol,
        side=side,
        filled_size=filled_size,
        price=price,
        status=status,
        **kwargs,
    )


def log_position_change(
    logger: structlog.stdlib.BoundLogger,
    *,
    action: str,
    position_id: int | None,
    symbol: str,
    direction: str,
    size: float,
    price: float | None = None,
    realized_pnl: float | None = None,
    **kwargs: Any,
) -> None:
    """记录仓位变化（opened / reduced / closed / synced）。"""
    logger.info(
        f"position_{action}",
        position_id=position_id,
        symbol=symbol,
        direction=direction,
        size=size,
        price=price,
        realized_pnl=realized_pnl,
        **kwargs,
    )


def log_risk_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event_type: str,
    action: str,
    severity: str = "warning",
    **kwargs: Any,
) -> None:
    """记录风控事件：止损/止盈触发、熔断触发与冷却结束。"""
    getattr(logger, severity)(
        "risk_event",
        event_type=event_type,
        action=action,
        **kwargs,
    )
