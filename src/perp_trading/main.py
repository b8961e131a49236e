"""CLI 入口模块 - 永续合约风控决策与执行引擎命令行接口。"""

import sys

import click

from perp_trading import __version__
from perp_trading.app import Services, build_services, snapshot_task
from perp_trading.config import ConfigurationError, Settings, get_settings
from perp_trading.scheduler import TradingScheduler
from perp_trading.storage.models import RISK_PROFILE_NAMES, TRADING_MODES
from perp_trading.utils.logging import get_logger, setup_logging


def _bootstrap(require_config: bool = True) -> tuple[Settings, Services]:
    """加载配置、初始化日志并构建服务；必要配置缺失时退出码为 1。"""
    settings = get_settings()
    setup_logging(settings)
    logger = get_logger("perp_trading.main")
    settings.ensure_directories()

    if require_config:
        try:
            settings.require_config()
        except ConfigurationError as e:
            logger.error("missing_required_config", error=str(e))
            click.echo(f"[ERROR] {e}", err=True)
            sys.exit(1)

    return settings, build_services(settings)


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Perp Trading - 风控约束下的永续合约决策与执行引擎。

    LLM 给出判断，风控与熔断把关，执行器负责下单与仓位管理。
    """
    if version:
        click.echo(f"perp-trading version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option("--snapshot/--no-snapshot", default=False, help="运行前先采集一次行情快照")
def once(snapshot: bool) -> None:
    """执行单次交易循环。

    闸门检查 → 对账 → 宏观策略 → 决策/风控/执行 → 波动率分级
    """
    settings, services = _bootstrap()
    logger = get_logger("perp_trading.main")
    logger.info("starting_single_run", mode=settings.mode.value)

    try:
        if snapshot:
            snapshot_task(services).run()
        result = services.cycle.run()
    except KeyboardInterrupt:
        logger.info("run_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("run_failed", error=str(e))
        sys.exit(1)

    click.echo(f"status: {result.status}")
    for decision in result.decisions:
        reason = decision.get("rejection_reason") or ""
        click.echo(
            f"  {decision['symbol']:<6} {decision['operation']:<6} "
            f"{decision['status']:<9} {reason}".rstrip()
        )
    for warning in result.warnings:
        click.echo(f"  [WARN] {warning}")
    click.echo(
        f"next cycle in {result.next_interval_minutes} min "
        f"(volatility: {result.volatility_level or 'unknown'})"
    )


@cli.command()
def run() -> None:
    """启动调度器常驻运行。

    快照与风控监控按分钟执行，交易循环按波动率自适应间隔链式调度，
    每日定时刷新宏观策略。使用 Ctrl+C 停止。
    """
    settings, services = _bootstrap()
    get_logger("perp_trading.main").info("starting_scheduler", mode=settings.mode.value)
    TradingScheduler(services).start()


@cli.command()
def monitor() -> None:
    """执行一次止损/止盈扫描、移动止损更新并检查熔断阈值。"""
    _, services = _bootstrap()
    result = services.monitor.check_all_positions()
    trailing = services.trailing.check_all_positions()
    triggered = services.breaker.check_and_update()
    click.echo(
        f"checked: {result.checked}  triggered: {result.triggered}  skipped: {result.skipped}"
    )
    click.echo(f"trailing stops activated: {trailing.activated}  moved: {trailing.updated}")
    if triggered:
        click.echo(f"[WARN] circuit breaker triggered: {services.breaker.blocked_reason()}")


@cli.command()
def macro() -> None:
    """立即生成新的宏观策略。"""
    _, services = _bootstrap()
    strategy = services.macro_agent.analyze()
    if strategy is None:
        click.echo("[ERROR] macro analysis failed, see logs", err=True)
        sys.exit(1)
    click.echo(f"bias: {strategy.bias}  risk tolerance: {strategy.risk_tolerance}")
    click.echo(f"valid until: {strategy.valid_until.isoformat()}")
    click.echo(strategy.market_narrative)


@cli.command()
def status() -> None:
    """显示运行模式、交易模式、熔断状态与持仓摘要。"""
    settings, services = _bootstrap(require_config=False)

    click.echo("=" * 50)
    click.echo("Perp Trading - Status")
    click.echo("=" * 50)

    mode_marker = "[PAPER]" if settings.is_paper_mode else "[LIVE]"
    click.echo(f"{mode_marker} Mode: {settings.mode.value}")
    click.echo(f"   Assets: {', '.join(settings.assets)}")
    click.echo(f"   LLM Model: {settings.openrouter_model}")
    click.echo(f"   Risk profile: {services.profiles.current_name()}")
    click.echo()

    # 熔断与交易模式
    breaker = services.breaker.status()
    click.echo("[Risk Controls]")
    click.echo(f"   Trading mode: {breaker['trading_mode']}")
    click.echo(f"   Can open: {'Yes' if breaker['can_open'] else 'No'}")
    click.echo(f"   Daily loss: {breaker['daily_loss']:.2f}")
    click.echo(f"   Consecutive losses: {breaker['consecutive_losses']}")
    if breaker["triggered"]:
        click.echo(f"   Breaker: {breaker['trigger_reason']} (until {breaker['cooldown_until']})")
    click.echo()

    # 数据就绪
    readiness = services.readiness.check()
    if readiness.ready:
        click.echo("[Data] ready for new positions")
    else:
        click.echo(f"[Data] not ready: {readiness.reason}")
    click.echo()

    # 持仓
    positions = services.positions.open_positions()
    click.echo(f"[Positions] {len(positions)} open")
    for p in positions:
        click.echo(
            f"   {p.symbol:<6} {p.direction:<5} size={p.size} entry={p.entry_price} "
            f"pnl={p.unrealized_pnl or 0.0:.2f}"
        )
    click.echo()

    missing = settings.missing_config()
    if missing:
        click.echo(f"[ERROR] {settings.mode.value} mode configuration incomplete, missing:")
        for key in missing:
            click.echo(f"   - {key}")
    else:
        click.echo(f"[OK] {settings.mode.value} mode configuration complete")
    click.echo("=" * 50)


@cli.command()
@click.argument("new_mode", required=False, type=click.Choice(TRADING_MODES))
@click.option("--reason", default=None, help="切换原因")
def mode(new_mode: str | None, reason: str | None) -> None:
    """查看或切换交易模式（enabled / exit_only / blocked）。"""
    _, services = _bootstrap(require_config=False)
    if new_mode is None:
        current = services.modes.current()
        click.echo(f"trading mode: {current.mode} (changed by {current.changed_by})")
        return
    services.modes.switch_to(new_mode, changed_by="operator", reason=reason)
    click.echo(f"trading mode set to {new_mode}")


@cli.command()
@click.argument("name", required=False, type=click.Choice(RISK_PROFILE_NAMES))
def profile(name: str | None) -> None:
    """查看或切换风险档位（cautious / moderate / fearless）。"""
    _, services = _bootstrap(require_config=False)
    if name is None:
        click.echo(f"risk profile: {services.profiles.current_name()}")
        return
    services.profiles.switch_to(name)
    click.echo(f"risk profile set to {name}")


@cli.command("reset-breaker")
def reset_breaker() -> None:
    """手动清除熔断状态并恢复交易。"""
    _, services = _bootstrap(require_config=False)
    services.breaker.reset()
    click.echo("circuit breaker reset, trading mode enabled")


# 支持 python -m perp_trading.main 调用
if __name__ == "__main__":
    cli()
