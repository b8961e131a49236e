"""Service wiring: builds the object graph for one process."""

from __future__ import annotations

from dataclasses import dataclass

from perp_trading.ai.agents import MacroAgent, TradingAgent
from perp_trading.ai.openrouter_client import JudgmentService, OpenRouterClient
from perp_trading.config import Settings
from perp_trading.context.assembler import ContextAssembler
from perp_trading.data.binance import BinanceDataClient
from perp_trading.data.sentiment import SentimentFetcher
from perp_trading.data.snapshots import MarketDataSource, MarketSnapshotTask
from perp_trading.exchange.base import ExchangeClient
from perp_trading.exchange.hyperliquid import HyperliquidClient
from perp_trading.execution.account import AccountManager
from perp_trading.execution.executor import OrderExecutor
from perp_trading.execution.paper import PaperBroker
from perp_trading.execution.positions import PositionManager
from perp_trading.journal.store import JournalStore
from perp_trading.pipeline import TradingCycle
from perp_trading.risk.circuit_breaker import CircuitBreaker
from perp_trading.risk.profiles import ProfileService, TradingModeService
from perp_trading.risk.readiness import ReadinessChecker
from perp_trading.risk.rules import RiskManager
from perp_trading.risk.sizing import PositionSizer
from perp_trading.risk.stop_loss import StopLossMonitor
from perp_trading.risk.trailing_stop import TrailingStopManager
from perp_trading.storage.store import Store
from perp_trading.types import CycleResult


@dataclass(slots=True)
class Services:
    settings: Settings
    store: Store
    client: ExchangeClient
    profiles: ProfileService
    modes: TradingModeService
    accounts: AccountManager
    positions: PositionManager
    breaker: CircuitBreaker
    executor: OrderExecutor
    monitor: StopLossMonitor
    trailing: TrailingStopManager
    readiness: ReadinessChecker
    assembler: ContextAssembler
    trading_agent: TradingAgent
    macro_agent: MacroAgent
    cycle: TradingCycle
    snapshots: MarketSnapshotTask | None = None


def build_exchange_client(settings: Settings, store: Store) -> ExchangeClient:
    """Paper mode fills locally against Hyperliquid mids; live mode talks to Hyperliquid."""
    exchange = HyperliquidClient(settings)
    if settings.is_paper_mode:
        return PaperBroker(settings, store, exchange.all_mids)
    return exchange


def build_services(
    settings: Settings,
    *,
    store: Store | None = None,
    client: ExchangeClient | None = None,
    judgment: JudgmentService | None = None,
    market_data: MarketDataSource | None = None,
    journal: JournalStore | None = None,
) -> Services:
    """Build every component; any collaborator can be injected."""
    store = store or Store.from_settings(settings)
    client = client or build_exchange_client(settings, store)
    journal = journal or JournalStore(settings.journal_dir)

    profiles = ProfileService(settings, store)
    modes = TradingModeService(store)
    accounts = AccountManager(settings, store, client)
    positions = PositionManager(store, client)
    breaker = CircuitBreaker(settings, store, modes, accounts.account_value)
    sizer = PositionSizer(settings, accounts.account_value)
    executor = OrderExecutor(
        settings, store, client, accounts, positions, profiles, modes, breaker, sizer
    )
    monitor = StopLossMonitor(store, client, executor)
    trailing = TrailingStopManager(store, profiles)
    readiness = ReadinessChecker(settings, store)

    trading_judgment = judgment or OpenRouterClient(
        settings,
        max_tokens=settings.trading_max_tokens,
        temperature=settings.trading_temperature,
    )
    macro_judgment = judgment or OpenRouterClient(
        settings,
        max_tokens=settings.macro_max_tokens,
        temperature=settings.macro_temperature,
    )
    assembler = ContextAssembler(settings, store, profiles)
    trading_agent = TradingAgent(settings, store, trading_judgment, assembler, profiles)
    macro_agent = MacroAgent(settings, store, macro_judgment, assembler)

    cycle = TradingCycle(
        settings,
        store,
        client,
        trading_agent,
        macro_agent,
        RiskManager(settings),
        executor,
        positions,
        breaker,
        modes,
        profiles,
        journal=journal,
        readiness=readiness,
    )

    snapshots = None
    if market_data is not None:
        snapshots = MarketSnapshotTask(settings, store, market_data, SentimentFetcher())

    return Services(
        settings=settings,
        store=store,
        client=client,
        profiles=profiles,
        modes=modes,
        accounts=accounts,
        positions=positions,
        breaker=breaker,
        executor=executor,
        monitor=monitor,
        trailing=trailing,
        readiness=readiness,
        assembler=assembler,
        trading_agent=trading_agent,
        macro_agent=macro_agent,
        cycle=cycle,
        snapshots=snapshots,
    )


def snapshot_task(services: Services) -> MarketSnapshotTask:
    """Snapshot task, creating the Binance client on first use."""
    if services.snapshots is None:
        services.snapshots = MarketSnapshotTask(
            services.settings,
            services.store,
            BinanceDataClient(services.settings),
            SentimentFetcher(),
        )
    return services.snapshots


def run_trading_cycle(settings: Settings) -> CycleResult:
    """Run one trading cycle with freshly built services."""
    settings.require_config()
    return build_services(settings).cycle.run()
