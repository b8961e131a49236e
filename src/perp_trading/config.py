"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """缺少必要配置（密钥、地址等）时抛出，交易前快速失败。"""


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 纸交易
    LIVE = "live"  # 实盘


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class RiskProfileParams(BaseModel):
    """单个风险档位的参数集。"""

    rsi_oversold: int = Field(ge=0, le=100)
    rsi_overbought: int = Field(ge=0, le=100)
    rsi_pullback_threshold: int = Field(ge=0, le=100)
    rsi_bounce_threshold: int = Field(ge=0, le=100)
    min_confidence: float = Field(ge=0.0, le=1.0)
    default_leverage: int = Field(ge=1, le=100)
    max_open_positions: int = Field(ge=1)
    max_position_size: float = Field(gt=0.0, le=1.0)
    min_risk_reward_ratio: float = Field(gt=0.0)
    trailing_stop_enabled: bool = True
    trailing_activation_pct: float = Field(default=0.015, gt=0.0, le=1.0)  # 盈利达到该比例后激活
    trailing_distance_pct: float = Field(default=0.01, gt=0.0, lt=1.0)  # 止损距峰值价格的比例


def _default_risk_profiles() -> dict[str, RiskProfileParams]:
    return {
        "cautious": RiskProfileParams(
            rsi_oversold=25,
            rsi_overbought=75,
            rsi_pullback_threshold=55,
            rsi_bounce_threshold=45,
            min_confidence=0.75,
            default_leverage=2,
            max_open_positions=2,
            max_position_size=0.03,
            min_risk_reward_ratio=2.0,
            trailing_activation_pct=0.01,
            trailing_distance_pct=0.008,
        ),
        "moderate": RiskProfileParams(
            rsi_oversold=30,
            rsi_overbought=70,
            rsi_pullback_threshold=60,
            rsi_bounce_threshold=40,
            min_confidence=0.6,
            default_leverage=3,
            max_open_positions=3,
            max_position_size=0.05,
            min_risk_reward_ratio=1.5,
        ),
        "fearless": RiskProfileParams(
            rsi_oversold=35,
            rsi_overbought=65,
            rsi_pullback_threshold=65,
            rsi_bounce_threshold=35,
            min_confidence=0.5,
            default_leverage=5,
            max_open_positions=4,
            max_position_size=0.05,
            min_risk_reward_ratio=1.2,
            trailing_activation_pct=0.02,
            trailing_distance_pct=0.015,
        ),
    }


class ContextWeights(BaseModel):
    """决策上下文中各数据源的权重。"""

    forecast: float = Field(default=0.15, ge=0.0, le=1.0)
    sentiment: float = Field(default=0.25, ge=0.0, le=1.0)
    technical: float = Field(default=0.50, ge=0.0, le=1.0)
    whale_alerts: float = Field(default=0.10, ge=0.0, le=1.0)


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。嵌套字段使用 ``__`` 分隔，
    例如 ``WEIGHTS__FORECAST=0.2``。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")
    assets: list[str] = Field(
        default_factory=lambda: ["BTC", "ETH", "SOL", "BNB"],
        description="交易标的白名单",
    )

    # ==================== OpenRouter API ====================
    openrouter_api_key: str = Field(default="", description="OpenRouter API Key")
    openrouter_model: str = Field(
        default="anthropic/claude-3.5-sonnet",
        description="OpenRouter 模型名称",
    )
    openrouter_timeout: int = Field(default=30, description="LLM 调用超时（秒）")
    trading_max_tokens: int = Field(default=1500, ge=100, description="交易决策最大 token")
    trading_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    macro_max_tokens: int = Field(default=2000, ge=100, description="宏观分析最大 token")
    macro_temperature: float = Field(default=0.5, ge=0.0, le=2.0)

    # ==================== Hyperliquid ====================
    hyperliquid_api_url: str = Field(
        default="https://api.hyperliquid.xyz",
        description="Hyperliquid API 地址",
    )
    hyperliquid_address: str = Field(default="", description="账户地址")
    hyperliquid_timeout: int = Field(default=10, description="交易所调用超时（秒）")
    fill_poll_attempts: int = Field(default=10, ge=1, le=60, description="成交轮询次数")
    fill_poll_interval_sec: float = Field(default=1.0, ge=0.0, description="成交轮询间隔（秒）")

    # ==================== Binance 行情 ====================
    binance_api_key: str = Field(default="", description="Binance API Key")
    binance_api_secret: str = Field(default="", description="Binance API Secret")
    binance_testnet: bool = Field(default=False, description="是否使用 Binance 测试网")

    # ==================== 风控参数 ====================
    max_leverage: int = Field(default=10, ge=1, le=100, description="最大杠杆")
    max_position_size: float = Field(
        default=0.05,
        gt=0.0,
        le=1.0,
        description="单笔最大仓位（账户净值比例）",
    )
    max_risk_per_trade: float = Field(
        default=0.01,
        gt=0.0,
        le=0.1,
        description="单笔最大风险（账户净值比例）",
    )
    enforce_risk_reward_ratio: bool = Field(default=True, description="盈亏比是否强制拒单")
    min_risk_reward_ratio: float = Field(default=1.5, gt=0.0, description="默认最小盈亏比")

    # ==================== 熔断参数 ====================
    max_daily_loss: float = Field(
        default=0.05,
        gt=0.0,
        le=1.0,
        description="日内最大亏损（账户净值比例）",
    )
    max_consecutive_losses: int = Field(
        default=3,
        ge=1,
        le=20,
        description="连续亏损停机阈值",
    )
    cooldown_hours: float = Field(default=24.0, gt=0.0, le=168.0, description="熔断冷却时长")

    # ==================== 数据就绪检查 ====================
    # 任一检查未通过时本轮不开新仓，平仓不受影响
    readiness_require_macro: bool = Field(default=True, description="要求有效（非兜底）宏观策略")
    readiness_require_fresh_market_data: bool = Field(
        default=True,
        description="要求所有资产都有新鲜行情快照",
    )
    readiness_require_sentiment: bool = Field(default=True, description="要求有恐惧贪婪指数")
    readiness_market_data_max_age_min: int = Field(
        default=5,
        ge=1,
        le=120,
        description="行情快照最大允许时长（分钟）",
    )
    readiness_sentiment_max_age_hours: int = Field(
        default=24,
        ge=1,
        le=168,
        description="情绪数据最大允许时长（小时）",
    )

    # ==================== 风险档位 ====================
    default_risk_profile: Literal["cautious", "moderate", "fearless"] = "moderate"
    risk_profiles: dict[str, RiskProfileParams] = Field(default_factory=_default_risk_profiles)

    # ==================== 上下文权重 ====================
    weights: ContextWeights = Field(default_factory=ContextWeights)

    # ==================== 调度 ====================
    snapshot_interval_min: int = Field(default=1, ge=1, description="行情快照周期（分钟）")
    monitor_interval_min: int = Field(default=1, ge=1, description="风控监控周期（分钟）")
    bootstrap_interval_min: int = Field(default=30, ge=5, description="兜底启动周期（分钟）")
    macro_hour_utc: int = Field(default=6, ge=0, le=23, description="每日宏观分析时刻（UTC）")
    macro_validity_hours: int = Field(default=24, ge=1, le=72, description="宏观策略有效期")

    # ==================== 纸交易 ====================
    paper_initial_equity: float = Field(default=10_000.0, gt=0.0, description="纸交易初始资金")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    database_url: str = Field(
        default="sqlite:///data/perp_trading.db",
        description="SQLAlchemy 数据库连接串",
    )
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="交易日志存储目录",
    )

    @field_validator("journal_dir", mode="before")
    @classmethod
    def parse_journal_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @field_validator("assets", mode="before")
    @classmethod
    def parse_assets(cls, v: str | list[str]) -> list[str]:
        """支持逗号分隔的字符串，统一转为大写。"""
        if isinstance(v, str):
            v = [item for item in v.split(",") if item.strip()]
        return [str(item).strip().upper() for item in v]

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)
        if self.database_url.startswith("sqlite:///") and ":memory:" not in self.database_url:
            Path(self.database_url.removeprefix("sqlite:///")).parent.mkdir(
                parents=True, exist_ok=True
            )

    @property
    def is_paper_mode(self) -> bool:
        """是否为纸交易模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    def profile_params(self, name: str) -> RiskProfileParams:
        """按名称获取风险档位参数，未知名称回退到默认档位。"""
        params = self.risk_profiles.get(name)
        if params is None:
            params = self.risk_profiles[self.default_risk_profile]
        return params

    def missing_config(self) -> list[str]:
        """返回当前运行模式缺失的必要配置项。

        LLM 密钥在任何模式下都必需；交易所地址仅实盘模式需要。
        """
        missing = []
        if not self.openrouter_api_key:
            missing.append("OPENROUTER_API_KEY")
        if self.is_live_mode and not self.hyperliquid_address:
            missing.append("HYPERLIQUID_ADDRESS")
        return missing

    def require_config(self) -> None:
        """缺少必要配置时抛出 ConfigurationError，在任何交易尝试之前调用。"""
        missing = self.missing_config()
        if missing:
            raise ConfigurationError(
                f"missing required configuration for {self.mode.value} mode: "
                f"{', '.join(missing)} (set them in the environment or .env)"
            )


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
