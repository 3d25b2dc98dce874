"""Core configuration management module."""
from __future__ import annotations

from datetime import time
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from tradesim.core.exceptions import ConfigError
from tradesim.core.types import AssetType, FillPolicy, TimeInterval


class SystemConfig(BaseModel):
    """System-level configuration."""

    model_config = ConfigDict(use_enum_values=True)

    name: str = "tradesim"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: str = "logs"


def _parse_clock(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


class MarketHoursConfig(BaseModel):
    """Regular session hours in exchange-local time."""

    model_config = ConfigDict(use_enum_values=True)

    open: str = "09:30"
    close: str = "16:00"

    @field_validator("open", "close")
    @classmethod
    def validate_clock(cls, v: str) -> str:
        """Validate HH:MM format."""
        try:
            _parse_clock(v)
        except ValueError as exc:
            raise ValueError(f"Market hours must be HH:MM, got {v!r}") from exc
        return v

    @model_validator(mode="after")
    def validate_order(self) -> MarketHoursConfig:
        if self.close_time <= self.open_time:
            raise ValueError("Market close must be after market open")
        return self

    @property
    def open_time(self) -> time:
        return _parse_clock(self.open)

    @property
    def close_time(self) -> time:
        return _parse_clock(self.close)


class CommissionRate(BaseModel):
    """Commission for one asset class, flat dollars per order or a fraction of notional."""

    model_config = ConfigDict(use_enum_values=True)

    type: Literal["percent", "dollars"] = "percent"
    val: float = 0.0

    @field_validator("val")
    @classmethod
    def validate_val(cls, v: float) -> float:
        """Validate that the commission is non-negative."""
        if v < 0:
            raise ValueError("Commission must not be negative")
        return v

    @model_validator(mode="after")
    def validate_percent(self) -> CommissionRate:
        if self.type == "percent" and self.val > 1:
            raise ValueError("Amount should be a decimal between 0 and 1")
        return self


class CommissionSchedule(BaseModel):
    """Per-asset-class commission rates."""

    model_config = ConfigDict(use_enum_values=True)

    stock: CommissionRate = CommissionRate(type="percent", val=0.005)
    crypto: CommissionRate = CommissionRate(type="percent", val=0.01)
    option: CommissionRate = CommissionRate(type="percent", val=0.02)

    def rate_for(self, asset_type: AssetType | str) -> CommissionRate:
        asset_type = AssetType(asset_type)
        if asset_type == AssetType.CRYPTO:
            return self.crypto
        if asset_type in (AssetType.OPTION, AssetType.DEBIT_SPREAD):
            return self.option
        return self.stock


class TradingConfig(BaseModel):
    """Order handling used by the simulated ledger."""

    model_config = ConfigDict(use_enum_values=True)

    order_type: Literal["market", "limit"] = "market"
    fill_at: FillPolicy = FillPolicy.MID
    commission: CommissionSchedule = CommissionSchedule()
    commission_jitter: bool = False


BACKTEST_TRADING_CONFIG = TradingConfig()

ZERO_COMMISSION_CONFIG = TradingConfig(
    commission=CommissionSchedule(
        stock=CommissionRate(val=0.0),
        crypto=CommissionRate(val=0.0),
        option=CommissionRate(val=0.0),
    ),
)


class BacktestConfig(BaseModel):
    """Defaults applied to new backtests."""

    model_config = ConfigDict(use_enum_values=True)

    interval: TimeInterval = TimeInterval.DAY
    initial_value: float = 10_000.0
    baseline_symbol: str = "SPY"
    min_buying_power_pct: float = 0.01
    save_on_run: bool = True
    generate_baseline: bool = True

    @field_validator("initial_value")
    @classmethod
    def validate_initial_value(cls, v: float) -> float:
        """Validate that initial value is positive."""
        if v <= 0:
            raise ValueError("initial_value must be positive")
        return v

    @field_validator("min_buying_power_pct")
    @classmethod
    def validate_min_buying_power(cls, v: float) -> float:
        """Validate that the buying power floor is between 0 and 1."""
        if not 0 <= v < 1:
            raise ValueError("min_buying_power_pct must be between 0 and 1")
        return v


class DataConfig(BaseModel):
    """Price-history provider configuration."""

    model_config = ConfigDict(use_enum_values=True)

    spread_pct: float = 0.01
    max_start_gap_days: int = 5
    requests_per_symbol: int = 5
    symbol_cache_ttl_seconds: int = 7 * 24 * 3600

    @field_validator("spread_pct")
    @classmethod
    def validate_spread(cls, v: float) -> float:
        """Validate that spread is between 0 and 1."""
        if not 0 <= v < 1:
            raise ValueError("spread_pct must be between 0 and 1")
        return v

    @field_validator("max_start_gap_days", "requests_per_symbol", "symbol_cache_ttl_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that limits are positive."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v


class SyntheticDataConfig(BaseModel):
    """Synthetic price perturbation parameters."""

    model_config = ConfigDict(use_enum_values=True)

    ratio: float = 0.0
    mean_deviation_value: float = 0.0

    @field_validator("ratio")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        """Validate that ratio is a percentage."""
        if not 0 <= v <= 100:
            raise ValueError("ratio must be between 0 and 100")
        return v


class StoreConfig(BaseModel):
    """Backtest document store configuration."""

    model_config = ConfigDict(use_enum_values=True)

    sqlite_path: str = "data/tradesim.db"


class RunnerConfig(BaseModel):
    """Concurrent backtest execution configuration."""

    model_config = ConfigDict(use_enum_values=True)

    max_concurrent_runs: int = 4

    @field_validator("max_concurrent_runs")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Validate that concurrency is positive."""
        if v <= 0:
            raise ValueError("max_concurrent_runs must be positive")
        return v


class Settings(BaseModel):
    """Root settings configuration."""

    model_config = ConfigDict(use_enum_values=True)

    system: SystemConfig = SystemConfig()
    market_hours: MarketHoursConfig = MarketHoursConfig()
    trading: TradingConfig = TradingConfig()
    backtest: BacktestConfig = BacktestConfig()
    data: DataConfig = DataConfig()
    synthetic: SyntheticDataConfig = SyntheticDataConfig()
    store: StoreConfig = StoreConfig()
    runner: RunnerConfig = RunnerConfig()


def load_settings(path: Path | str) -> Settings:
    """Load settings from a YAML configuration file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings instance with loaded configuration.

    Raises:
        FileNotFoundError: If configuration file does not exist.
        ConfigError: If the YAML is malformed or a value fails validation.
    """
    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if raw_config is None:
        raw_config = {}

    try:
        return Settings.model_validate(raw_config)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_path}: {exc}") from exc
