"""
SimCoin Configuration

All tunables can be overridden through environment variables prefixed with
``SIMCOIN_``. ``SimulationConfig`` picks these up as its defaults, so a test or
a host application can still build independent configurations side by side.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal, InvalidOperation


class ConfigurationError(Exception):
    """Raised when a configuration value is missing or invalid."""
    pass


def _env_decimal(env_var: str, default: str) -> Decimal:
    raw = os.getenv(env_var, default).strip()
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ConfigurationError(f"{env_var} must be a decimal number, got {raw!r}") from exc


def _env_int(env_var: str, default: int) -> int:
    raw = os.getenv(env_var, str(default)).strip()
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{env_var} must be an integer, got {raw!r}") from exc


# Identities
SYSTEM_ADDRESS = "system"
EXCHANGE_ADDRESS = os.getenv("SIMCOIN_EXCHANGE_ADDRESS", "EXCHANGE_MARKET_SC_SELL")

# Chain
CHAIN_NAME = os.getenv("SIMCOIN_CHAIN_NAME", "MyChain")
DIFFICULTY = _env_int("SIMCOIN_DIFFICULTY", 1)
GENESIS_SUPPLY = _env_decimal("SIMCOIN_GENESIS_SUPPLY", "1000000000000")
GENESIS_PRICE = _env_decimal("SIMCOIN_GENESIS_PRICE", "0.10")

# Market
INITIAL_PRICE = _env_decimal("SIMCOIN_INITIAL_PRICE", "1.00")
PRICE_FLOOR = _env_decimal("SIMCOIN_PRICE_FLOOR", "0.05")
MAX_PRICE_MOVE_PERCENT = _env_decimal("SIMCOIN_MAX_PRICE_MOVE_PERCENT", "0.10")
VOLATILITY_FACTOR = _env_decimal("SIMCOIN_VOLATILITY_FACTOR", "10000")
PRICE_HISTORY_SIZE = _env_int("SIMCOIN_PRICE_HISTORY_SIZE", 500)

# Trading
BUY_BIAS = _env_decimal("SIMCOIN_BUY_BIAS", "0.50")
TRADE_FRACTION_MIN = _env_decimal("SIMCOIN_TRADE_FRACTION_MIN", "0.33")
TRADE_FRACTION_MAX = _env_decimal("SIMCOIN_TRADE_FRACTION_MAX", "0.95")
MIN_TRADE_USD = _env_decimal("SIMCOIN_MIN_TRADE_USD", "1.00")
MIN_TRADE_SC = _env_decimal("SIMCOIN_MIN_TRADE_SC", "0.001")
SHORT_MARGIN_RATIO = _env_decimal("SIMCOIN_SHORT_MARGIN_RATIO", "0.50")
SUPPLY_RESERVE_SC = _env_decimal("SIMCOIN_SUPPLY_RESERVE_SC", "0.01")
INITIAL_SC_GRANT = _env_decimal("SIMCOIN_INITIAL_SC_GRANT", "1")

# Scheduler cadence (milliseconds)
WALLET_CREATION_PERIOD_MS = _env_int("SIMCOIN_WALLET_CREATION_PERIOD_MS", 2000)
MIN_WALLET_CREATION_PERIOD_MS = _env_int("SIMCOIN_MIN_WALLET_CREATION_PERIOD_MS", 50)
WALLET_PERIOD_MULTIPLIER = _env_decimal("SIMCOIN_WALLET_PERIOD_MULTIPLIER", "0.9")
WALLET_PERIOD_THRESHOLD = _env_int("SIMCOIN_WALLET_PERIOD_THRESHOLD", 50)
TRADE_DELAY_MIN_BASE_MS = _env_int("SIMCOIN_TRADE_DELAY_MIN_BASE_MS", 790)
TRADE_DELAY_MAX_BASE_MS = _env_int("SIMCOIN_TRADE_DELAY_MAX_BASE_MS", 800)
TRADE_DELAY_FLOOR_MS = _env_int("SIMCOIN_TRADE_DELAY_FLOOR_MS", 1)
TRADE_DELAY_REDUCTION_PER_WALLET_MS = _env_int("SIMCOIN_TRADE_DELAY_REDUCTION_PER_WALLET_MS", 1)
INITIAL_TRADE_DELAY_MS = _env_int("SIMCOIN_INITIAL_TRADE_DELAY_MS", 5)
UI_REFRESH_PERIOD_MS = _env_int("SIMCOIN_UI_REFRESH_PERIOD_MS", 1000)
PRICE_REFRESH_PERIOD_MS = _env_int("SIMCOIN_PRICE_REFRESH_PERIOD_MS", 100)

LOG_LEVEL = os.getenv("SIMCOIN_LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class SimulationConfig:
    """Immutable bundle of simulation parameters."""

    exchange_address: str = EXCHANGE_ADDRESS

    chain_name: str = CHAIN_NAME
    difficulty: int = DIFFICULTY
    genesis_supply: Decimal = GENESIS_SUPPLY
    genesis_price: Decimal = GENESIS_PRICE

    initial_price: Decimal = INITIAL_PRICE
    price_floor: Decimal = PRICE_FLOOR
    max_price_move_percent: Decimal = MAX_PRICE_MOVE_PERCENT
    volatility_factor: Decimal = VOLATILITY_FACTOR
    price_history_size: int = PRICE_HISTORY_SIZE

    buy_bias: Decimal = BUY_BIAS
    trade_fraction_min: Decimal = TRADE_FRACTION_MIN
    trade_fraction_max: Decimal = TRADE_FRACTION_MAX
    min_trade_usd: Decimal = MIN_TRADE_USD
    min_trade_sc: Decimal = MIN_TRADE_SC
    short_margin_ratio: Decimal = SHORT_MARGIN_RATIO
    supply_reserve_sc: Decimal = SUPPLY_RESERVE_SC
    initial_sc_grant: Decimal = INITIAL_SC_GRANT

    wallet_creation_period_ms: int = WALLET_CREATION_PERIOD_MS
    min_wallet_creation_period_ms: int = MIN_WALLET_CREATION_PERIOD_MS
    wallet_period_multiplier: Decimal = WALLET_PERIOD_MULTIPLIER
    wallet_period_threshold: int = WALLET_PERIOD_THRESHOLD
    trade_delay_min_base_ms: int = TRADE_DELAY_MIN_BASE_MS
    trade_delay_max_base_ms: int = TRADE_DELAY_MAX_BASE_MS
    trade_delay_floor_ms: int = TRADE_DELAY_FLOOR_MS
    trade_delay_reduction_per_wallet_ms: int = TRADE_DELAY_REDUCTION_PER_WALLET_MS
    initial_trade_delay_ms: int = INITIAL_TRADE_DELAY_MS
    ui_refresh_period_ms: int = UI_REFRESH_PERIOD_MS
    price_refresh_period_ms: int = PRICE_REFRESH_PERIOD_MS

    def __post_init__(self) -> None:
        if self.exchange_address == SYSTEM_ADDRESS:
            raise ConfigurationError("exchange address cannot be the system identity")
        if self.difficulty < 0 or self.difficulty > 64:
            raise ConfigurationError(f"difficulty must be within 0..64, got {self.difficulty}")
        if self.genesis_supply <= 0:
            raise ConfigurationError("genesis_supply must be positive")
        if self.price_floor <= 0 or self.initial_price < self.price_floor:
            raise ConfigurationError(
                f"initial_price ({self.initial_price}) must be >= price_floor ({self.price_floor}) > 0"
            )
        if not (Decimal("0") < self.max_price_move_percent < Decimal("1")):
            raise ConfigurationError("max_price_move_percent must be within (0, 1)")
        if not (Decimal("0") <= self.buy_bias <= Decimal("1")):
            raise ConfigurationError("buy_bias must be within [0, 1]")
        if not (Decimal("0") < self.trade_fraction_min <= self.trade_fraction_max <= Decimal("1")):
            raise ConfigurationError("trade fractions must satisfy 0 < min <= max <= 1")
        if self.min_wallet_creation_period_ms <= 0 or self.trade_delay_floor_ms <= 0:
            raise ConfigurationError("scheduler floors must be positive")
        if self.trade_delay_max_base_ms < self.trade_delay_min_base_ms:
            raise ConfigurationError("trade_delay_max_base_ms must be >= trade_delay_min_base_ms")
        for name in ("ui_refresh_period_ms", "price_refresh_period_ms", "wallet_creation_period_ms"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

    def with_overrides(self, **overrides) -> "SimulationConfig":
        """Return a copy with the given fields replaced (validated again)."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration fields: {sorted(unknown)}")
        return replace(self, **overrides)


DEFAULT_CONFIG = SimulationConfig()

__all__ = [
    "ConfigurationError",
    "SimulationConfig",
    "DEFAULT_CONFIG",
    "SYSTEM_ADDRESS",
    "EXCHANGE_ADDRESS",
    "LOG_LEVEL",
]
