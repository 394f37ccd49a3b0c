"""
Configuration loading and normalization for the flash arbitrage pipeline.

The YAML file is validated against config_schema once at startup and then
normalized into frozen dataclasses. The resulting BotConfig is handed to
every component's constructor; nothing reads configuration from globals.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from .config_schema import BotConfigSchema, validate_bot_config
from .exceptions import ConfigurationError
from .types import Token, Venue, VenueKind
from .utils import bps_to_decimal, pct_to_decimal

ENV_OVERRIDES = {
    "FLASH_ARB_RPC_URL": ("network", "rpc_url"),
    "FLASH_ARB_PRIVATE_KEY": ("network", "private_key"),
    "FLASH_ARB_WALLET_ADDRESS": ("network", "wallet_address"),
    "FLASH_ARB_RELAY_URL": ("relay", "url"),
    "FLASH_ARB_EXECUTOR_ADDRESS": (None, "executor_address"),
}

GWEI = Decimal(10**9)


@dataclass(frozen=True)
class NetworkConfig:
    """Normalized chain connection settings."""

    rpc_url: str
    chain_id: int
    wallet_address: Optional[str] = None
    private_key: Optional[str] = field(default=None, repr=False)
    poll_interval_s: float = 1.0
    max_block_lookback: int = 10


@dataclass(frozen=True)
class RelayConfig:
    enabled: bool = False
    url: Optional[str] = None


@dataclass(frozen=True)
class FlashLoanConfig:
    """Lending pool address and premium as a fraction (0.0009 for 9 bps)."""

    lending_pool: str
    fee: Decimal = Decimal("0.0009")
    max_borrow_amount: Optional[Decimal] = None
    assets: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ArbitrageConfig:
    """Scan and evaluation policy. Fractions, not percentages."""

    base_tokens: Tuple[str, ...]
    principal: Mapping[str, Decimal]
    min_profit_threshold: Decimal
    profit_numeraire: Optional[str] = None
    max_hops: int = 3
    slippage_tolerance: Decimal = Decimal("0.005")
    evaluation_timeout_s: float = 0.5
    max_concurrent_evaluations: int = 5
    cycle_deadline_s: float = 2.0
    cooldown_seconds: float = 60.0
    backoff_max_seconds: float = 600.0


@dataclass(frozen=True)
class GasConfig:
    """Fee strategy settings. The ceiling and all prices are kept in gwei."""

    strategy: str = "base_fee_multiplied"
    max_gas_price_gwei: Decimal = Decimal(100)
    fixed_gas_price_gwei: Optional[Decimal] = None
    base_fee_multiplier: Decimal = Decimal("1.2")
    priority_fee_gwei: Decimal = Decimal(2)
    min_priority_fee_gwei: Decimal = Decimal("0.1")
    gas_limit: int = 500_000
    refresh_seconds: float = 15.0

    @property
    def ceiling_wei(self) -> int:
        return int(self.max_gas_price_gwei * GWEI)


@dataclass(frozen=True)
class SecurityConfig:
    min_price_sources: int = 2
    max_price_deviation: Decimal = Decimal("0.01")
    max_execution_slippage: Decimal = Decimal("0.01")
    transaction_timeout_s: float = 60.0
    simulate_transactions: bool = True


@dataclass(frozen=True)
class ObservabilityConfig:
    metrics_enabled: bool = True
    metrics_host: str = "0.0.0.0"
    metrics_port: int = 8000
    log_level: str = "INFO"


@dataclass(frozen=True)
class PoolSpec:
    """A pair a venue is expected to list."""

    venue: str
    base: str
    quote: str
    address: Optional[str] = None


@dataclass(frozen=True)
class BotConfig:
    """Immutable runtime configuration object."""

    network: NetworkConfig
    flash_loan: FlashLoanConfig
    arbitrage: ArbitrageConfig
    tokens: Mapping[str, Token]
    venues: Tuple[Venue, ...]
    pools: Tuple[PoolSpec, ...]
    gas: GasConfig = field(default_factory=GasConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)
    executor_address: Optional[str] = None
    test_mode: bool = False
    dry_run: bool = True

    def token(self, symbol: str) -> Token:
        try:
            return self.tokens[symbol]
        except KeyError:
            raise ConfigurationError(f"Unknown token {symbol}") from None

    def venue(self, name: str) -> Venue:
        for venue in self.venues:
            if venue.name == name:
                return venue
        raise ConfigurationError(f"Unknown venue {name}")

    @property
    def enabled_venues(self) -> Tuple[Venue, ...]:
        return tuple(v for v in self.venues if v.enabled)


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Top level of {config_path} must be a mapping")

    return config_dict


def apply_env_overrides(
    config_dict: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Return a copy of config_dict with FLASH_ARB_* environment values applied."""
    environ = os.environ if environ is None else environ
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in config_dict.items()}

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue
        if section is None:
            merged[key] = value
        else:
            merged.setdefault(section, {})[key] = value
    return merged


def _normalize_network(schema: BotConfigSchema) -> NetworkConfig:
    net = schema.network
    return NetworkConfig(
        rpc_url=net.rpc_url,
        chain_id=net.chain_id,
        wallet_address=net.wallet_address,
        private_key=net.private_key,
        poll_interval_s=net.poll_interval_ms / 1000.0,
        max_block_lookback=net.max_block_lookback,
    )


def _normalize_arbitrage(schema: BotConfigSchema) -> ArbitrageConfig:
    arb = schema.arbitrage
    principal = {
        symbol: Decimal(str(amount)) for symbol, amount in arb.principal.items()
    }
    return ArbitrageConfig(
        base_tokens=tuple(arb.base_tokens),
        principal=MappingProxyType(principal),
        min_profit_threshold=Decimal(str(arb.min_profit_threshold)),
        profit_numeraire=arb.profit_numeraire,
        max_hops=arb.max_hops,
        slippage_tolerance=pct_to_decimal(arb.slippage_tolerance_pct),
        evaluation_timeout_s=arb.evaluation_timeout_ms / 1000.0,
        max_concurrent_evaluations=arb.max_concurrent_evaluations,
        cycle_deadline_s=arb.cycle_deadline_ms / 1000.0,
        cooldown_seconds=arb.cooldown_seconds,
        backoff_max_seconds=arb.backoff_max_seconds,
    )


def _normalize_gas(schema: BotConfigSchema) -> GasConfig:
    gas = schema.gas
    fixed = gas.fixed_gas_price_gwei
    return GasConfig(
        strategy=gas.strategy,
        max_gas_price_gwei=Decimal(str(gas.max_gas_price_gwei)),
        fixed_gas_price_gwei=Decimal(str(fixed)) if fixed is not None else None,
        base_fee_multiplier=Decimal(str(gas.base_fee_multiplier)),
        priority_fee_gwei=Decimal(str(gas.priority_fee_gwei)),
        min_priority_fee_gwei=Decimal(str(gas.min_priority_fee_gwei)),
        gas_limit=gas.gas_limit,
        refresh_seconds=gas.refresh_seconds,
    )


def _normalize_security(schema: BotConfigSchema) -> SecurityConfig:
    sec = schema.security
    return SecurityConfig(
        min_price_sources=sec.min_price_sources,
        max_price_deviation=pct_to_decimal(sec.max_price_deviation_pct),
        max_execution_slippage=pct_to_decimal(sec.max_execution_slippage_pct),
        transaction_timeout_s=sec.transaction_timeout_s,
        simulate_transactions=sec.simulate_transactions,
    )


def _normalize_venues(schema: BotConfigSchema) -> Tuple[Tuple[Venue, ...], Tuple[PoolSpec, ...]]:
    venues = []
    pools = []
    for v in schema.venues:
        venues.append(
            Venue(
                name=v.name,
                kind=VenueKind(v.kind),
                router=v.router,
                fee=bps_to_decimal(Decimal(str(v.fee_bps))),
                factory=v.factory,
                enabled=v.enabled,
            )
        )
        for pool in v.pools:
            base, quote = pool.pair.split("/")
            pools.append(PoolSpec(v.name, base, quote, pool.address))
    return tuple(venues), tuple(pools)


def build_bot_config(config_dict: Dict[str, Any]) -> BotConfig:
    """
    Validate a raw configuration mapping and freeze it.

    Raises:
        ConfigurationError: If the mapping fails schema validation
    """
    try:
        schema = validate_bot_config(config_dict)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e

    tokens = {
        t.symbol: Token(symbol=t.symbol, address=t.address, decimals=t.decimals)
        for t in schema.tokens
    }
    venues, pools = _normalize_venues(schema)
    loan = schema.flash_loan

    return BotConfig(
        network=_normalize_network(schema),
        flash_loan=FlashLoanConfig(
            lending_pool=loan.lending_pool,
            fee=bps_to_decimal(Decimal(str(loan.fee_bps))),
            max_borrow_amount=(
                Decimal(str(loan.max_borrow_amount))
                if loan.max_borrow_amount is not None
                else None
            ),
            assets=tuple(loan.assets),
        ),
        arbitrage=_normalize_arbitrage(schema),
        tokens=MappingProxyType(tokens),
        venues=venues,
        pools=pools,
        gas=_normalize_gas(schema),
        security=_normalize_security(schema),
        relay=RelayConfig(
            enabled=schema.relay.enabled,
            url=schema.relay.url,
        ),
        observability=ObservabilityConfig(
            metrics_enabled=schema.observability.metrics_enabled,
            metrics_host=schema.observability.metrics_host,
            metrics_port=schema.observability.metrics_port,
            log_level=schema.observability.log_level,
        ),
        executor_address=schema.executor_address,
        test_mode=schema.test_mode,
        dry_run=schema.dry_run,
    )


def load_bot_config(
    config_path: Union[str, Path], environ: Optional[Mapping[str, str]] = None
) -> BotConfig:
    """
    Load, validate and freeze a configuration file.

    Environment variables listed in ENV_OVERRIDES take precedence over the
    file so secrets can stay out of it.

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    config_dict = apply_env_overrides(load_yaml_config(config_path), environ)
    return build_bot_config(config_dict)
