"""
Configuration schema validation using Pydantic
"""

from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class TokenSchema(BaseModel):
    """ERC-20 token entry"""

    symbol: str = Field(min_length=1, max_length=20)
    address: str = Field(min_length=1)
    decimals: int = Field(ge=0, le=36, default=18)

    model_config = {"extra": "forbid"}


class PoolSchema(BaseModel):
    """A pair listed on a venue"""

    pair: str = Field(description="Pair as 'BASE/QUOTE'")
    address: Optional[str] = None

    @field_validator("pair")
    @classmethod
    def validate_pair(cls, v):
        parts = v.split("/")
        if len(parts) != 2 or not all(p.strip() for p in parts):
            raise ValueError(f"Pair must look like 'WETH/USDC', got {v!r}")
        if parts[0].strip() == parts[1].strip():
            raise ValueError(f"Pair {v!r} lists the same token twice")
        return "/".join(p.strip() for p in parts)

    model_config = {"extra": "forbid"}


class VenueSchema(BaseModel):
    """AMM venue configuration"""

    name: str = Field(min_length=1)
    kind: Literal["constant_product", "stable_swap"] = "constant_product"
    router: str = Field(min_length=1)
    factory: Optional[str] = None
    fee_bps: float = Field(ge=0, lt=10000, default=30)
    enabled: bool = True
    pools: List[PoolSchema] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class NetworkSchema(BaseModel):
    """Chain connection"""

    rpc_url: str = Field(min_length=1, description="JSON-RPC endpoint")
    chain_id: int = Field(gt=0)
    wallet_address: Optional[str] = None
    private_key: Optional[str] = None
    poll_interval_ms: int = Field(gt=0, le=60000, default=1000)
    max_block_lookback: int = Field(ge=0, le=1000, default=10)

    model_config = {"extra": "forbid"}


class RelaySchema(BaseModel):
    """Private relay submission"""

    enabled: bool = False
    url: Optional[str] = None

    @model_validator(mode="after")
    def validate_url_when_enabled(self):
        if self.enabled and not self.url:
            raise ValueError("relay.url is required when the relay is enabled")
        return self

    model_config = {"extra": "forbid"}


class FlashLoanSchema(BaseModel):
    """Lending pool used for flash loans"""

    lending_pool: str = Field(min_length=1)
    fee_bps: float = Field(ge=0, lt=10000, default=9)
    max_borrow_amount: Optional[float] = Field(gt=0, default=None)
    assets: List[str] = Field(default_factory=list)

    model_config = {"extra": "forbid"}


class ArbitrageSchema(BaseModel):
    """Scanning and evaluation policy"""

    base_tokens: List[str] = Field(min_length=1)
    principal: Dict[str, float] = Field(description="Borrow size per base token")
    min_profit_threshold: float = Field(
        gt=0, description="Minimum net profit, in profit_numeraire when set"
    )
    profit_numeraire: Optional[str] = Field(
        default=None, description="Token symbol profits are valued in"
    )
    max_hops: int = Field(ge=2, le=6, default=3)
    slippage_tolerance_pct: float = Field(ge=0, lt=100, default=0.5)
    evaluation_timeout_ms: int = Field(gt=0, le=60000, default=500)
    max_concurrent_evaluations: int = Field(ge=1, le=256, default=5)
    cycle_deadline_ms: int = Field(gt=0, le=600000, default=2000)
    cooldown_seconds: float = Field(ge=0, default=60)
    backoff_max_seconds: float = Field(ge=0, default=600)

    @field_validator("principal")
    @classmethod
    def validate_principal(cls, v):
        for symbol, amount in v.items():
            if amount <= 0:
                raise ValueError(f"principal for {symbol} must be positive")
        return v

    @model_validator(mode="after")
    def validate_deadline_covers_timeout(self):
        if self.cycle_deadline_ms < self.evaluation_timeout_ms:
            raise ValueError(
                "cycle_deadline_ms must be at least evaluation_timeout_ms"
            )
        return self

    model_config = {"extra": "forbid"}


class GasSchema(BaseModel):
    """Fee strategy and ceiling"""

    strategy: Literal["fixed", "base_fee_multiplied", "dynamic"] = (
        "base_fee_multiplied"
    )
    max_gas_price_gwei: float = Field(gt=0, description="Fee ceiling")
    fixed_gas_price_gwei: Optional[float] = Field(gt=0, default=None)
    base_fee_multiplier: float = Field(ge=1, le=10, default=1.2)
    priority_fee_gwei: float = Field(ge=0, default=2)
    min_priority_fee_gwei: float = Field(ge=0, default=0.1)
    gas_limit: int = Field(gt=0, le=30_000_000, default=500_000)
    refresh_seconds: float = Field(gt=0, default=15)

    @model_validator(mode="after")
    def validate_fixed_price(self):
        if self.strategy == "fixed" and self.fixed_gas_price_gwei is None:
            raise ValueError("gas.fixed_gas_price_gwei is required for fixed strategy")
        return self

    model_config = {"extra": "forbid"}


class SecuritySchema(BaseModel):
    """Pre-submission checks"""

    min_price_sources: int = Field(ge=1, le=20, default=2)
    max_price_deviation_pct: float = Field(gt=0, le=100, default=1.0)
    max_execution_slippage_pct: float = Field(gt=0, lt=100, default=1.0)
    transaction_timeout_s: float = Field(gt=0, le=3600, default=60)
    simulate_transactions: bool = True

    model_config = {"extra": "forbid"}


class ObservabilitySchema(BaseModel):
    """Metrics and logging"""

    metrics_enabled: bool = True
    metrics_host: str = "0.0.0.0"
    metrics_port: int = Field(ge=1, le=65535, default=8000)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"log_level must be one of {sorted(valid)}")
        return v.upper()

    model_config = {"extra": "forbid"}


class BotConfigSchema(BaseModel):
    """Complete bot configuration schema"""

    network: NetworkSchema
    relay: RelaySchema = Field(default_factory=RelaySchema)
    flash_loan: FlashLoanSchema
    tokens: List[TokenSchema] = Field(min_length=2)
    venues: List[VenueSchema] = Field(min_length=1)
    arbitrage: ArbitrageSchema
    gas: GasSchema
    security: SecuritySchema = Field(default_factory=SecuritySchema)
    observability: ObservabilitySchema = Field(default_factory=ObservabilitySchema)
    executor_address: Optional[str] = None
    test_mode: bool = False
    dry_run: bool = True

    @model_validator(mode="after")
    def validate_credentials(self):
        if self.test_mode:
            return self
        if not self.network.private_key and not self.network.wallet_address:
            raise ValueError(
                "network.private_key or network.wallet_address is required "
                "outside test_mode"
            )
        return self

    @model_validator(mode="after")
    def validate_references(self):
        symbols = [t.symbol for t in self.tokens]
        if len(set(symbols)) != len(symbols):
            raise ValueError("Token symbols must be unique")
        known = set(symbols)

        names = [v.name for v in self.venues]
        if len(set(names)) != len(names):
            raise ValueError("Venue names must be unique")

        for venue in self.venues:
            for pool in venue.pools:
                for symbol in pool.pair.split("/"):
                    if symbol not in known:
                        raise ValueError(
                            f"Venue {venue.name} lists pair {pool.pair} with "
                            f"unknown token {symbol}"
                        )

        for symbol in self.arbitrage.base_tokens:
            if symbol not in known:
                raise ValueError(f"Unknown base token {symbol}")
            if symbol not in self.arbitrage.principal:
                raise ValueError(f"No principal configured for base token {symbol}")
            if self.flash_loan.assets and symbol not in self.flash_loan.assets:
                raise ValueError(f"Base token {symbol} is not borrowable")

        numeraire = self.arbitrage.profit_numeraire
        if numeraire is not None and numeraire not in known:
            raise ValueError(f"Unknown profit numeraire {numeraire}")

        for symbol in self.flash_loan.assets:
            if symbol not in known:
                raise ValueError(f"Unknown flash loan asset {symbol}")
        return self

    model_config = {
        "extra": "forbid",
        "validate_assignment": True,
    }


def validate_bot_config(config_dict: Dict) -> BotConfigSchema:
    """
    Validate a bot configuration dictionary

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return BotConfigSchema(**config_dict)


def validate_config_file(config_path: Union[str, Path]) -> BotConfigSchema:
    """
    Validate a bot configuration file

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If the file is empty
        pydantic.ValidationError: If configuration is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    import yaml

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        raise ValueError("Configuration file is empty or invalid")

    return validate_bot_config(config_dict)
