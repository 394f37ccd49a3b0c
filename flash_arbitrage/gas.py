"""
Gas/fee optimizer.

Produces EIP-1559 fee fields for the execution transaction under one of
three strategies and never returns a fee above the configured ceiling.
"""

from dataclasses import dataclass
from decimal import Decimal
from statistics import median
from typing import List, Optional

from web3 import Web3

from .config_loader import GWEI, BotConfig
from .exceptions import ConfigurationError, FeeCeilingExceededError
from .interfaces import Clock, FeeDataSource, SystemClock
from .metrics import PipelineMetrics
from .types import FeeParams
from .utils import get_logger

logger = get_logger(__name__)

FEE_HISTORY_BLOCKS = 10
FEE_HISTORY_PERCENTILES = [10.0, 50.0, 90.0]

STRATEGIES = ("fixed", "base_fee_multiplied", "dynamic")


class Web3FeeDataSource:
    """Fee data read from a web3 node."""

    def __init__(self, web3: Web3):
        self.web3 = web3

    def latest_base_fee(self) -> int:
        block = self.web3.eth.get_block("latest")
        return int(block.get("baseFeePerGas", 0))

    def gas_price(self) -> int:
        return int(self.web3.eth.gas_price)

    def priority_fee_history(self, block_count: int, percentiles: List[float]) -> List[List[int]]:
        history = self.web3.eth.fee_history(block_count, "latest", percentiles)
        return [[int(r) for r in rewards] for rewards in history.get("reward", [])]


@dataclass(frozen=True)
class FeeEstimate:
    base_fee: int
    gas_price: int
    median_priority_fee: Optional[int]
    taken_at: float


def gwei_to_wei(value: Decimal) -> int:
    return int(value * GWEI)


class GasOptimizer:
    """
    Fee quoting with a cached chain estimate.

    Strategies:
        fixed: a constant max fee
        base_fee_multiplied: base fee x multiplier + priority fee
        dynamic: median priority fee of recent blocks on top of the base
            fee, floored at the node's suggested gas price
    """

    def __init__(
        self,
        config: BotConfig,
        source: FeeDataSource,
        clock: Optional[Clock] = None,
        metrics: Optional[PipelineMetrics] = None,
    ):
        self.config = config.gas
        self.source = source
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self._estimate: Optional[FeeEstimate] = None

    def current_estimate(self) -> FeeEstimate:
        """Chain fee data, re-read once it is older than `refresh_seconds`."""
        now = self.clock.monotonic()
        if self._estimate is not None and now - self._estimate.taken_at < self.config.refresh_seconds:
            return self._estimate

        base_fee = self.source.latest_base_fee()
        gas_price = self.source.gas_price()
        rewards = self.source.priority_fee_history(FEE_HISTORY_BLOCKS, FEE_HISTORY_PERCENTILES)
        medians = [block[1] for block in rewards if len(block) > 1]
        median_priority = int(median(medians)) if medians else None

        self._estimate = FeeEstimate(base_fee, gas_price, median_priority, now)
        logger.debug(
            f"Fee estimate: base={base_fee} gas_price={gas_price} "
            f"median_priority={median_priority}"
        )
        return self._estimate

    def quote_fee(self, strategy: Optional[str] = None, ceiling_wei: Optional[int] = None) -> FeeParams:
        """
        Raises:
            FeeCeilingExceededError: If base fee plus the minimum priority
                fee is already above the ceiling, or above the fixed price
                under the fixed strategy
            ConfigurationError: If the strategy is unknown
        """
        strategy = strategy or self.config.strategy
        ceiling = ceiling_wei if ceiling_wei is not None else self.config.ceiling_wei
        if strategy not in STRATEGIES:
            raise ConfigurationError(f"Unknown gas strategy {strategy!r}")

        estimate = self.current_estimate()
        min_priority = gwei_to_wei(self.config.min_priority_fee_gwei)
        min_viable = estimate.base_fee + min_priority

        if min_viable > ceiling:
            log_data = {"strategy": strategy, "required_wei": min_viable, "ceiling_wei": ceiling}
            logger.warning(f"FEE_CEILING_EXCEEDED: {log_data}")
            if self.metrics:
                self.metrics.record_fee_ceiling_exceeded()
            raise FeeCeilingExceededError(
                f"Minimum viable fee {min_viable} wei exceeds ceiling {ceiling} wei",
                required_wei=min_viable,
                ceiling_wei=ceiling,
            )

        if strategy == "fixed":
            if self.config.fixed_gas_price_gwei is None:
                raise ConfigurationError("fixed strategy needs fixed_gas_price_gwei")
            max_fee = gwei_to_wei(self.config.fixed_gas_price_gwei)
            priority = gwei_to_wei(self.config.priority_fee_gwei)
            if max_fee < min_viable:
                log_data = {"strategy": strategy, "required_wei": min_viable, "fixed_wei": max_fee}
                logger.warning(f"FEE_CEILING_EXCEEDED: {log_data}")
                if self.metrics:
                    self.metrics.record_fee_ceiling_exceeded()
                raise FeeCeilingExceededError(
                    f"Fixed fee {max_fee} wei is below the viable {min_viable} wei",
                    required_wei=min_viable,
                    ceiling_wei=max_fee,
                )
        elif strategy == "base_fee_multiplied":
            priority = gwei_to_wei(self.config.priority_fee_gwei)
            max_fee = int(Decimal(estimate.base_fee) * self.config.base_fee_multiplier) + priority
        else:
            if estimate.median_priority_fee is not None:
                priority = max(estimate.median_priority_fee, min_priority)
            else:
                priority = gwei_to_wei(self.config.priority_fee_gwei)
            max_fee = max(estimate.gas_price, estimate.base_fee + priority)

        max_fee = min(max_fee, ceiling)
        priority = min(priority, max_fee)

        return FeeParams(
            strategy=strategy,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority,
            gas_limit=self.config.gas_limit,
            base_fee=estimate.base_fee,
        )
