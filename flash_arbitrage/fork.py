"""
Simulated fork seeded from a pool snapshot.

Recreates every usable pool of the snapshot on in-memory routers, funds a
lending pool and deploys an ArbitrageExecutor, so an ExecutionRequest can
be run end to end without touching the chain.
"""

from decimal import Decimal
from typing import Dict, Optional

from .amm import to_raw
from .chain import ConstantProductRouter, Ledger, LendingPool, StableSwapRouter, norm
from .config_loader import BotConfig
from .contract import ArbitrageExecutor
from .types import PoolSnapshot, VenueKind
from .utils import decimal_to_bps

LENDING_LIQUIDITY_MULTIPLE = 1000


class SimulatedFork:
    """Ledger, lending pool, routers and executor built from one snapshot."""

    def __init__(
        self,
        ledger: Ledger,
        lending_pool: LendingPool,
        executor: ArbitrageExecutor,
        routers: Dict[str, object],
    ):
        self.ledger = ledger
        self.lending_pool = lending_pool
        self.executor = executor
        self.routers = routers

    @classmethod
    def from_snapshot(
        cls,
        config: BotConfig,
        snapshot: PoolSnapshot,
        sender: str,
        timestamp: Optional[int] = None,
    ) -> "SimulatedFork":
        ledger = Ledger(timestamp) if timestamp is not None else Ledger()

        lending_pool = LendingPool(
            ledger,
            fee_bps=decimal_to_bps(config.flash_loan.fee),
            address=config.flash_loan.lending_pool,
        )
        for symbol, principal in config.arbitrage.principal.items():
            token = config.token(symbol)
            liquidity = principal * LENDING_LIQUIDITY_MULTIPLE
            ledger.mint(token.address, lending_pool.address, to_raw(liquidity, token.decimals))

        routers: Dict[str, object] = {}
        constant_product = []
        stable_swap = []
        for venue in config.enabled_venues:
            fee_bps = decimal_to_bps(venue.fee)
            if venue.kind is VenueKind.CONSTANT_PRODUCT:
                router = ConstantProductRouter(ledger, fee_bps, address=venue.router)
                constant_product.append(router)
            else:
                router = StableSwapRouter(ledger, fee_bps, address=venue.router)
                stable_swap.append(router)
            routers[venue.name] = router

        for state in snapshot:
            router = routers.get(state.venue.name)
            if router is None or not state.is_usable:
                continue
            t0, t1 = state.token0, state.token1
            raw0 = to_raw(state.reserve0, t0.decimals)
            raw1 = to_raw(state.reserve1, t1.decimals)
            if isinstance(router, ConstantProductRouter):
                router.add_pool(t0.address, t1.address, raw0, raw1)
            else:
                rate_raw = state.rate * (Decimal(10) ** t1.decimals) / (Decimal(10) ** t0.decimals)
                router.add_pool(t0.address, t1.address, raw0, raw1, rate_raw)

        executor = ArbitrageExecutor(
            ledger,
            lending_pool,
            owner=sender,
            constant_product_routers=constant_product,
            stable_swap_routers=stable_swap,
            address=config.executor_address,
        )
        return cls(ledger, lending_pool, executor, routers)

    def balance_of(self, token_address: str, holder: str) -> int:
        return self.ledger.balance_of(norm(token_address), holder)
