"""
Web3-backed venue adapters.

Web3PoolSource implements both PoolStateSource (reserve/rate reads for
the pool cache) and StableSwapQuoter (best-rate quotes for the strategy
engine). Blocking RPC calls run in the default executor.
"""

import asyncio
from decimal import Decimal
from typing import Dict, Optional, Tuple

from web3 import Web3

from ..amm import from_raw, to_raw
from ..config_loader import BotConfig
from ..types import PoolKey, PoolState, Token, Venue, VenueKind
from .constant_product import fetch_pair, resolve_pair
from .stable_swap import get_best_rate, token_balance

__all__ = ["Web3PoolSource"]


class Web3PoolSource:
    def __init__(self, web3: Web3, pool_addresses: Optional[Dict[PoolKey, str]] = None, max_retries: int = 3):
        self.web3 = web3
        self.pool_addresses: Dict[PoolKey, str] = dict(pool_addresses or {})
        self.max_retries = max_retries

    @classmethod
    def from_config(cls, web3: Web3, config: BotConfig) -> "Web3PoolSource":
        addresses = {
            PoolKey.of(spec.venue, spec.base, spec.quote): spec.address
            for spec in config.pools
            if spec.address
        }
        return cls(web3, addresses)

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def read_pool(self, venue: Venue, token_a: Token, token_b: Token, block_number: int) -> PoolState:
        if venue.kind is VenueKind.CONSTANT_PRODUCT:
            return await self._read_constant_product(venue, token_a, token_b, block_number)
        if venue.kind is VenueKind.STABLE_SWAP:
            return await self._read_stable_swap(venue, token_a, token_b, block_number)
        raise AssertionError(f"Unhandled venue kind {venue.kind!r}")

    async def _pair_address(self, venue: Venue, token_a: Token, token_b: Token) -> str:
        key = PoolKey.of(venue.name, token_a.symbol, token_b.symbol)
        address = self.pool_addresses.get(key)
        if address is None:
            if not venue.factory:
                raise LookupError(f"No pool address or factory for {key.pair} on {venue.name}")
            address = await self._run(resolve_pair, self.web3, venue.factory, token_a.address, token_b.address)
            self.pool_addresses[key] = address
        return address

    async def _read_constant_product(self, venue: Venue, token_a: Token, token_b: Token, block_number: int) -> PoolState:
        address = await self._pair_address(venue, token_a, token_b)
        token0_addr, _, r0, r1 = await self._run(fetch_pair, self.web3, address, self.max_retries)
        if token0_addr.lower() == token_a.address.lower():
            token0, token1 = token_a, token_b
        else:
            token0, token1 = token_b, token_a
        return PoolState(
            venue=venue,
            token0=token0,
            token1=token1,
            reserve0=from_raw(r0, token0.decimals),
            reserve1=from_raw(r1, token1.decimals),
            block_number=block_number,
            fee=venue.fee,
            address=address,
        )

    async def _read_stable_swap(self, venue: Venue, token_a: Token, token_b: Token, block_number: int) -> PoolState:
        probe = to_raw(Decimal(1), token_a.decimals)
        pool, out_raw = await self._run(
            get_best_rate, self.web3, venue.router, token_a.address, token_b.address, probe
        )
        if pool is None:
            raise LookupError(f"{venue.name} has no route for {token_a.symbol}/{token_b.symbol}")
        balance_a = await self._run(token_balance, self.web3, token_a.address, pool)
        balance_b = await self._run(token_balance, self.web3, token_b.address, pool)
        # the quote already has the venue fee taken out; store the gross rate
        rate = from_raw(out_raw, token_b.decimals) / (Decimal(1) - venue.fee)
        return PoolState(
            venue=venue,
            token0=token_a,
            token1=token_b,
            reserve0=from_raw(balance_a, token_a.decimals),
            reserve1=from_raw(balance_b, token_b.decimals),
            block_number=block_number,
            fee=venue.fee,
            rate=rate,
            address=pool,
        )

    async def best_rate(self, venue: Venue, token_in: Token, token_out: Token, amount_in: Decimal) -> Tuple[Optional[str], Decimal]:
        pool, out_raw = await self._run(
            get_best_rate,
            self.web3,
            venue.router,
            token_in.address,
            token_out.address,
            to_raw(amount_in, token_in.decimals),
        )
        return pool, from_raw(out_raw, token_out.decimals)
