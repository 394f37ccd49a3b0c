"""Shared fixtures: a small test-mode configuration and snapshot factories."""

import copy
from decimal import Decimal

import pytest

from flash_arbitrage.config_loader import build_bot_config
from flash_arbitrage.interfaces import ManualClock
from flash_arbitrage.types import PoolSnapshot, PoolState

WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
DAI = "0x6b175474e89094c44da98b954eedeac495271d0f"
USDT = "0xdac17f958d2ee523a2206206994597c13d831ec7"

UNISWAP_ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
SUSHISWAP_ROUTER = "0xd9e1ce17f2641f24ae83637ab66a2cca9c378b9f"
CURVE_ROUTER = "0x99a58482bd75cbab83b27ec03ca68ff489b5788f"
LENDING_POOL = "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2"
SENDER = "0x" + "11" * 20

BASE_CONFIG = {
    "network": {"rpc_url": "http://localhost:8545", "chain_id": 1},
    "flash_loan": {"lending_pool": LENDING_POOL, "fee_bps": 9},
    "tokens": [
        {"symbol": "WETH", "address": WETH, "decimals": 18},
        {"symbol": "USDC", "address": USDC, "decimals": 6},
        {"symbol": "DAI", "address": DAI, "decimals": 18},
        {"symbol": "USDT", "address": USDT, "decimals": 6},
    ],
    "venues": [
        {
            "name": "uniswap",
            "kind": "constant_product",
            "router": UNISWAP_ROUTER,
            "fee_bps": 30,
            "pools": [{"pair": "WETH/USDC"}],
        },
        {
            "name": "sushiswap",
            "kind": "constant_product",
            "router": SUSHISWAP_ROUTER,
            "fee_bps": 30,
            "pools": [{"pair": "WETH/USDC"}],
        },
    ],
    "arbitrage": {
        "base_tokens": ["WETH"],
        "principal": {"WETH": 1},
        "min_profit_threshold": 0.01,
        "profit_numeraire": "USDC",
        "max_hops": 3,
        "slippage_tolerance_pct": 0.1,
    },
    "gas": {"strategy": "base_fee_multiplied", "max_gas_price_gwei": 100},
    "security": {
        "min_price_sources": 2,
        "max_price_deviation_pct": 2.0,
        "max_execution_slippage_pct": 1.0,
    },
    "observability": {"metrics_enabled": False},
    "test_mode": True,
}


def config_dict(**sections):
    """BASE_CONFIG with each keyword merged into (or replacing) its section."""
    data = copy.deepcopy(BASE_CONFIG)
    for section, value in sections.items():
        if isinstance(value, dict) and isinstance(data.get(section), dict):
            data[section].update(value)
        else:
            data[section] = value
    return data


def make_config(**sections):
    return build_bot_config(config_dict(**sections))


def make_state(config, venue, base, quote, reserve_base, reserve_quote, block=100, rate=None):
    v = config.venue(venue)
    return PoolState(
        venue=v,
        token0=config.token(base),
        token1=config.token(quote),
        reserve0=Decimal(str(reserve_base)),
        reserve1=Decimal(str(reserve_quote)),
        block_number=block,
        fee=v.fee,
        rate=Decimal(str(rate)) if rate is not None else None,
    )


def make_snapshot(*states, block=100, degraded=()):
    return PoolSnapshot({s.key: s for s in states}, block_number=block, degraded=frozenset(degraded))


def scenario_states(config, block=100):
    """WETH quoted at 2000 USDC on uniswap and 2020 USDC on sushiswap, deep pools."""
    return [
        make_state(config, "uniswap", "WETH", "USDC", 10_000, 20_000_000, block),
        make_state(config, "sushiswap", "WETH", "USDC", 10_000, 20_200_000, block),
    ]


class FakeFeeSource:
    """Fee data in wei; counts reads so cache behavior can be checked."""

    def __init__(self, base_fee=20 * 10**9, gas_price=25 * 10**9, rewards=None):
        self.base_fee = base_fee
        self.price = gas_price
        self.rewards = rewards if rewards is not None else [
            [10**9, 2 * 10**9, 5 * 10**9] for _ in range(10)
        ]
        self.reads = 0

    def latest_base_fee(self):
        self.reads += 1
        return self.base_fee

    def gas_price(self):
        return self.price

    def priority_fee_history(self, block_count, percentiles):
        return self.rewards[:block_count]


class FakePoolSource:
    """PoolStateSource serving fixed states; names in `failing` raise."""

    def __init__(self, states, failing=()):
        self.states = {s.key: s for s in states}
        self.failing = set(failing)
        self.reads = []

    async def read_pool(self, venue, token_a, token_b, block_number):
        self.reads.append((venue.name, token_a.symbol, token_b.symbol, block_number))
        if venue.name in self.failing:
            raise ConnectionError(f"{venue.name} RPC unavailable")
        for state in self.states.values():
            if state.venue.name == venue.name and {state.token0.symbol, state.token1.symbol} == {
                token_a.symbol,
                token_b.symbol,
            }:
                return PoolState(
                    venue=state.venue,
                    token0=state.token0,
                    token1=state.token1,
                    reserve0=state.reserve0,
                    reserve1=state.reserve1,
                    block_number=block_number,
                    fee=state.fee,
                    rate=state.rate,
                )
        raise LookupError(f"No pool {token_a.symbol}/{token_b.symbol} on {venue.name}")


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def scenario_snapshot(config):
    return make_snapshot(*scenario_states(config))


@pytest.fixture
def clock():
    return ManualClock(start_time=1_700_000_000.0)


@pytest.fixture
def fee_source():
    return FakeFeeSource()
