"""Tests for the execution contract state machine."""

from decimal import Decimal
from types import SimpleNamespace

import pytest
from eth_abi import encode
from web3 import Web3

from conftest import DAI, USDC, USDT, WETH
from flash_arbitrage.chain import (
    ConstantProductRouter,
    Ledger,
    LendingPool,
    StableSwapRouter,
    new_address,
)
from flash_arbitrage.codec import PARAMS_TYPES, encode_params
from flash_arbitrage.contract import ArbitrageExecutor, profit_events
from flash_arbitrage.exceptions import ExecutionRevertedError, RevertReason
from flash_arbitrage.types import Token, Venue, VenueKind

E18 = 10**18
E6 = 10**6
OWNER = "0x" + "0a" * 20
STRANGER = "0x" + "5e" * 20
DEADLINE = 2_000

TOKENS = {
    "WETH": Token("WETH", WETH, 18),
    "USDC": Token("USDC", USDC, 6),
    "DAI": Token("DAI", DAI, 18),
    "USDT": Token("USDT", USDT, 6),
}


def cp_venue(router):
    return Venue("cp", VenueKind.CONSTANT_PRODUCT, router.address)


def stable_venue(router):
    return Venue("stable", VenueKind.STABLE_SWAP, router.address)


def params_for(symbols, venues, slippage_bps=50, deadline=DEADLINE):
    return encode_params([TOKENS[s] for s in symbols], venues, slippage_bps, deadline)


def state_of(ledger):
    return (dict(ledger.balances), dict(ledger.allowances), repr(ledger.storage), len(ledger.events))


@pytest.fixture
def world():
    ledger = Ledger(timestamp=1_000)
    pool = LendingPool(ledger, fee_bps=9)
    uni = ConstantProductRouter(ledger, fee_bps=30)
    sushi = ConstantProductRouter(ledger, fee_bps=30)
    uni.add_pool(WETH, USDC, 10_000 * E18, 20_000_000 * E6)
    sushi.add_pool(WETH, USDC, 10_000 * E18, 20_200_000 * E6)
    ledger.mint(WETH, pool.address, 1_000 * E18)
    executor = ArbitrageExecutor(ledger, pool, OWNER, [uni, sushi], [])
    return SimpleNamespace(ledger=ledger, pool=pool, uni=uni, sushi=sushi, executor=executor)


# === EXECUTION ===


def test_profitable_cycle_repays_loan_and_keeps_profit(world):
    params = params_for(["WETH", "USDC", "WETH"], [cp_venue(world.sushi), cp_venue(world.uni)])

    profit = world.executor.execute_arbitrage(OWNER, WETH, E18, params)

    premium = E18 * 9 // 10000
    assert profit > 0
    assert abs(Decimal(profit) / E18 - Decimal("0.002848")) < Decimal("0.00001")
    assert world.ledger.balance_of(WETH, world.executor.address) == profit
    assert world.ledger.balance_of(WETH, world.pool.address) == 1_000 * E18 + premium
    [event] = profit_events(world.ledger, world.executor)
    assert event.args == {"asset": WETH, "principal": E18, "premium": premium, "profit": profit}


def test_unprofitable_cycle_reverts_without_state_change(world):
    before = state_of(world.ledger)
    params = params_for(["WETH", "USDC", "WETH"], [cp_venue(world.uni), cp_venue(world.sushi)])

    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.executor.execute_arbitrage(OWNER, WETH, E18, params)

    assert exc_info.value.reason is RevertReason.INSUFFICIENT_REPAYMENT
    assert state_of(world.ledger) == before


def test_forced_hop_failure_is_atomic(world):
    """A venue paying less than quoted aborts the whole cycle, including its own side effects."""
    ledger = world.ledger
    sink = new_address()

    class FrontRunRouter(ConstantProductRouter):
        def swap_exact_tokens_for_tokens(self, sender, amount_in, min_out, path, recipient, deadline):
            pair = self.pair_for(path[0], path[1])
            ledger.transfer(path[1], pair, sink, ledger.balance_of(path[1], pair) // 2)
            return super().swap_exact_tokens_for_tokens(
                sender, amount_in, min_out, path, recipient, deadline
            )

    curve_like = FrontRunRouter(ledger)
    curve_like.add_pool(WETH, USDC, 10_000 * E18, 20_300_000 * E6)
    executor = ArbitrageExecutor(ledger, world.pool, OWNER, [curve_like, world.uni], [])
    before = state_of(ledger)

    params = params_for(["WETH", "USDC", "WETH"], [cp_venue(curve_like), cp_venue(world.uni)])
    with pytest.raises(ExecutionRevertedError) as exc_info:
        executor.execute_arbitrage(OWNER, WETH, E18, params)

    assert exc_info.value.reason is RevertReason.SLIPPAGE_EXCEEDED
    assert state_of(ledger) == before
    assert ledger.balance_of(USDC, sink) == 0
    assert ledger.balance_of(WETH, executor.address) == 0


def test_callback_from_wrong_caller_reverts(world):
    before = state_of(world.ledger)
    params = params_for(["WETH", "USDC", "WETH"], [cp_venue(world.sushi), cp_venue(world.uni)])

    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.executor.execute_operation(
            STRANGER, [WETH], [E18], [9 * 10**14], world.executor.address, params
        )

    assert exc_info.value.reason is RevertReason.UNAUTHORIZED_CALLER
    assert state_of(world.ledger) == before


def test_loan_initiated_by_someone_else_reverts(world):
    before = state_of(world.ledger)
    params = params_for(["WETH", "USDC", "WETH"], [cp_venue(world.sushi), cp_venue(world.uni)])

    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.pool.flash_loan(STRANGER, world.executor, [WETH], [E18], params)

    assert exc_info.value.reason is RevertReason.INITIATOR_MISMATCH
    assert state_of(world.ledger) == before


def test_unknown_router_is_unsupported(world):
    rogue = Venue("rogue", VenueKind.CONSTANT_PRODUCT, new_address())
    params = params_for(["WETH", "USDC", "WETH"], [rogue, cp_venue(world.uni)])

    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.executor.execute_arbitrage(OWNER, WETH, E18, params)
    assert exc_info.value.reason is RevertReason.UNSUPPORTED_VENUE


def test_unknown_venue_kind_is_unsupported(world):
    hops = [(7, Web3.to_checksum_address(world.sushi.address)), (0, Web3.to_checksum_address(world.uni.address))]
    tokens = [Web3.to_checksum_address(t) for t in (WETH, USDC, WETH)]
    params = encode(PARAMS_TYPES, [tokens, hops, 50, DEADLINE])

    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.executor.execute_arbitrage(OWNER, WETH, E18, params)
    assert exc_info.value.reason is RevertReason.UNSUPPORTED_VENUE


def test_path_must_start_and_end_at_asset(world):
    params = params_for(["USDC", "WETH", "USDC"], [cp_venue(world.uni), cp_venue(world.sushi)])
    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.executor.execute_arbitrage(OWNER, WETH, E18, params)
    assert exc_info.value.reason is RevertReason.INVALID_PATH


def test_expired_deadline_reverts(world):
    params = params_for(
        ["WETH", "USDC", "WETH"], [cp_venue(world.sushi), cp_venue(world.uni)], deadline=999
    )
    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.executor.execute_arbitrage(OWNER, WETH, E18, params)
    assert exc_info.value.reason is RevertReason.DEADLINE_EXPIRED


def test_reentrant_flash_loan_reverts(world):
    ledger = world.ledger
    box = {}

    class ReentrantRouter(ConstantProductRouter):
        def swap_exact_tokens_for_tokens(self, sender, amount_in, min_out, path, recipient, deadline):
            executor = box["executor"]
            world.pool.flash_loan(executor.address, executor, [WETH], [E18], box["params"])
            return super().swap_exact_tokens_for_tokens(
                sender, amount_in, min_out, path, recipient, deadline
            )

    evil = ReentrantRouter(ledger)
    evil.add_pool(WETH, USDC, 10_000 * E18, 20_200_000 * E6)
    executor = ArbitrageExecutor(ledger, world.pool, OWNER, [evil, world.uni], [])
    params = params_for(["WETH", "USDC", "WETH"], [cp_venue(evil), cp_venue(world.uni)])
    box.update(executor=executor, params=params)
    before = state_of(ledger)

    with pytest.raises(ExecutionRevertedError) as exc_info:
        executor.execute_arbitrage(OWNER, WETH, E18, params)

    assert exc_info.value.reason is RevertReason.REENTRANT_CALL
    assert state_of(ledger) == before
    assert ledger.storage_of(executor.address)["locked"] is False


# === MULTI-HOP STABLE SWAP ===


@pytest.fixture
def stable_world():
    ledger = Ledger(timestamp=1_000)
    pool = LendingPool(ledger, fee_bps=9)
    curve = StableSwapRouter(ledger, fee_bps=4)
    curve.add_pool(USDC, DAI, 10**6 * E6, 10**6 * E18, Decimal("1.002e12"))
    curve.add_pool(DAI, USDT, 10**6 * E18, 10**6 * E6, Decimal("1.002e-12"))
    curve.add_pool(USDT, USDC, 10**6 * E6, 10**6 * E6, Decimal("1.002"))
    uni = ConstantProductRouter(ledger, fee_bps=30)
    uni.add_pool(USDC, DAI, 10**6 * E6, 10**6 * E18)
    ledger.mint(USDC, pool.address, 10**6 * E6)
    executor = ArbitrageExecutor(ledger, pool, OWNER, [uni], [curve])
    return SimpleNamespace(ledger=ledger, pool=pool, curve=curve, uni=uni, executor=executor)


def test_consecutive_stable_hops_execute(stable_world):
    w = stable_world
    venue = stable_venue(w.curve)
    params = params_for(["USDC", "DAI", "USDT", "USDC"], [venue, venue, venue])

    profit = w.executor.execute_arbitrage(OWNER, USDC, 1_000 * E6, params)

    # 1000 * (1.002 * 0.9996)^3 - 1000 - 0.9 premium
    expected = Decimal(1000) * (Decimal("1.002") * Decimal("0.9996")) ** 3 - Decimal("1000.9")
    assert abs(Decimal(profit) / E6 - expected) < Decimal("0.00001")
    assert w.ledger.balance_of(USDC, w.executor.address) == profit
    assert w.ledger.balance_of(DAI, w.executor.address) == 0
    assert w.ledger.balance_of(USDT, w.executor.address) == 0


def test_mixed_constant_product_and_stable_hops(stable_world):
    w = stable_world
    params = params_for(["USDC", "DAI", "USDC"], [cp_venue(w.uni), stable_venue(w.curve)])
    before = state_of(w.ledger)

    # 0.3% fee on the way in is not covered by the stable leg going back
    with pytest.raises(ExecutionRevertedError) as exc_info:
        w.executor.execute_arbitrage(OWNER, USDC, 1_000 * E6, params)
    assert exc_info.value.reason is RevertReason.INSUFFICIENT_REPAYMENT
    assert state_of(w.ledger) == before


def test_stable_hop_without_pool_reverts(stable_world):
    w = stable_world
    venue = stable_venue(w.curve)
    w.ledger.mint(WETH, w.pool.address, 10 * E18)
    params = params_for(["WETH", "USDC", "WETH"], [venue, venue])

    with pytest.raises(ExecutionRevertedError) as exc_info:
        w.executor.execute_arbitrage(OWNER, WETH, E18, params)
    assert exc_info.value.reason is RevertReason.INSUFFICIENT_LIQUIDITY


# === ADMINISTRATION ===


def test_only_authorized_callers_may_execute(world):
    params = params_for(["WETH", "USDC", "WETH"], [cp_venue(world.sushi), cp_venue(world.uni)])
    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.executor.execute_arbitrage(STRANGER, WETH, E18, params)
    assert exc_info.value.reason is RevertReason.NOT_AUTHORIZED

    world.executor.authorize_caller(OWNER, STRANGER)
    assert world.executor.execute_arbitrage(STRANGER, WETH, E18, params) > 0

    world.executor.unauthorize_caller(OWNER, STRANGER)
    assert not world.executor.is_authorized(STRANGER)


def test_admin_calls_are_owner_only(world):
    for call in (
        lambda: world.executor.authorize_caller(STRANGER, STRANGER),
        lambda: world.executor.activate_emergency_stop(STRANGER),
        lambda: world.executor.recover_token(STRANGER, WETH, 1),
    ):
        with pytest.raises(ExecutionRevertedError) as exc_info:
            call()
        assert exc_info.value.reason is RevertReason.NOT_OWNER


def test_emergency_stop_blocks_execution(world):
    params = params_for(["WETH", "USDC", "WETH"], [cp_venue(world.sushi), cp_venue(world.uni)])
    world.executor.activate_emergency_stop(OWNER)
    assert world.executor.emergency_stopped

    with pytest.raises(ExecutionRevertedError) as exc_info:
        world.executor.execute_arbitrage(OWNER, WETH, E18, params)
    assert exc_info.value.reason is RevertReason.EMERGENCY_STOPPED

    world.executor.deactivate_emergency_stop(OWNER)
    assert world.executor.execute_arbitrage(OWNER, WETH, E18, params) > 0
    assert [e.name for e in world.ledger.events if e.name.startswith("Emergency")] == [
        "EmergencyStopActivated",
        "EmergencyStopDeactivated",
    ]


def test_recover_token_sends_to_owner(world):
    world.ledger.mint(USDC, world.executor.address, 5 * E6)
    world.executor.recover_token(OWNER, USDC, 5 * E6)
    assert world.ledger.balance_of(USDC, OWNER) == 5 * E6
    assert world.ledger.balance_of(USDC, world.executor.address) == 0
