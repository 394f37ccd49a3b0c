"""Tests for the gas/fee optimizer."""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from prometheus_client import CollectorRegistry

from conftest import FakeFeeSource, make_config
from flash_arbitrage.exceptions import ConfigurationError, FeeCeilingExceededError
from flash_arbitrage.gas import GasOptimizer
from flash_arbitrage.interfaces import ManualClock
from flash_arbitrage.metrics import PipelineMetrics

GWEI = 10**9


def test_base_fee_multiplied(config, fee_source, clock):
    fee = GasOptimizer(config, fee_source, clock).quote_fee()

    assert fee.strategy == "base_fee_multiplied"
    assert fee.max_priority_fee_per_gas == 2 * GWEI
    assert fee.max_fee_per_gas == 24 * GWEI + 2 * GWEI
    assert fee.gas_limit == 500_000
    assert fee.base_fee == 20 * GWEI
    assert fee.to_tx_fields()["maxFeePerGas"] == 26 * GWEI


def test_fixed_strategy():
    config = make_config(gas={"strategy": "fixed", "fixed_gas_price_gwei": 40})
    fee = GasOptimizer(config, FakeFeeSource(), ManualClock()).quote_fee()
    assert fee.max_fee_per_gas == 40 * GWEI
    assert fee.max_priority_fee_per_gas == 2 * GWEI


def test_fixed_strategy_below_viable_fee_raises():
    registry = CollectorRegistry()
    config = make_config(gas={"strategy": "fixed", "fixed_gas_price_gwei": 15})
    optimizer = GasOptimizer(config, FakeFeeSource(), ManualClock(), PipelineMetrics(registry))

    with pytest.raises(FeeCeilingExceededError, match="below the viable") as exc_info:
        optimizer.quote_fee()

    assert exc_info.value.ceiling_wei == 15 * GWEI
    assert exc_info.value.required_wei == 20 * GWEI + GWEI // 10
    assert registry.get_sample_value("flash_arbitrage_fee_ceiling_exceeded_total") == 1


def test_dynamic_uses_median_priority_fee(config, clock):
    source = FakeFeeSource(
        rewards=[[GWEI, 3 * GWEI, 9 * GWEI], [GWEI, 1 * GWEI, 9 * GWEI], [GWEI, 5 * GWEI, 9 * GWEI]]
    )
    fee = GasOptimizer(config, source, clock).quote_fee("dynamic")
    assert fee.max_priority_fee_per_gas == 3 * GWEI
    assert fee.max_fee_per_gas == 25 * GWEI  # gas_price 25 beats base 20 + 3


def test_dynamic_without_history_falls_back_to_configured_tip(config, clock):
    fee = GasOptimizer(config, FakeFeeSource(rewards=[]), clock).quote_fee("dynamic")
    assert fee.max_priority_fee_per_gas == 2 * GWEI


def test_fee_capped_at_ceiling(clock):
    config = make_config(gas={"max_gas_price_gwei": 22})
    fee = GasOptimizer(config, FakeFeeSource(), clock).quote_fee()
    assert fee.max_fee_per_gas == 22 * GWEI
    assert fee.max_priority_fee_per_gas == 2 * GWEI


def test_ceiling_exceeded_raises(clock):
    registry = CollectorRegistry()
    config = make_config(gas={"max_gas_price_gwei": 15})
    optimizer = GasOptimizer(config, FakeFeeSource(), clock, PipelineMetrics(registry))

    with pytest.raises(FeeCeilingExceededError) as exc_info:
        optimizer.quote_fee()

    assert exc_info.value.ceiling_wei == 15 * GWEI
    assert exc_info.value.required_wei == 20 * GWEI + GWEI // 10
    assert registry.get_sample_value("flash_arbitrage_fee_ceiling_exceeded_total") == 1


def test_per_call_ceiling_override(config, fee_source, clock):
    with pytest.raises(FeeCeilingExceededError):
        GasOptimizer(config, fee_source, clock).quote_fee(ceiling_wei=10 * GWEI)


def test_unknown_strategy(config, fee_source, clock):
    with pytest.raises(ConfigurationError, match="Unknown gas strategy"):
        GasOptimizer(config, fee_source, clock).quote_fee("aggressive")


def test_estimate_cached_until_refresh(config, fee_source, clock):
    optimizer = GasOptimizer(config, fee_source, clock)
    optimizer.quote_fee()
    optimizer.quote_fee()
    assert fee_source.reads == 1

    clock.advance(config.gas.refresh_seconds)
    optimizer.quote_fee()
    assert fee_source.reads == 2


@settings(deadline=None)
@given(
    base_gwei=st.integers(min_value=1, max_value=400),
    ceiling_gwei=st.integers(min_value=1, max_value=500),
    strategy=st.sampled_from(["fixed", "base_fee_multiplied", "dynamic"]),
)
def test_fee_never_exceeds_ceiling(base_gwei, ceiling_gwei, strategy):
    config = make_config(
        gas={"strategy": strategy, "max_gas_price_gwei": ceiling_gwei, "fixed_gas_price_gwei": 300}
    )
    optimizer = GasOptimizer(config, FakeFeeSource(base_fee=base_gwei * GWEI), ManualClock())
    try:
        fee = optimizer.quote_fee()
    except FeeCeilingExceededError as e:
        assert e.required_wei > e.ceiling_wei
        assert e.ceiling_wei <= ceiling_gwei * GWEI
        return
    assert fee.max_fee_per_gas <= ceiling_gwei * GWEI
    assert fee.max_priority_fee_per_gas <= fee.max_fee_per_gas
