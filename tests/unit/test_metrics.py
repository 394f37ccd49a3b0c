"""Tests for Prometheus metrics collection and exposure."""

import json
from decimal import Decimal

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from flash_arbitrage.metrics import PipelineMetrics


@pytest.fixture
def metrics():
    return PipelineMetrics(CollectorRegistry())


def sample(metrics, name, **labels):
    return metrics.registry.get_sample_value(name, labels or None)


def test_cycle_and_candidate_counters(metrics):
    metrics.record_cycle("selected", 0.12)
    metrics.record_cycle("selected", 0.08)
    metrics.record_cycle("no_opportunity", 0.01)
    metrics.record_candidates(6)

    assert sample(metrics, "flash_arbitrage_cycles_total", result="selected") == 2
    assert sample(metrics, "flash_arbitrage_cycles_total", result="no_opportunity") == 1
    assert sample(metrics, "flash_arbitrage_cycle_duration_seconds_count") == 3
    assert sample(metrics, "flash_arbitrage_candidates_scanned_total") == 6


def test_decision_counters(metrics):
    metrics.record_evaluation("timed_out")
    metrics.record_validation_failure("PriceDeviation")
    metrics.record_fee_ceiling_exceeded()
    metrics.record_submission("private")

    assert sample(metrics, "flash_arbitrage_evaluations_total", result="timed_out") == 1
    assert sample(metrics, "flash_arbitrage_validation_failures_total", kind="PriceDeviation") == 1
    assert sample(metrics, "flash_arbitrage_fee_ceiling_exceeded_total") == 1
    assert sample(metrics, "flash_arbitrage_submissions_total", channel="private") == 1


def test_outcome_profit_only_observed_with_token(metrics):
    metrics.record_outcome("committed", "WETH", Decimal("0.0028"))
    metrics.record_outcome("not_submitted")

    assert sample(metrics, "flash_arbitrage_outcomes_total", status="committed") == 1
    assert sample(metrics, "flash_arbitrage_outcomes_total", status="not_submitted") == 1
    assert sample(metrics, "flash_arbitrage_realized_profit_count", token="WETH") == 1
    assert sample(metrics, "flash_arbitrage_realized_profit_sum", token="WETH") == pytest.approx(0.0028)


def test_cache_health(metrics):
    metrics.record_refresh_failure("sushiswap", 1)
    metrics.record_refresh_failure("sushiswap", 2)
    assert sample(metrics, "flash_arbitrage_cache_refresh_failures_total", venue="sushiswap") == 2
    assert sample(metrics, "flash_arbitrage_degraded_sources") == 2

    metrics.set_degraded_sources(0)
    assert sample(metrics, "flash_arbitrage_degraded_sources") == 0


def test_separate_registries_do_not_collide():
    first = PipelineMetrics(CollectorRegistry())
    second = PipelineMetrics(CollectorRegistry())
    first.record_submission("public")

    assert sample(second, "flash_arbitrage_submissions_total", channel="public") is None


@pytest.mark.asyncio
async def test_metrics_endpoint_serves_exposition_format(metrics):
    metrics.record_outcome("reverted")

    response = await metrics._metrics_handler(None)

    assert response.content_type == "text/plain"
    assert 'flash_arbitrage_outcomes_total{status="reverted"} 1.0' in response.text
    assert response.text == generate_latest(metrics.registry).decode("utf-8")


@pytest.mark.asyncio
async def test_health_endpoint(metrics):
    response = await metrics._health_handler(None)
    assert json.loads(response.text)["status"] == "healthy"
