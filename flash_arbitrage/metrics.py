"""
Prometheus metrics for the flash arbitrage pipeline.

Exposes scan cycle, evaluation, validation, submission and outcome counters
on an aiohttp `/metrics` endpoint alongside a `/health` probe.
"""

import logging
import threading
from decimal import Decimal
from typing import Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class PipelineMetrics:
    """
    Metrics collection and exposure for the pipeline

    Provides Prometheus-compatible metrics for:
    - Scan cycles and their result
    - Candidate evaluations and the worker pool
    - Security validation failures by kind
    - Submissions and execution outcomes
    - Pool cache health
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

        self._lock = threading.RLock()

    def _initialize_metrics(self):
        # === CYCLES ===
        self.cycles_total = Counter(
            "flash_arbitrage_cycles_total",
            "Scan cycles by result",
            ["result"],
            registry=self.registry,
        )
        self.cycle_duration_seconds = Histogram(
            "flash_arbitrage_cycle_duration_seconds",
            "Wall time of one scan cycle from snapshot to decision",
            buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0],
            registry=self.registry,
        )
        self.candidates_scanned_total = Counter(
            "flash_arbitrage_candidates_scanned_total",
            "Candidate cycles produced by the scanner",
            registry=self.registry,
        )

        # === EVALUATIONS ===
        self.evaluations_total = Counter(
            "flash_arbitrage_evaluations_total",
            "Candidate evaluations by result",
            ["result"],
            registry=self.registry,
        )
        self.evaluations_in_flight = Gauge(
            "flash_arbitrage_evaluations_in_flight",
            "Evaluations currently holding a worker slot",
            registry=self.registry,
        )

        # === DECISIONS ===
        self.validation_failures_total = Counter(
            "flash_arbitrage_validation_failures_total",
            "Evaluations rejected by the security validator",
            ["kind"],
            registry=self.registry,
        )
        self.fee_ceiling_exceeded_total = Counter(
            "flash_arbitrage_fee_ceiling_exceeded_total",
            "Requests abandoned because the viable fee was above the ceiling",
            registry=self.registry,
        )

        # === EXECUTION ===
        self.submissions_total = Counter(
            "flash_arbitrage_submissions_total",
            "Signed requests handed to a submission channel",
            ["channel"],
            registry=self.registry,
        )
        self.outcomes_total = Counter(
            "flash_arbitrage_outcomes_total",
            "Execution outcomes by status",
            ["status"],
            registry=self.registry,
        )
        self.realized_profit = Histogram(
            "flash_arbitrage_realized_profit",
            "Realized profit of committed executions in funding-token units",
            ["token"],
            buckets=[0.0001, 0.001, 0.01, 0.1, 1, 10, 100, 1000],
            registry=self.registry,
        )

        # === CACHE ===
        self.cache_refresh_failures_total = Counter(
            "flash_arbitrage_cache_refresh_failures_total",
            "Pool refreshes that failed and kept the prior state",
            ["venue"],
            registry=self.registry,
        )
        self.degraded_sources = Gauge(
            "flash_arbitrage_degraded_sources",
            "Pools whose latest refresh failed",
            registry=self.registry,
        )

    def record_cycle(self, result: str, duration_seconds: float):
        with self._lock:
            self.cycles_total.labels(result=result).inc()
            self.cycle_duration_seconds.observe(duration_seconds)

    def record_candidates(self, count: int):
        with self._lock:
            self.candidates_scanned_total.inc(count)

    def record_evaluation(self, result: str):
        with self._lock:
            self.evaluations_total.labels(result=result).inc()

    def record_validation_failure(self, kind: str):
        with self._lock:
            self.validation_failures_total.labels(kind=kind).inc()

    def record_fee_ceiling_exceeded(self):
        with self._lock:
            self.fee_ceiling_exceeded_total.inc()

    def record_submission(self, channel: str):
        with self._lock:
            self.submissions_total.labels(channel=channel).inc()

    def record_outcome(self, status: str, token: Optional[str] = None,
                       realized_profit: Optional[Decimal] = None):
        with self._lock:
            self.outcomes_total.labels(status=status).inc()
            if token and realized_profit is not None:
                self.realized_profit.labels(token=token).observe(float(realized_profit))

    def record_refresh_failure(self, venue: str, degraded_count: int):
        with self._lock:
            self.cache_refresh_failures_total.labels(venue=venue).inc()
            self.degraded_sources.set(degraded_count)

    def set_degraded_sources(self, count: int):
        with self._lock:
            self.degraded_sources.set(count)

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ) -> bool:
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        metrics_output = generate_latest(self.registry)
        # aiohttp rejects a charset inside content_type
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        return web.Response(
            text='{"status": "healthy", "service": "flash_arbitrage_metrics"}',
            content_type="application/json",
        )
