"""
Strategy engine.

Prices candidate cycles hop by hop, ranks the completed evaluations and
selects at most one per scan cycle. Evaluations run on a fixed pool of
worker tasks that pull from the scanner's lazy candidate stream; each
evaluation has its own timeout and the whole sweep shares one deadline.
"""

import asyncio
import time
from collections import deque
from decimal import Decimal
from typing import Deque, Dict, Iterable, Iterator, List, Optional, Tuple

from .amm import (
    constant_product_impact,
    constant_product_out,
    rate_impact,
    stable_swap_out,
)
from .config_loader import BotConfig
from .exceptions import EvaluationTimeoutError
from .interfaces import Clock, StableSwapQuoter, SystemClock
from .metrics import PipelineMetrics
from .scanner import OpportunityScanner
from .types import (
    Candidate,
    CycleState,
    Evaluation,
    ExecutionOutcome,
    HopQuote,
    OutcomeStatus,
    PoolKey,
    PoolSnapshot,
    Token,
    Venue,
    VenueKind,
)
from .utils import get_logger

logger = get_logger(__name__)

PROBE_FRACTION = Decimal("0.001")


class HopPricer:
    """
    Expected output of a single hop.

    Constant-product venues are priced from snapshot reserves. Stable-swap
    venues ask the quoter for the best rate when one is configured, and fall
    back to the snapshot rate otherwise.
    """

    def __init__(self, quoter: Optional[StableSwapQuoter] = None):
        self.quoter = quoter

    async def quote(
        self,
        snapshot: PoolSnapshot,
        token_in: Token,
        token_out: Token,
        venue: Venue,
        amount_in: Decimal,
    ) -> HopQuote:
        state = snapshot.get(PoolKey.of(venue.name, token_in.symbol, token_out.symbol))
        if state is None:
            raise LookupError(
                f"No pool for {token_in.symbol}/{token_out.symbol} on {venue.name}"
            )

        if venue.kind is VenueKind.CONSTANT_PRODUCT:
            reserve_in, reserve_out = state.reserves_for(token_in.symbol)
            out = constant_product_out(amount_in, reserve_in, reserve_out, state.fee)
            impact = constant_product_impact(amount_in, reserve_in, reserve_out, state.fee)
            return HopQuote(token_in, token_out, venue, amount_in, out, impact, state.address)

        if venue.kind is VenueKind.STABLE_SWAP:
            if self.quoter is None:
                _, reserve_out = state.reserves_for(token_in.symbol)
                out = stable_swap_out(
                    amount_in, state.mid_price(token_in.symbol), state.fee, reserve_out
                )
                return HopQuote(token_in, token_out, venue, amount_in, out, Decimal(0), state.address)

            pool, out = await self.quoter.best_rate(venue, token_in, token_out, amount_in)
            probe_in = amount_in * PROBE_FRACTION
            _, probe_out = await self.quoter.best_rate(venue, token_in, token_out, probe_in)
            impact = rate_impact(out, amount_in, probe_out, probe_in)
            return HopQuote(token_in, token_out, venue, amount_in, out, impact, pool)

        raise AssertionError(f"Unhandled venue kind {venue.kind!r}")


class RouteCooldowns:
    """
    Per-route cool-down with exponential backoff.

    A reverted or timed-out execution doubles the route's pause up to
    `backoff_max_seconds`; a commit clears it.
    """

    def __init__(self, base_seconds: float, max_seconds: float, clock: Optional[Clock] = None):
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self.clock = clock or SystemClock()
        self._until: Dict[str, float] = {}
        self._failures: Dict[str, int] = {}

    def penalize(self, route_key: str, escalate: bool = True) -> float:
        """Put a route into cool-down and return the pause in seconds."""
        if escalate:
            self._failures[route_key] = self._failures.get(route_key, 0) + 1
        failures = max(1, self._failures.get(route_key, 0))
        pause = min(self.base_seconds * (2 ** (failures - 1)), self.max_seconds)
        self._until[route_key] = self.clock.monotonic() + pause
        logger.info(f"Route {route_key} cooling down for {pause:.0f}s (failures={failures})")
        return pause

    def clear(self, route_key: str) -> None:
        self._until.pop(route_key, None)
        self._failures.pop(route_key, None)

    def is_cooling(self, route_key: str) -> bool:
        until = self._until.get(route_key)
        if until is None:
            return False
        if self.clock.monotonic() >= until:
            del self._until[route_key]
            return False
        return True

    def remaining(self, route_key: str) -> float:
        until = self._until.get(route_key)
        if until is None:
            return 0.0
        return max(0.0, until - self.clock.monotonic())


class StrategyEngine:
    """
    Evaluates candidates under a bounded worker pool and picks the best one.

    Ranking: highest net profit per unit of principal (or highest value in
    `profit_numeraire` when one is configured), then fewest hops, then the
    smallest slippage allowance. A winner is selected only if its
    slippage-adjusted value reaches `min_profit_threshold`.
    """

    def __init__(
        self,
        config: BotConfig,
        quoter: Optional[StableSwapQuoter] = None,
        metrics: Optional[PipelineMetrics] = None,
        clock: Optional[Clock] = None,
    ):
        arb = config.arbitrage
        self.max_concurrent = arb.max_concurrent_evaluations
        self.evaluation_timeout = arb.evaluation_timeout_s
        self.cycle_deadline = arb.cycle_deadline_s
        self.min_profit_threshold = arb.min_profit_threshold
        self.profit_numeraire = arb.profit_numeraire
        self.slippage_tolerance = arb.slippage_tolerance
        self.loan_fee_rate = config.flash_loan.fee

        max_borrow = config.flash_loan.max_borrow_amount
        self.principals: Dict[str, Decimal] = {
            symbol: min(amount, max_borrow) if max_borrow is not None else amount
            for symbol, amount in arb.principal.items()
        }

        self.pricer = HopPricer(quoter)
        self.metrics = metrics
        self.cooldowns = RouteCooldowns(arb.cooldown_seconds, arb.backoff_max_seconds, clock)

        self.state = CycleState.IDLE
        self.transitions: Deque[Tuple[CycleState, CycleState]] = deque(maxlen=100)
        self.peak_in_flight = 0
        self._in_flight = 0
        self.last_cycle_stats: Dict[str, int] = {}

    def _transition(self, new_state: CycleState) -> None:
        self.transitions.append((self.state, new_state))
        logger.debug(f"Cycle state {self.state.value} -> {new_state.value}")
        self.state = new_state

    async def evaluate(self, candidate: Candidate, snapshot: PoolSnapshot) -> Evaluation:
        """Price one candidate hop by hop from its configured principal."""
        funding = candidate.funding_token
        principal = self.principals.get(funding.symbol)
        if principal is None:
            raise LookupError(f"No principal configured for {funding.symbol}")

        amount = principal
        hops: List[HopQuote] = []
        for token_in, token_out, venue in candidate.hops():
            hop = await self.pricer.quote(snapshot, token_in, token_out, venue, amount)
            hops.append(hop)
            amount = hop.amount_out

        return Evaluation(
            candidate=candidate,
            principal=principal,
            hops=tuple(hops),
            loan_fee=principal * self.loan_fee_rate,
            slippage_tolerance=self.slippage_tolerance,
            numeraire=self.profit_numeraire,
            numeraire_price=self.numeraire_price(funding, snapshot),
        )

    def numeraire_price(self, funding: Token, snapshot: PoolSnapshot) -> Decimal:
        """
        Numeraire per unit of the funding token.

        The lowest mid price among the snapshot's direct pools for the pair.
        """
        numeraire = self.profit_numeraire
        if numeraire is None or numeraire == funding.symbol:
            return Decimal(1)
        pools = snapshot.for_pair(funding.symbol, numeraire)
        if not pools:
            raise LookupError(f"No pool prices {funding.symbol} in {numeraire}")
        return min(state.mid_price(funding.symbol) for state in pools)

    async def _evaluate_within(self, candidate: Candidate, snapshot: PoolSnapshot) -> Evaluation:
        try:
            return await asyncio.wait_for(
                self.evaluate(candidate, snapshot), timeout=self.evaluation_timeout
            )
        except asyncio.TimeoutError as e:
            raise EvaluationTimeoutError(
                f"Evaluation of {candidate.route_key} exceeded {self.evaluation_timeout}s",
                candidate=candidate,
                details={"timeout_s": self.evaluation_timeout},
            ) from e

    async def evaluate_all(
        self,
        candidates: Iterable[Candidate],
        snapshot: PoolSnapshot,
        budget: Optional[float] = None,
    ) -> Optional[Evaluation]:
        """
        Evaluate candidates and return the selected one, or None.

        At most `max_concurrent_evaluations` evaluations run at once. A
        candidate exceeding `evaluation_timeout` is dropped for this cycle.
        If the sweep is still running when `budget` seconds (default: the
        configured cycle deadline) have passed, every outstanding
        evaluation is cancelled and the cycle yields no opportunity.
        """
        deadline = self.cycle_deadline if budget is None else budget
        stream: Iterator[Candidate] = iter(candidates)
        completed: List[Evaluation] = []
        stats = {"evaluated": 0, "timed_out": 0, "failed": 0, "cooling": 0, "cancelled": 0}
        stop = asyncio.Event()

        async def worker() -> None:
            while not stop.is_set():
                candidate = next(stream, None)
                if candidate is None:
                    return
                if self.cooldowns.is_cooling(candidate.route_key):
                    stats["cooling"] += 1
                    continue

                self._in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
                if self.metrics:
                    self.metrics.evaluations_in_flight.inc()
                try:
                    evaluation = await self._evaluate_within(candidate, snapshot)
                except EvaluationTimeoutError as e:
                    stats["timed_out"] += 1
                    self._record("timed_out")
                    logger.debug(str(e))
                    continue
                except (ValueError, ArithmeticError, LookupError) as e:
                    stats["failed"] += 1
                    self._record("failed")
                    logger.debug(f"Evaluation of {candidate.route_key} failed: {e}")
                    continue
                finally:
                    self._in_flight -= 1
                    if self.metrics:
                        self.metrics.evaluations_in_flight.dec()

                stats["evaluated"] += 1
                self._record("completed")
                completed.append(evaluation)

        workers = [asyncio.create_task(worker()) for _ in range(self.max_concurrent)]
        done, pending = await asyncio.wait(workers, timeout=deadline)

        if pending:
            stop.set()
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            stats["cancelled"] = len(pending)
            self._record("cancelled", len(pending))
            self.last_cycle_stats = stats
            logger.info(f"Cycle deadline of {deadline:.3f}s hit, cancelled {len(pending)} workers")
            return None

        for task in done:
            error = task.exception()
            if error is not None:
                raise error

        self.last_cycle_stats = stats
        return self.select(completed)

    def select(self, evaluations: List[Evaluation]) -> Optional[Evaluation]:
        """Apply ranking and the profit threshold."""
        if not evaluations:
            return None
        best = min(evaluations, key=self._rank)
        if best.net_value_after_slippage < self.min_profit_threshold:
            log_data = best.to_log_dict()
            log_data["threshold"] = str(self.min_profit_threshold)
            logger.info(f"NO_OPPORTUNITY: {log_data}")
            return None
        return best

    @staticmethod
    def _rank(evaluation: Evaluation) -> Tuple[Decimal, int, Decimal]:
        return evaluation.ranking_key()

    async def run_cycle(
        self, scanner: OpportunityScanner, snapshot: PoolSnapshot
    ) -> Optional[Evaluation]:
        """
        One scan cycle: Idle -> Scanning -> Evaluating -> Selected | NoOpportunity -> Idle.
        """
        started = time.monotonic()
        self._transition(CycleState.SCANNING)
        candidates = self._counted(scanner.scan(snapshot))

        self._transition(CycleState.EVALUATING)
        try:
            selected = await self.evaluate_all(candidates, snapshot)
        except BaseException:
            self._transition(CycleState.IDLE)
            raise

        if selected is None:
            self._transition(CycleState.NO_OPPORTUNITY)
        else:
            self._transition(CycleState.SELECTED)
            logger.info(f"OPPORTUNITY_SELECTED: {selected.to_log_dict()}")

        result = self.state.value
        self._transition(CycleState.IDLE)
        if self.metrics:
            self.metrics.record_cycle(result, time.monotonic() - started)
        return selected

    def record_outcome(self, outcome: ExecutionOutcome) -> None:
        """Feed an execution result back into route cool-downs."""
        if outcome.request is None:
            return
        route = outcome.request.evaluation.candidate.route_key
        if outcome.status is OutcomeStatus.COMMITTED:
            self.cooldowns.clear(route)
        elif outcome.status in (OutcomeStatus.REVERTED, OutcomeStatus.TIMED_OUT):
            self.cooldowns.penalize(route, escalate=True)
        elif outcome.status is OutcomeStatus.NOT_SUBMITTED:
            self.cooldowns.penalize(route, escalate=False)

    def record_rejection(self, candidate: Candidate, reason: str) -> None:
        """A selected candidate was not submitted; pause it without escalating."""
        logger.debug(f"Route {candidate.route_key} rejected before submission: {reason}")
        self.cooldowns.penalize(candidate.route_key, escalate=False)

    def _counted(self, candidates: Iterator[Candidate]) -> Iterator[Candidate]:
        for candidate in candidates:
            if self.metrics:
                self.metrics.record_candidates(1)
            yield candidate

    def _record(self, result: str, count: int = 1) -> None:
        if self.metrics:
            for _ in range(count):
                self.metrics.record_evaluation(result)
