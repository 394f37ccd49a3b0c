"""
Decision-and-execution pipeline.

One scan cycle runs: pool cache snapshot -> scanner -> strategy engine ->
security validator -> gas optimizer -> transaction builder -> submission
channel, and feeds the outcome back to the strategy engine. Cycles never
overlap, so at most one request is ever in flight.
"""

import asyncio
from typing import AsyncIterator, Optional

from web3 import Web3
from web3.exceptions import Web3Exception

from .builder import TransactionBuilder
from .config_loader import BotConfig
from .exceptions import (
    ConfigurationError,
    FeeCeilingExceededError,
    NoViableCandidateError,
    SubmissionRejectedError,
    ValidationFailedError,
)
from .gas import GasOptimizer, Web3FeeDataSource
from .metrics import PipelineMetrics
from .pool_cache import PoolStateCache
from .scanner import OpportunityScanner
from .strategy import StrategyEngine
from .submission import (
    PrivateRelayChannel,
    PublicMempoolChannel,
    SimulatedChannel,
    SubmissionChannel,
    TransactionSigner,
)
from .types import ExecutionOutcome, FeeParams, OutcomeStatus
from .utils import get_logger
from .validator import SecurityValidator, collect_price_sources
from .venues import Web3PoolSource

logger = get_logger(__name__)

FEE_DATA_ERRORS = (OSError, ValueError, Web3Exception)


class ArbitragePipeline:
    def __init__(
        self,
        config: BotConfig,
        cache: PoolStateCache,
        scanner: OpportunityScanner,
        engine: StrategyEngine,
        validator: SecurityValidator,
        gas: GasOptimizer,
        builder: TransactionBuilder,
        channel: SubmissionChannel,
        simulator: Optional[SimulatedChannel] = None,
        metrics: Optional[PipelineMetrics] = None,
    ):
        self.config = config
        self.cache = cache
        self.scanner = scanner
        self.engine = engine
        self.validator = validator
        self.gas = gas
        self.builder = builder
        self.channel = channel
        self.simulator = simulator
        self.metrics = metrics
        self._cycle_lock = asyncio.Lock()
        self.cycles_run = 0
        self.cycles_failed = 0

    async def run_cycle(self, block_number: Optional[int] = None) -> ExecutionOutcome:
        """
        Run one full cycle. If `block_number` is given the cache is
        refreshed for that block first.
        """
        async with self._cycle_lock:
            self.cycles_run += 1
            if block_number is not None:
                await self.cache.refresh_all(block_number)
            outcome = await self._decide_and_execute()
            if self.metrics:
                token = outcome.request.asset.symbol if outcome.request else None
                self.metrics.record_outcome(outcome.status.value, token, outcome.realized_profit)
            return outcome

    async def _decide_and_execute(self) -> ExecutionOutcome:
        snapshot = self.cache.snapshot()
        evaluation = await self.engine.run_cycle(self.scanner, snapshot)
        if evaluation is None:
            return ExecutionOutcome.not_submitted("no viable candidate")

        candidate = evaluation.candidate
        try:
            validated = self.validator.validate(
                evaluation, collect_price_sources(snapshot, evaluation)
            )
        except ValidationFailedError as e:
            self.engine.record_rejection(candidate, e.kind.value)
            return ExecutionOutcome.not_submitted(e.kind.value)

        try:
            fee = await self._quote_fee()
        except FeeCeilingExceededError as e:
            self.engine.record_rejection(candidate, "fee ceiling")
            return ExecutionOutcome.not_submitted(f"FeeCeilingExceeded: {e}")
        except FEE_DATA_ERRORS as e:
            logger.warning(f"Fee data unavailable for {candidate.route_key}: {e}")
            return ExecutionOutcome.not_submitted(f"FeeDataUnavailable: {e}")

        try:
            request = self.builder.build(validated, fee)
        except NoViableCandidateError as e:
            return ExecutionOutcome.not_submitted(str(e))

        if self.simulator is not None and self.simulator is not self.channel:
            simulated = await (await self.simulator.submit(request)).result()
            if simulated.status is not OutcomeStatus.COMMITTED:
                outcome = ExecutionOutcome.not_submitted(
                    f"simulation reverted: {simulated.reason}", request
                )
                self.engine.record_outcome(outcome)
                return outcome

        try:
            pending = await self.channel.submit(request)
        except SubmissionRejectedError as e:
            logger.warning(f"Submission rejected on {e.channel}: {e}")
            outcome = ExecutionOutcome.not_submitted(f"SubmissionRejected: {e}", request)
            self.engine.record_outcome(outcome)
            return outcome

        if self.metrics:
            self.metrics.record_submission(self.channel.name)
        log_data = {
            "request_id": request.request_id,
            "channel": self.channel.name,
            "route": candidate.route_key,
            "tx_hash": pending.tx_hash,
        }
        logger.info(f"SUBMITTED: {log_data}")

        outcome = await pending.result()
        self.engine.record_outcome(outcome)

        log_data = {
            "request_id": request.request_id,
            "status": outcome.status.value,
            "realized_profit": str(outcome.realized_profit),
            "reason": outcome.reason,
            "tx_hash": outcome.tx_hash,
        }
        if outcome.status is OutcomeStatus.COMMITTED:
            logger.info(f"OUTCOME: {log_data}")
        else:
            logger.warning(f"OUTCOME: {log_data}")
        return outcome

    async def _quote_fee(self) -> FeeParams:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.gas.quote_fee)

    async def run_forever(self, blocks: AsyncIterator[int], max_cycles: Optional[int] = None) -> None:
        """
        Run one cycle per new block until the block stream ends.

        A cycle that raises is logged and counted; the next block still runs.
        """
        async for block_number in blocks:
            try:
                await self.run_cycle(block_number)
            except Exception as e:
                self.cycles_failed += 1
                logger.error(f"Scan cycle failed at block {block_number}: {e}", exc_info=True)
            if max_cycles is not None and self.cycles_run >= max_cycles:
                return


class BlockPoller:
    """Yields each new block number, polling the node at a fixed interval."""

    def __init__(self, web3: Web3, interval_s: float = 1.0):
        self.web3 = web3
        self.interval_s = interval_s
        self._last: Optional[int] = None

    def __aiter__(self):
        return self._poll()

    async def _poll(self):
        loop = asyncio.get_running_loop()
        while True:
            try:
                block_number = await loop.run_in_executor(None, lambda: self.web3.eth.block_number)
            except (OSError, Web3Exception) as e:
                logger.warning(f"Block number read failed: {e}")
                await asyncio.sleep(self.interval_s)
                continue
            if self._last is None or block_number > self._last:
                self._last = block_number
                yield block_number
            await asyncio.sleep(self.interval_s)


def build_pipeline(
    config: BotConfig, web3: Web3, metrics: Optional[PipelineMetrics] = None
) -> ArbitragePipeline:
    """
    Wire every component from one frozen config.

    dry_run or test_mode submit to the simulated channel; otherwise the
    private relay is used when enabled and the public mempool if not.

    Raises:
        ConfigurationError: If live submission lacks a key or executor address
    """
    source = Web3PoolSource.from_config(web3, config)
    cache = PoolStateCache(config, source, metrics)
    simulated_sender = config.network.wallet_address or "0x" + "11" * 20

    simulator = None
    if config.dry_run or config.test_mode:
        channel: SubmissionChannel = SimulatedChannel(config, cache.snapshot, simulated_sender)
    else:
        if not config.network.private_key or not config.executor_address:
            raise ConfigurationError(
                "Live submission needs network.private_key and executor_address"
            )
        signer = TransactionSigner(
            config.network.private_key, config.executor_address, config.network.chain_id
        )
        timeout = config.security.transaction_timeout_s
        if config.relay.enabled:
            channel = PrivateRelayChannel(web3, signer, config.relay.url, timeout)
        else:
            channel = PublicMempoolChannel(web3, signer, timeout)
        if config.security.simulate_transactions:
            simulator = SimulatedChannel(config, cache.snapshot, signer.address)

    return ArbitragePipeline(
        config=config,
        cache=cache,
        scanner=OpportunityScanner(config),
        engine=StrategyEngine(config, quoter=source, metrics=metrics),
        validator=SecurityValidator(config, metrics),
        gas=GasOptimizer(config, Web3FeeDataSource(web3), metrics=metrics),
        builder=TransactionBuilder(config),
        channel=channel,
        simulator=simulator,
        metrics=metrics,
    )
