"""
Transaction builder.

Turns a validated evaluation and a fee quote into an ExecutionRequest with
its calldata already encoded. Unvalidated evaluations are refused.
"""

import uuid
from typing import Optional

from .amm import to_raw
from .codec import encode_execute_call, encode_params
from .config_loader import BotConfig
from .exceptions import NoViableCandidateError
from .interfaces import Clock, SystemClock
from .types import ExecutionRequest, FeeParams
from .utils import decimal_to_bps, get_logger
from .validator import ValidatedEvaluation

logger = get_logger(__name__)


class TransactionBuilder:
    def __init__(self, config: BotConfig, clock: Optional[Clock] = None):
        self.slippage_bps = decimal_to_bps(config.arbitrage.slippage_tolerance)
        self.deadline_seconds = config.security.transaction_timeout_s
        self.min_profit_threshold = config.arbitrage.min_profit_threshold
        self.clock = clock or SystemClock()

    def build(self, validated: ValidatedEvaluation, fee: FeeParams) -> ExecutionRequest:
        """
        Raises:
            TypeError: If the evaluation did not come from the security validator
            NoViableCandidateError: If the slippage-adjusted profit is below threshold
        """
        if not isinstance(validated, ValidatedEvaluation):
            raise TypeError(
                f"build() needs a ValidatedEvaluation, got {type(validated).__name__}"
            )
        evaluation = validated.evaluation
        if evaluation.net_value_after_slippage < self.min_profit_threshold:
            raise NoViableCandidateError(
                f"Net value after slippage {evaluation.net_value_after_slippage} "
                f"below threshold {self.min_profit_threshold}"
            )

        candidate = evaluation.candidate
        deadline = int(self.clock.current_timestamp() + self.deadline_seconds)
        params = encode_params(candidate.tokens, candidate.venues, self.slippage_bps, deadline)

        asset = candidate.funding_token
        calldata = encode_execute_call(asset, to_raw(evaluation.principal, asset.decimals), params)

        return ExecutionRequest(
            request_id=uuid.uuid4().hex[:12],
            asset=asset,
            principal=evaluation.principal,
            tokens=candidate.tokens,
            venues=candidate.venues,
            slippage_bps=self.slippage_bps,
            deadline=deadline,
            fee=fee,
            evaluation=evaluation,
            calldata=calldata,
        )
