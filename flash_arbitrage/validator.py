"""
Security validator.

Runs three checks, in order, before any funds move:

1. every pair on the path is quoted by at least `min_price_sources`
   independent venues;
2. the spread between those quotes stays within `max_price_deviation`;
3. the combined price impact of the evaluation stays within
   `max_execution_slippage`.

The first failing check short-circuits with its ValidationKind. Only a
ValidatedEvaluation returned from `validate` can be turned into an
execution request.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

from .config_loader import BotConfig
from .exceptions import ValidationFailedError, ValidationKind
from .metrics import PipelineMetrics
from .types import Evaluation, PoolSnapshot
from .utils import get_logger

logger = get_logger(__name__)

# pair ("A/B", sorted) -> {venue name: units of B per unit of A}
PriceSources = Mapping[str, Mapping[str, Decimal]]


@dataclass(frozen=True)
class ValidatedEvaluation:
    """An evaluation that passed every security check."""

    evaluation: Evaluation
    price_sources: Tuple[Tuple[str, int], ...]
    max_deviation: Decimal


def collect_price_sources(snapshot: PoolSnapshot, evaluation: Evaluation) -> Dict[str, Dict[str, Decimal]]:
    """
    Mid prices for every pair the evaluation trades, one per venue.

    Degraded and unusable pools are not sources.
    """
    sources: Dict[str, Dict[str, Decimal]] = {}
    for token_in, token_out, _ in evaluation.candidate.hops():
        base, quote = sorted((token_in.symbol, token_out.symbol))
        pair = f"{base}/{quote}"
        if pair in sources:
            continue
        sources[pair] = {
            state.venue.name: state.mid_price(base)
            for state in snapshot.for_pair(base, quote)
        }
    return sources


def max_pairwise_deviation(prices) -> Decimal:
    """(max - min) / min over a collection of prices; 0 for fewer than two."""
    values = [p for p in prices if p > 0]
    if len(values) < 2:
        return Decimal(0)
    low, high = min(values), max(values)
    return (high - low) / low


class SecurityValidator:
    def __init__(self, config: BotConfig, metrics: Optional[PipelineMetrics] = None):
        self.min_price_sources = config.security.min_price_sources
        self.max_price_deviation = config.security.max_price_deviation
        self.max_execution_slippage = config.security.max_execution_slippage
        self.metrics = metrics

    def validate(self, evaluation: Evaluation, price_sources_seen: PriceSources) -> ValidatedEvaluation:
        """
        Raises:
            ValidationFailedError: With the kind of the first failing check
        """
        pairs = {
            "/".join(sorted((t_in.symbol, t_out.symbol)))
            for t_in, t_out, _ in evaluation.candidate.hops()
        }

        counts = []
        for pair in sorted(pairs):
            seen = len(price_sources_seen.get(pair, {}))
            counts.append((pair, seen))
            if seen < self.min_price_sources:
                self._fail(
                    ValidationKind.INSUFFICIENT_SOURCES,
                    evaluation,
                    {"pair": pair, "sources": seen, "required": self.min_price_sources},
                )

        worst_deviation = Decimal(0)
        for pair in sorted(pairs):
            deviation = max_pairwise_deviation(price_sources_seen[pair].values())
            worst_deviation = max(worst_deviation, deviation)
            if deviation > self.max_price_deviation:
                self._fail(
                    ValidationKind.PRICE_DEVIATION,
                    evaluation,
                    {"pair": pair, "deviation": f"{deviation:.6f}",
                     "limit": str(self.max_price_deviation)},
                )

        slippage = evaluation.worst_case_slippage
        if slippage > self.max_execution_slippage:
            self._fail(
                ValidationKind.SLIPPAGE_EXCEEDED,
                evaluation,
                {"slippage": f"{slippage:.6f}", "limit": str(self.max_execution_slippage)},
            )

        return ValidatedEvaluation(evaluation, tuple(counts), worst_deviation)

    def _fail(self, kind: ValidationKind, evaluation: Evaluation, details: Dict) -> None:
        log_data = {"kind": kind.value, "route": evaluation.candidate.route_key, **details}
        logger.warning(f"VALIDATION_FAILED: {log_data}")
        if self.metrics:
            self.metrics.record_validation_failure(kind.value)
        raise ValidationFailedError(kind, f"{kind.value}: {details}", details=details)
