"""
Flash-loan AMM arbitrage.

Finds price discrepancies between AMM venues on one chain, prices every
closed token cycle from a single pool snapshot, and executes the best
profitable one inside a flash loan that is repaid in the same execution
unit or not taken at all.
"""

PROJECT_NAME = "flash-arbitrage"
from flash_arbitrage.version import __version__ as VERSION

from flash_arbitrage.config_loader import BotConfig, load_bot_config
from flash_arbitrage.exceptions import (
    ConfigurationError,
    ExecutionRevertedError,
    FeeCeilingExceededError,
    FlashArbitrageError,
    NoViableCandidateError,
    StaleDataError,
    SubmissionRejectedError,
    ValidationFailedError,
)
from flash_arbitrage.pipeline import ArbitragePipeline, build_pipeline
from flash_arbitrage.types import (
    Candidate,
    Evaluation,
    ExecutionOutcome,
    ExecutionRequest,
    OutcomeStatus,
    PoolSnapshot,
    PoolState,
    Token,
    Venue,
    VenueKind,
)

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BotConfig",
    "load_bot_config",
    "ArbitragePipeline",
    "build_pipeline",
    "Candidate",
    "Evaluation",
    "ExecutionOutcome",
    "ExecutionRequest",
    "OutcomeStatus",
    "PoolSnapshot",
    "PoolState",
    "Token",
    "Venue",
    "VenueKind",
    "FlashArbitrageError",
    "ConfigurationError",
    "StaleDataError",
    "NoViableCandidateError",
    "ValidationFailedError",
    "FeeCeilingExceededError",
    "SubmissionRejectedError",
    "ExecutionRevertedError",
]
