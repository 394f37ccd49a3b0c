"""
Common helpers for the flash arbitrage pipeline.

Logger factory plus basis point and percentage conversion.
"""

import logging
from decimal import Decimal
from typing import Optional, Union


def bps_to_decimal(bps: Union[int, Decimal]) -> Decimal:
    """Convert basis points to a fraction (100 bps = 0.01)."""
    return Decimal(bps) / Decimal(10000)


def decimal_to_bps(value: Decimal) -> int:
    """Convert a fraction to whole basis points, rounding down."""
    return int(value * Decimal(10000))


def pct_to_decimal(pct: Union[float, Decimal]) -> Decimal:
    """Convert a percentage (0.5 = 0.5%) to a fraction."""
    return Decimal(str(pct)) / Decimal(100)


def get_logger(name: str, level: Optional[Union[str, int]] = None) -> logging.Logger:
    """
    Get a module logger.

    No handler is attached and the level stays NOTSET unless `level` is
    given, so records propagate to whatever `logging_config.setup`
    installed on the root and the `flash_arbitrage` package logger.

    Args:
        name: Logger name (typically __name__)
        level: Optional explicit level for this logger only

    Returns:
        The named logger
    """
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger
