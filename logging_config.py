"""
Root logging setup for the bot process.

Usage:
    import logging_config
    logging_config.setup("INFO")
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
DATE_FORMAT = "%H:%M:%S"

# RPC and HTTP clients log every request at INFO or below
CHATTY_LOGGERS = ("web3", "urllib3", "aiohttp.access")


def _as_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup(level=logging.INFO, chatty_level=logging.WARNING):
    """
    Replace root handlers with one stdout handler at `level`.

    `level` may be a name ("DEBUG") or a logging constant. Library
    loggers in CHATTY_LOGGERS are held at `chatty_level`.
    """
    level = _as_level(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)
    for name in ("__main__", "flash_arbitrage"):
        logging.getLogger(name).setLevel(level)


def setup_minimal():
    """Warnings and errors only."""
    setup(logging.WARNING)


def setup_debug():
    """Everything, including web3 request traffic."""
    setup(logging.DEBUG, chatty_level=logging.DEBUG)
