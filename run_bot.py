#!/usr/bin/env python3
"""
Flash-loan arbitrage bot entry point.

Loads and validates the configuration once, wires the pipeline and runs one
scan cycle per new block.

Usage:
    python run_bot.py --config config/bot.example.yaml
    python run_bot.py --config config/bot.example.yaml --once
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from web3 import Web3

import logging_config
from flash_arbitrage.config_loader import load_bot_config
from flash_arbitrage.exceptions import ConfigurationError
from flash_arbitrage.metrics import PipelineMetrics
from flash_arbitrage.pipeline import BlockPoller, build_pipeline

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Flash-loan AMM arbitrage bot")
    parser.add_argument("--config", "-c", required=True, help="YAML configuration file")
    parser.add_argument("--once", action="store_true", help="Run a single scan cycle and exit")
    parser.add_argument("--max-cycles", type=int, default=None, help="Stop after N cycles")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


async def run(args) -> int:
    config = load_bot_config(args.config)
    if args.debug:
        logging_config.setup_debug()
    else:
        logging_config.setup(config.observability.log_level)

    web3 = Web3(Web3.HTTPProvider(config.network.rpc_url))
    if not web3.is_connected():
        logger.error(f"Cannot reach RPC endpoint {config.network.rpc_url}")
        return 1

    metrics = PipelineMetrics() if config.observability.metrics_enabled else None
    if metrics:
        await metrics.start_server(
            port=config.observability.metrics_port, host=config.observability.metrics_host
        )

    pipeline = build_pipeline(config, web3, metrics)
    mode = "dry-run" if config.dry_run or config.test_mode else pipeline.channel.name
    logger.info(
        f"Starting: chain={config.network.chain_id} venues="
        f"{[v.name for v in config.enabled_venues]} mode={mode}"
    )

    try:
        if args.once:
            loop = asyncio.get_running_loop()
            block_number = await loop.run_in_executor(None, lambda: web3.eth.block_number)
            outcome = await pipeline.run_cycle(block_number)
            logger.info(f"Cycle finished: {outcome.status.value} ({outcome.reason})")
        else:
            poller = BlockPoller(web3, config.network.poll_interval_s)
            await pipeline.run_forever(poller, max_cycles=args.max_cycles)
    finally:
        if metrics:
            await metrics.stop_server()
    return 0


def main(argv=None) -> int:
    load_dotenv()
    logging_config.setup()
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0


if __name__ == "__main__":
    sys.exit(main())
