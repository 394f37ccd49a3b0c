#!/usr/bin/env python3
"""
Configuration validation CLI tool

Validates YAML bot configuration files against the schema and flags
settings that are legal but likely to lose money.
"""

import sys
import argparse
import json
from pathlib import Path
from typing import List, Dict, Any

import yaml
from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from flash_arbitrage.config_schema import BotConfigSchema, validate_config_file


def collect_warnings(config: BotConfigSchema) -> List[str]:
    """Settings that pass validation but deserve a second look."""
    warnings = []
    arb = config.arbitrage

    if arb.slippage_tolerance_pct >= config.security.max_execution_slippage_pct:
        warnings.append(
            f"slippage_tolerance_pct ({arb.slippage_tolerance_pct}) >= "
            f"max_execution_slippage_pct ({config.security.max_execution_slippage_pct})"
        )

    if config.security.min_price_sources < 2:
        warnings.append("min_price_sources < 2 disables cross-venue price checks")

    for symbol, amount in arb.principal.items():
        if arb.profit_numeraire not in (None, symbol):
            continue
        if arb.min_profit_threshold >= amount:
            warnings.append(
                f"min_profit_threshold ({arb.min_profit_threshold}) is not below "
                f"the {symbol} principal ({amount}); nothing will ever be selected"
            )

    enabled = [v for v in config.venues if v.enabled]
    if len(enabled) < config.security.min_price_sources:
        warnings.append(
            f"Only {len(enabled)} enabled venue(s) but min_price_sources is "
            f"{config.security.min_price_sources}; every candidate will be rejected"
        )

    if not config.dry_run and not config.test_mode:
        if not config.executor_address:
            warnings.append("Live mode without executor_address")
        if not config.relay.enabled:
            warnings.append("Live mode submits to the public mempool (relay disabled)")

    if config.gas.strategy == "fixed" and config.gas.fixed_gas_price_gwei:
        if config.gas.fixed_gas_price_gwei > config.gas.max_gas_price_gwei:
            warnings.append("fixed_gas_price_gwei is above max_gas_price_gwei and will be capped")

    return warnings


def validate_single_config(config_path: Path, verbose: bool = False) -> Dict[str, Any]:
    """
    Validate a single configuration file

    Returns:
        Dictionary with validation results
    """
    result = {
        "file": str(config_path),
        "valid": False,
        "errors": [],
        "warnings": [],
        "config": None,
    }

    try:
        config = validate_config_file(config_path)
        result["valid"] = True
        result["config"] = config.model_dump(exclude={"network": {"private_key"}}) if verbose else None
        result["warnings"] = collect_warnings(config)

    except FileNotFoundError as e:
        result["errors"].append(f"File not found: {e}")
    except yaml.YAMLError as e:
        result["errors"].append(f"YAML parsing error: {e}")
    except ValidationError as e:
        result["errors"].append(f"Validation error: {e}")
    except ValueError as e:
        result["errors"].append(f"Invalid file: {e}")

    return result


def find_config_files(directory: Path, pattern: str = "*.yaml") -> List[Path]:
    """YAML files under `directory`; the default pattern also picks up *.yml."""
    if not directory.is_dir():
        return []
    patterns = [pattern, "*.yml"] if pattern == "*.yaml" else [pattern]
    return sorted({p for glob in patterns for p in directory.rglob(glob) if p.is_file()})


def format_result(result: Dict[str, Any], verbose: bool = False) -> List[str]:
    """Report lines for one file."""
    lines = [f"{'OK     ' if result['valid'] else 'INVALID'} {result['file']}"]
    lines += [f"    error: {e}" for e in result["errors"]]
    lines += [f"    warning: {w}" for w in result["warnings"]]

    config = result.get("config")
    if verbose and config:
        arb = config["arbitrage"]
        venues = ", ".join(v["name"] for v in config["venues"] if v.get("enabled", True))
        lines.append(
            f"    chain {config['network']['chain_id']} | venues {venues} | "
            f"base {', '.join(arb['base_tokens'])} | hops <= {arb['max_hops']} | "
            f"min profit {arb['min_profit_threshold']} {arb.get('profit_numeraire') or 'funding'} | gas {config['gas']['strategy']} | "
            f"{'dry run' if config['dry_run'] else 'LIVE'}"
        )
    return lines


def print_validation_results(
    results: List[Dict[str, Any]], verbose: bool = False, json_output: bool = False
):
    if json_output:
        print(json.dumps(results, indent=2, default=str))
        return

    for result in results:
        print("\n".join(format_result(result, verbose)))

    invalid = sum(1 for r in results if not r["valid"])
    warned = sum(1 for r in results if r["warnings"])
    print(f"\n{len(results)} file(s): {len(results) - invalid} valid, {invalid} invalid, {warned} with warnings")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate flash arbitrage bot configuration files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tools/validate_config.py config/bot.example.yaml
  python tools/validate_config.py --directory config/ --verbose
  python tools/validate_config.py --json --strict config/bot.yaml
        """,
    )
    parser.add_argument("config_files", nargs="*", type=Path, help="Configuration file(s) to validate")
    parser.add_argument("--directory", "-d", type=Path, help="Validate every matching file under this directory")
    parser.add_argument("--pattern", "-p", default="*.yaml", help="File pattern for --directory (default: *.yaml)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Print a one-line summary of each valid file")
    parser.add_argument("--json", "-j", action="store_true", help="Print results as JSON")
    parser.add_argument("--strict", "-s", action="store_true", help="Exit 1 if any file is invalid")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    if bool(args.config_files) == bool(args.directory):
        print("Error: give either configuration files or --directory, not both or neither")
        return 1

    config_paths = args.config_files or find_config_files(args.directory, args.pattern)
    if not config_paths:
        print(f"No files matching '{args.pattern}' under {args.directory}")
        return 1

    results = [validate_single_config(p, verbose=args.verbose) for p in config_paths]
    print_validation_results(results, verbose=args.verbose, json_output=args.json)

    if args.strict and any(not r["valid"] for r in results):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
