"""
Yield Router CLI.

Command-line tools for checking configuration and reading cycle history.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import ConfigError, ConfigLoader
from .core import get_logger
from .core.exceptions import RouterError
from .engine.models import Cycle
from .storage import CycleRepository

logger = get_logger(__name__)


class RouterCLI:
    """
    Command-line interface.

    Example:
        >>> cli = RouterCLI()
        >>> cli.run(["validate-config", "--config", "config/router.yaml"])
        >>> cli.run(["history", "--db", "data/cycles.db", "--limit", "5"])
    """

    def __init__(self, repository: Optional[CycleRepository] = None):
        self._repository = repository
        self._parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="yield-router",
            description="Yield Router tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        validate_parser = subparsers.add_parser(
            "validate-config",
            help="Load and validate a configuration file",
        )
        validate_parser.add_argument("--config", "-c", type=str, required=True, help="Path to YAML config")
        validate_parser.add_argument("--env", "-e", type=str, help="Environment overlay (e.g. production)")
        validate_parser.add_argument("--json", action="store_true", help="Print the masked config as JSON")

        history_parser = subparsers.add_parser("history", help="Show closed deposit cycles")
        self._add_range_arguments(history_parser)

        withdrawals_parser = subparsers.add_parser("withdrawals", help="Show fulfilled withdrawal cycles")
        self._add_range_arguments(withdrawals_parser)

        return parser

    @staticmethod
    def _add_range_arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--db", type=str, help="Path to the cycle database")
        parser.add_argument("--config", "-c", type=str, help="Read the database path from this config")
        parser.add_argument("--start", type=int, default=0, help="First cycle id (default: 0)")
        parser.add_argument("--stop", type=int, help="Cycle id to stop before")
        parser.add_argument("--limit", "-l", type=int, default=20, help="Maximum cycles to show (default: 20)")

    def run(self, args: List[str]) -> int:
        """
        Run a command.

        Returns:
            Exit code (0 for success)
        """
        if not args:
            self._parser.print_help()
            return 0

        parsed = self._parser.parse_args(args)
        if not parsed.command:
            self._parser.print_help()
            return 0

        try:
            handler = getattr(self, f"_cmd_{parsed.command.replace('-', '_')}")
            return handler(parsed)
        except (ConfigError, RouterError) as e:
            print(f"Error: {e}")
            logger.error(f"CLI error: {e}")
            return 1

    # =========================================================================
    # Command Handlers
    # =========================================================================

    def _cmd_validate_config(self, args: argparse.Namespace) -> int:
        config = ConfigLoader().load(args.config, env=args.env)
        masked = config.masked_dict()
        if args.json:
            print(json.dumps(masked, indent=2, default=str))
            return 0

        print(f"\n=== {config.app_name} ({config.environment}) ===")
        print(f"Tokens:              {', '.join(t.symbol for t in config.tokens) or '-'}")
        print(f"Native token:        {config.native_token.symbol}")
        print(f"Allocation window:   {config.router.allocation_window_seconds}s")
        print(f"Min USD per cycle:   {config.router.min_usd_per_cycle}")
        print(f"Protocol fee:        {config.router.protocol_fee_bps} bps")
        print(f"Routes:              {len(config.exchange.routes)}")
        print("Configuration OK")
        return 0

    def _cmd_history(self, args: argparse.Namespace) -> int:
        repository = self._resolve_repository(args)
        if repository is None:
            print("Error: no cycle database given (use --db or --config)")
            return 1

        stop = args.stop if args.stop is not None else args.start + args.limit
        cycles = repository.get_cycles(args.start, stop)[: args.limit]
        if not cycles:
            print("No closed cycles found")
            return 0
        self._print_cycles(cycles)
        return 0

    def _cmd_withdrawals(self, args: argparse.Namespace) -> int:
        repository = self._resolve_repository(args)
        if repository is None:
            print("Error: no cycle database given (use --db or --config)")
            return 1

        stop = args.stop if args.stop is not None else args.start + args.limit
        cycles = repository.get_withdrawal_cycles(args.start, stop)[: args.limit]
        if not cycles:
            print("No fulfilled withdrawal cycles found")
            return 0
        self._print_withdrawal_cycles(cycles)
        return 0

    def _resolve_repository(self, args: argparse.Namespace) -> Optional[CycleRepository]:
        if args.db:
            return CycleRepository(Path(args.db))
        if args.config:
            config = ConfigLoader().load(args.config)
            if config.storage.database_path:
                return CycleRepository(Path(config.storage.database_path))
        return self._repository

    # =========================================================================
    # Output Formatting
    # =========================================================================

    def _print_cycles(self, cycles: List[Cycle]) -> None:
        print("\n=== Closed Cycles ===")
        print(f"{'Cycle':>6} {'Deposited USD':>20} {'Received USD':>20} {'Strategies USD':>20} {'PPS':>24}")
        print("-" * 95)
        for cycle in cycles:
            print(
                f"{cycle.id:>6} {cycle.total_deposited_in_usd:>20.2f} "
                f"{cycle.received_by_strategies_in_usd:>20.2f} "
                f"{cycle.strategies_balance_with_compound_and_batch_deposits_in_usd:>20.2f} "
                f"{str(cycle.price_per_share):>24}"
            )

    def _print_withdrawal_cycles(self, cycles: List[Dict[str, Any]]) -> None:
        print("\n=== Withdrawal Cycles ===")
        print(f"{'Cycle':>6} {'Requests':>9} {'Withdrawn USD':>20}")
        print("-" * 37)
        for cycle in cycles:
            print(f"{cycle['id']:>6} {len(cycle['requests']):>9} {cycle['withdrawn_usd']:>20}")


def main(argv: Optional[List[str]] = None) -> int:
    return RouterCLI().run(sys.argv[1:] if argv is None else argv)


if __name__ == "__main__":
    sys.exit(main())
