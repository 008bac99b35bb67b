"""Module entrypoint for running Coinsim CLI commands.

This is the canonical CLI entrypoint for Coinsim.
Usage: python -m coinsim <command> [options]
"""

from __future__ import annotations

import sys
from typing import Optional

from tools.cli.market import main as market_main


def print_usage() -> None:
    """Print CLI usage information."""
    print("Coinsim - simulated coin market")
    print("")
    print("Usage: coinsim <command> [options]")
    print("       python -m coinsim <command> [options]")
    print("")
    print("Commands:")
    print("  market run        Run the price simulator and print snapshots")
    print("  market trade      Apply scripted buy/sell/hold actions and print the summary")
    print("  market serve      Serve the Studio JSON API")
    print("")
    print("Options:")
    print("  -h, --help        Show this help message")
    print("  --version         Show version information")
    print("")
    print("Examples:")
    print("  coinsim market run --ticks 20 --seed 7")
    print("  coinsim market trade --action buy:LR1:5 --action hold --action sell:LR1:5")
    print("  coinsim market serve --port 8765")


def print_version() -> None:
    """Print version information."""
    from coinsim import __version__
    print(f"coinsim {__version__}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entrypoint."""
    if argv is None:
        argv = sys.argv[1:]

    if len(argv) < 1:
        print_usage()
        return 1

    command = argv[0]

    if command in ("-h", "--help"):
        print_usage()
        return 0

    if command in ("-v", "--version"):
        print_version()
        return 0

    if command == "market":
        return market_main(argv[1:])

    print(f"Unknown command: {command}")
    print_usage()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
