#!/usr/bin/env python3
"""Market CLI: run the price simulator, script trades, or serve the Studio API.

Commands
--------
  python -m coinsim market run   [--ticks 20 | --duration 5] [--seed 7] [--json]
  python -m coinsim market trade --action buy:LR1:5 --action hold --action sell:LR1:5 \\
                                 [--ticks-between 1] [--seed 7]
  python -m coinsim market serve [--host 127.0.0.1] [--port 8765]

Every command accepts ``--config PATH`` or ``--config-json JSON`` (see
``packages/coinmarket/config_loader.py``) plus ``COINSIM_*`` environment
overrides; explicit flags win over both.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import threading
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from packages.coinmarket.config_loader import (
    ConfigLoadError,
    MarketConfig,
    apply_env_overrides,
    load_market_config,
)
from packages.coinmarket.market.assets import PriceSnapshot

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScriptedAction:
    action: str  # "buy" | "sell" | "hold"
    asset_id: Optional[str] = None
    quantity: Optional[str] = None


def parse_action(raw: str) -> ScriptedAction:
    """Parse ``buy:ID:QTY``, ``sell:ID:QTY``, ``hold`` or ``hold:ID``."""
    parts = [p.strip() for p in str(raw).split(":")]
    verb = parts[0].lower()
    if verb == "hold":
        if len(parts) > 2:
            raise ValueError(f"invalid action {raw!r}: expected 'hold' or 'hold:ASSET'")
        return ScriptedAction("hold", parts[1] if len(parts) == 2 and parts[1] else None)
    if verb in ("buy", "sell"):
        if len(parts) != 3 or not parts[1] or not parts[2]:
            raise ValueError(f"invalid action {raw!r}: expected '{verb}:ASSET:QTY'")
        return ScriptedAction(verb, parts[1], parts[2])
    raise ValueError(f"invalid action {raw!r}: verb must be buy, sell or hold")


def _build_config(args: argparse.Namespace) -> MarketConfig:
    config = load_market_config(config_path=args.config, config_json=args.config_json)
    config = apply_env_overrides(config)

    overrides: dict[str, Any] = {}
    if args.seed is not None:
        overrides["seed"] = args.seed
    if getattr(args, "interval", None) is not None:
        if args.interval <= 0:
            raise ConfigLoadError("--interval must be positive.")
        overrides["tick_interval"] = args.interval
    if args.starting_cash is not None:
        try:
            cash = Decimal(str(args.starting_cash))
        except InvalidOperation as exc:
            raise ConfigLoadError(f"invalid --starting-cash: {exc}") from exc
        if not cash.is_finite() or cash < 0:
            raise ConfigLoadError("--starting-cash must be non-negative.")
        overrides["starting_cash"] = cash
    return replace(config, **overrides) if overrides else config


def _format_snapshot(snapshot: PriceSnapshot) -> str:
    cells = "  ".join(f"{a.asset_id}={a.price:.8g}" for a in snapshot)
    return f"[tick {snapshot.seq:>4}] {cells}"


def _emit_snapshot(snapshot: PriceSnapshot, as_json: bool) -> None:
    if as_json:
        print(json.dumps(snapshot.to_dict()), flush=True)
    else:
        print(_format_snapshot(snapshot), flush=True)


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------


def _run(args: argparse.Namespace) -> int:
    """Run the simulator and print every snapshot, then the summary."""
    from packages.coinmarket.session import MarketSession

    try:
        config = _build_config(args)
    except ConfigLoadError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.ticks is not None and args.ticks < 0:
        print("Error: --ticks must be non-negative.", file=sys.stderr)
        return 1

    with MarketSession(config) as session:
        session.simulator.prices.subscribe(lambda snap: _emit_snapshot(snap, args.json))

        if args.ticks is not None:
            print(f"[market run] ticks    : {args.ticks}", file=sys.stderr)
            for _ in range(args.ticks):
                session.simulator.tick()
        else:
            print(f"[market run] duration : {args.duration}s", file=sys.stderr)
            print(f"[market run] interval : {config.tick_interval}s", file=sys.stderr)
            done = threading.Event()
            session.start(done)
            try:
                done.wait(args.duration)
            except KeyboardInterrupt:
                logger.info("Interrupted; stopping simulator.")
            finally:
                done.set()
                session.stop()

        summary = session.summary()

    print(json.dumps(summary, indent=2))
    return 0


def _trade(args: argparse.Namespace) -> int:
    """Apply scripted actions, advancing the market between them."""
    from packages.coinmarket.session import MarketSession

    try:
        actions = [parse_action(raw) for raw in args.actions]
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.ticks_between < 0:
        print("Error: --ticks-between must be non-negative.", file=sys.stderr)
        return 1

    try:
        config = _build_config(args)
    except ConfigLoadError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    rejected = 0
    with MarketSession(config) as session:
        for index, action in enumerate(actions):
            if index > 0:
                for _ in range(args.ticks_between):
                    session.simulator.tick()

            if action.action == "buy":
                result = session.buy(action.asset_id, action.quantity)
            elif action.action == "sell":
                result = session.sell(action.asset_id, action.quantity)
            else:
                result = session.hold(action.asset_id)

            if not result.ok:
                rejected += 1
            status = "ok" if result.ok else f"REJECTED ({result.message})"
            print(
                f"[{session.simulator.tick_count:>4}] {action.action.upper():<4} "
                f"{action.asset_id or '-':<6} qty={action.quantity or '-':<10} "
                f"price={result.price if result.price is not None else '-'}  {status}"
            )

        summary = session.summary()

    print(f"Actions: {len(actions)}   Rejected: {rejected}")
    print(json.dumps(summary, indent=2))
    return 0


def _serve(args: argparse.Namespace) -> int:
    """Serve the Studio API over a fresh session."""
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is required for 'serve'. Run: pip install uvicorn", file=sys.stderr)
        return 1

    from packages.coinmarket.session import MarketSession
    from packages.coinmarket.studio.app import create_app

    try:
        config = _build_config(args)
    except ConfigLoadError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    session = MarketSession(config)
    app = create_app(session)
    print(f"[market serve] http://{args.host}:{args.port}/api/prices", file=sys.stderr)
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
    finally:
        session.close()
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_config_args(p: argparse.ArgumentParser) -> None:
    src = p.add_mutually_exclusive_group()
    src.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Market config JSON file (UTF-8, BOM tolerated).",
    )
    src.add_argument(
        "--config-json",
        default=None,
        metavar="JSON",
        dest="config_json",
        help="Market config as an inline JSON object.",
    )
    p.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for the price walk (default: system entropy).",
    )
    p.add_argument(
        "--starting-cash",
        default=None,
        metavar="AMOUNT",
        dest="starting_cash",
        help="Initial cash balance (default: 1000).",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coinsim market",
        description="Simulated coin market: price random walk and a single-trader ledger.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )

    sub = parser.add_subparsers(dest="subcommand", required=True)

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------
    run_p = sub.add_parser("run", help="Run the price simulator and print snapshots.")
    _add_config_args(run_p)
    mode = run_p.add_mutually_exclusive_group()
    mode.add_argument(
        "--ticks",
        type=int,
        default=None,
        metavar="N",
        help="Advance exactly N ticks synchronously (no background loop).",
    )
    mode.add_argument(
        "--duration",
        type=float,
        default=5.0,
        metavar="SECONDS",
        help="Run the background loop for SECONDS (default: 5).",
    )
    run_p.add_argument(
        "--interval",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Seconds between ticks (default: 0.5).",
    )
    run_p.add_argument(
        "--json",
        action="store_true",
        help="Print snapshots as JSON lines instead of a text table.",
    )

    # ------------------------------------------------------------------
    # trade
    # ------------------------------------------------------------------
    trd = sub.add_parser("trade", help="Apply scripted buy/sell/hold actions.")
    _add_config_args(trd)
    trd.add_argument(
        "--action",
        action="append",
        required=True,
        dest="actions",
        metavar="SPEC",
        help="buy:ASSET:QTY, sell:ASSET:QTY, hold or hold:ASSET (repeatable, in order).",
    )
    trd.add_argument(
        "--ticks-between",
        type=int,
        default=1,
        metavar="N",
        dest="ticks_between",
        help="Price ticks to advance between consecutive actions (default: 1).",
    )

    # ------------------------------------------------------------------
    # serve
    # ------------------------------------------------------------------
    srv = sub.add_parser("serve", help="Serve the Studio JSON API.")
    _add_config_args(srv)
    srv.add_argument("--host", default=DEFAULT_HOST, help=f"Bind host (default: {DEFAULT_HOST}).")
    srv.add_argument("--port", type=int, default=DEFAULT_PORT, help=f"Bind port (default: {DEFAULT_PORT}).")
    srv.add_argument(
        "--interval",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Seconds between ticks (default: 0.5).",
    )

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str]) -> int:
    """CLI entry point.  Returns exit code (0 = success)."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.subcommand == "run":
        return _run(args)
    if args.subcommand == "trade":
        return _trade(args)
    if args.subcommand == "serve":
        return _serve(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
