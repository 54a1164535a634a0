"""CLI entry point for the VRF ledger and relayer nodes.

Usage:
    vrf-node ledger --config ledger_config.json
    vrf-node relayer --config relayer_config.json
    vrf-node relayer --config relayer_config.json --confirmations 3 --start-height 120
    vrf-node new-wallet

Environment variables:
    VRF_PRIVATE_KEY:  Operator (relayer) or admin (ledger) private key
    VRF_DATA_DIR:     Override data directory
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any

from eth_account import Account

from vrf_node.crypto import to_hex
from vrf_node.node import LedgerNode, LedgerNodeConfig, RelayerConfig, RelayerNode


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Commit-reveal random seed nodes (dev ledger + relayer)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--log-level", "-l",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    ledger = sub.add_parser("ledger", help="Run a development ledger with the registry deployed")
    ledger.add_argument("--config", "-c", help="Path to JSON config file")
    ledger.add_argument("--port", "-p", type=int, help="Override listening port")
    ledger.add_argument("--data-dir", "-d", help="Override data directory")
    ledger.add_argument(
        "--operators",
        help="Comma-separated operator addresses granted at deployment",
    )
    ledger.add_argument("--confirmations", type=int, help="Override confirmation depth")
    ledger.add_argument(
        "--block-interval", type=float,
        help="Seconds between empty blocks (0 disables)",
    )

    relayer = sub.add_parser("relayer", help="Run the commit API, watcher and reveal scheduler")
    relayer.add_argument("--config", "-c", help="Path to JSON config file")
    relayer.add_argument("--port", "-p", type=int, help="Override commit API port")
    relayer.add_argument("--data-dir", "-d", help="Override data directory")
    relayer.add_argument("--ledger-url", help="Override ledger endpoint")
    relayer.add_argument("--registry", help="Override registry address")
    relayer.add_argument("--confirmations", type=int, help="Override confirmation depth")
    relayer.add_argument("--start-height", type=int, help="First block to scan (default: head)")

    sub.add_parser("new-wallet", help="Generate a private key and print it with its address")

    return parser.parse_args(argv)


def read_config_file(config_path: str | None) -> dict[str, Any]:
    if not config_path:
        return {}
    path = Path(config_path).resolve()
    if not path.exists():
        print(f"Error: config file not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path) as f:
        return json.load(f)


def apply_env(raw: dict[str, Any], key_field: str) -> dict[str, Any]:
    """Environment variables override the config file, CLI flags override both."""
    if os.environ.get("VRF_PRIVATE_KEY"):
        raw[key_field] = os.environ["VRF_PRIVATE_KEY"]
    if os.environ.get("VRF_DATA_DIR"):
        raw["data_dir"] = os.environ["VRF_DATA_DIR"]
    return raw


def load_relayer_config(config_path: str | None, overrides: dict[str, Any]) -> RelayerConfig:
    """Load relayer configuration from JSON, environment and CLI overrides."""
    raw = apply_env(read_config_file(config_path), "private_key")
    raw.update({k: v for k, v in overrides.items() if v is not None})

    return RelayerConfig(
        ledger_url=raw.get("ledger_url", "http://127.0.0.1:8545"),
        registry_address=raw.get("registry_address", ""),
        private_key=raw.get("private_key", ""),
        data_dir=raw.get("data_dir", "./vrf-data"),
        cache_path=raw.get("cache_path", ""),
        host=raw.get("host", "0.0.0.0"),
        port=raw.get("port", 8470),
        serve_api=raw.get("serve_api", True),
        expiration=raw.get("expiration", 900),
        confirmations=raw.get("confirmations", 1),
        poll_interval=raw.get("poll_interval", 1.0),
        start_height=raw.get("start_height"),
        max_query_attempts=raw.get("max_query_attempts", 3),
        reveal_retry_limit=raw.get("reveal_retry_limit", 0),
        reveal_retry_backoff=raw.get("reveal_retry_backoff", 1),
        preflight=raw.get("preflight", True),
    )


def load_ledger_config(config_path: str | None, overrides: dict[str, Any]) -> LedgerNodeConfig:
    """Load dev ledger configuration from JSON, environment and CLI overrides."""
    raw = apply_env(read_config_file(config_path), "admin_key")
    raw.update({k: v for k, v in overrides.items() if v is not None})

    return LedgerNodeConfig(
        host=raw.get("host", "127.0.0.1"),
        port=raw.get("port", 8545),
        data_dir=raw.get("data_dir", "./vrf-ledger"),
        admin_key=raw.get("admin_key", ""),
        operators=raw.get("operators", []),
        confirmations=raw.get("confirmations", 1),
        block_interval=raw.get("block_interval", 2.0),
        automine=raw.get("automine", True),
    )


async def run_until_signal(node: RelayerNode | LedgerNode, stopped: asyncio.Event | None = None) -> None:
    """Start *node* and run until interrupted (or until *stopped* is set)."""
    await node.start()

    loop = asyncio.get_running_loop()
    stop_event = stopped or asyncio.Event()

    def handle_signal() -> None:
        print("\nShutting down...")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await stop_event.wait()
    await node.stop()


def cmd_new_wallet() -> int:
    account = Account.create()
    print(f"  Address:     {account.address}")
    print(f"  Private key: {to_hex(account.key)}")
    return 0


def cmd_ledger(args: argparse.Namespace) -> int:
    overrides = {
        "port": args.port,
        "data_dir": args.data_dir,
        "confirmations": args.confirmations,
        "block_interval": args.block_interval,
    }
    if args.operators:
        overrides["operators"] = [a.strip() for a in args.operators.split(",") if a.strip()]
    config = load_ledger_config(args.config, overrides)

    try:
        node = LedgerNode(config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"  Registry:      {node.registry_address}")
    print(f"  Admin:         {node.admin}")
    print(f"  Operators:     {', '.join(config.operators) or '(none)'}")
    print(f"  Confirmations: {config.confirmations}")
    print(f"  Listening on:  {config.host}:{config.port}")
    asyncio.run(run_until_signal(node))
    return 0


def cmd_relayer(args: argparse.Namespace) -> int:
    config = load_relayer_config(
        args.config,
        {
            "port": args.port,
            "data_dir": args.data_dir,
            "ledger_url": args.ledger_url,
            "registry_address": args.registry,
            "confirmations": args.confirmations,
            "start_height": args.start_height,
        },
    )

    async def _run() -> int:
        try:
            node = RelayerNode(config)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"  Operator:      {node.address}")
        print(f"  Registry:      {config.registry_address}")
        print(f"  Ledger:        {config.ledger_url}")
        print(f"  Confirmations: {config.confirmations}")
        await run_until_signal(node, node.stopped)
        return 2 if node.fatal_error else 0

    return asyncio.run(_run())


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    print("=" * 60)
    print(f"  VRF node: {args.command}")
    print("=" * 60)

    if args.command == "new-wallet":
        code = cmd_new_wallet()
    elif args.command == "ledger":
        code = cmd_ledger(args)
    else:
        code = cmd_relayer(args)
    sys.exit(code)


if __name__ == "__main__":
    main()
