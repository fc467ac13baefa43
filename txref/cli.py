"""
txref CLI — convert between Bitcoin transaction positions and txrefs.

Commands:
  txref encode     - Encode a block height + index as a txref (offline)
  txref decode     - Decode a txref to chain, block height and index (offline)
  txref from-txid  - Look up txids and print their txrefs
  txref to-txid    - Resolve txrefs to the txids they point at
  txref details    - Show transaction details for a txid or txref (JSON)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable


def _expected_errors() -> tuple[type[Exception], ...]:
    """Errors reported per item instead of aborting the whole command."""
    from txref.provider import ProviderError

    # TxrefError is a ValueError
    return ProviderError, ValueError


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _add_provider_args(parser: argparse.ArgumentParser) -> None:
    """Add common provider flags to a subparser.

    SECURITY: RPC password is NOT accepted via CLI args (visible in ps/proc).
    Use --rpc-cookie for Bitcoin Core cookie auth, or set BITCOIN_RPC_PASS env var.
    """
    parser.add_argument(
        "--provider",
        choices=["blockcypher", "rpc"],
        help="Data provider (default: blockcypher, or TXREF_PROVIDER)",
    )
    parser.add_argument("--token", help="BlockCypher API token (or set BLOCKCYPHER_TOKEN)")
    parser.add_argument("--rpc-url", help="Bitcoin RPC URL (or set BITCOIN_RPC_URL)")
    parser.add_argument("--rpc-user", help="Bitcoin RPC username (or set BITCOIN_RPC_USER)")
    parser.add_argument(
        "--rpc-cookie",
        help="Path to Bitcoin Core .cookie file for cookie auth",
    )
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds")


def _add_chain_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--chain",
        choices=["mainnet", "testnet"],
        help="Chain the transaction lives on (default: mainnet)",
    )


def _read_cookie_file(cookie_path: str) -> tuple[str, str]:
    """Read Bitcoin Core cookie file. Returns (user, password)."""
    path = Path(cookie_path)
    if not path.is_file():
        _fail(f"Cookie file not found: {cookie_path}")
    content = path.read_text().strip()
    if ":" not in content:
        _fail(f"Invalid cookie file format: {cookie_path}")
    user, password = content.split(":", 1)
    return user, password


def _get_config(args: argparse.Namespace) -> dict[str, Any]:
    """Merge CLI flags over the loaded config.

    Priority: CLI flags > env vars > config file > defaults.
    """
    from txref.config import load_config

    config_path = Path(args.config) if getattr(args, "config", None) else None
    config = load_config(config_path)

    overrides = {
        "provider": getattr(args, "provider", None),
        "blockcypher_token": getattr(args, "token", None),
        "rpc_url": getattr(args, "rpc_url", None),
        "rpc_user": getattr(args, "rpc_user", None),
        "timeout": getattr(args, "timeout", None),
        "chain": getattr(args, "chain", None),
    }
    config.update({k: v for k, v in overrides.items() if v is not None})

    # Cookie auth takes priority (most secure)
    cookie_path = getattr(args, "rpc_cookie", None)
    if cookie_path:
        config["rpc_user"], config["rpc_password"] = _read_cookie_file(cookie_path)
    return config


def _get_provider(config: dict[str, Any]):
    from txref.provider import ProviderError, provider_from_config

    try:
        return provider_from_config(config)
    except (ProviderError, ValueError) as e:
        _fail(str(e))


def _run_concurrently(func: Callable[[str], Any], items: list[str]) -> list[Any]:
    """Run one lookup per item in worker threads. Failures are returned, not raised."""
    import asyncio

    async def _gather() -> list[Any]:
        return await asyncio.gather(
            *(asyncio.to_thread(func, item) for item in items),
            return_exceptions=True,
        )

    results = asyncio.run(_gather())
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, _expected_errors()):
            raise result
    return results


def cmd_encode(args: argparse.Namespace) -> None:
    """Encode a block position as a txref."""
    from txref.codec import encode

    result = encode(args.chain or "mainnet", args.height, args.index)
    if not result.ok:
        _fail(result.message)
    print(result.value)


def cmd_decode(args: argparse.Namespace) -> None:
    """Decode a txref to its block position."""
    from txref.codec import decode

    result = decode(args.txref)
    if not result.ok:
        _fail(result.message)

    location = result.value
    if args.json:
        print(json.dumps(location.to_dict(), indent=2))
        return
    print(f"chain:        {location.chain.label}")
    print(f"block height: {location.block_height}")
    print(f"block index:  {location.block_index}")


def cmd_from_txid(args: argparse.Namespace) -> None:
    """Look up one or more txids and print their txrefs."""
    from txref.lookup import txid_to_txref

    config = _get_config(args)
    provider = _get_provider(config)
    chain = config["chain"]

    results = _run_concurrently(
        lambda txid: txid_to_txref(txid, chain, provider), args.txids
    )

    failed = False
    for txid, result in zip(args.txids, results):
        if isinstance(result, BaseException):
            print(f"Error: {txid}: {result}", file=sys.stderr)
            failed = True
        elif len(args.txids) == 1:
            print(result)
        else:
            print(f"{txid}  {result}")
    if failed:
        sys.exit(1)


def cmd_to_txid(args: argparse.Namespace) -> None:
    """Resolve one or more txrefs to txids."""
    from txref.lookup import txref_to_txid

    config = _get_config(args)
    provider = _get_provider(config)

    results = _run_concurrently(
        lambda txref: txref_to_txid(txref, provider), args.txrefs
    )

    failed = False
    for txref, result in zip(args.txrefs, results):
        if isinstance(result, BaseException):
            print(f"Error: {txref}: {result}", file=sys.stderr)
            failed = True
            continue
        txid, chain = result
        if len(args.txrefs) == 1:
            print(txid)
        else:
            print(f"{txref}  {txid}  ({chain.label})")
    if failed:
        sys.exit(1)


def cmd_details(args: argparse.Namespace) -> None:
    """Show transaction details for a txid or txref as JSON."""
    from txref.lookup import tx_details_from_txid, tx_details_from_txref
    from txref.provider import validate_txid

    config = _get_config(args)
    provider = _get_provider(config)

    try:
        try:
            txid = validate_txid(args.ref)
        except ValueError:
            details = tx_details_from_txref(args.ref, provider)
        else:
            details = tx_details_from_txid(txid, config["chain"], provider)
    except _expected_errors() as e:
        _fail(str(e))

    print(json.dumps(details.to_dict(), indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="txref",
        description="Convert Bitcoin transaction positions to and from txrefs.",
    )
    from txref import __version__
    parser.add_argument("--version", action="version", version=f"txref {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", help="Path to config TOML (default: ~/.txref/config.toml)")
    sub = parser.add_subparsers(dest="command")

    # encode
    p_enc = sub.add_parser("encode", help="Encode block height + index as a txref")
    p_enc.add_argument("height", type=int, help="Block height")
    p_enc.add_argument("index", type=int, help="Index of the transaction within the block")
    _add_chain_arg(p_enc)

    # decode
    p_dec = sub.add_parser("decode", help="Decode a txref")
    p_dec.add_argument("txref", help="txref, e.g. tx1-rk63-uvxf-9pqc-sy")
    p_dec.add_argument("--json", action="store_true", help="Print JSON")

    # from-txid
    p_ft = sub.add_parser("from-txid", help="Look up txids and print their txrefs")
    p_ft.add_argument("txids", nargs="+", help="Transaction id(s)")
    _add_chain_arg(p_ft)
    _add_provider_args(p_ft)

    # to-txid
    p_tt = sub.add_parser("to-txid", help="Resolve txrefs to txids")
    p_tt.add_argument("txrefs", nargs="+", help="txref(s)")
    _add_provider_args(p_tt)

    # details
    p_det = sub.add_parser("details", help="Transaction details for a txid or txref")
    p_det.add_argument("ref", help="txid or txref")
    _add_chain_arg(p_det)
    _add_provider_args(p_det)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    if not args.command:
        print("txref — short references to Bitcoin transactions")
        print()
        print("Usage:")
        print("  txref encode 467883 2355")
        print("  txref encode 1152194 1 --chain testnet")
        print("  txref decode tx1-rk63-uvxf-9pqc-sy")
        print("  txref from-txid <txid> [<txid> ...] [--chain testnet]")
        print("  txref to-txid <txref> [<txref> ...]")
        print("  txref details <txid|txref> [--provider rpc --rpc-url ...]")
        print()
        print("Run 'txref <command> --help' for details on any command.")
        sys.exit(0)

    commands = {
        "encode": cmd_encode,
        "decode": cmd_decode,
        "from-txid": cmd_from_txid,
        "to-txid": cmd_to_txid,
        "details": cmd_details,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
