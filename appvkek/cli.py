#!/usr/bin/env python3
"""
appvkek
=======

List the token approvals a wallet has granted, grouped by token contract.

The wallet's normal transactions are read from the chain's block explorer,
``approve()`` calls are extracted and deduplicated per token/spender pair,
and the latest allowance of each pair is printed:

    $ appvkek -a 0x... -c bsc --execution-time
    [CAKE] 0x0e09fabb73bd3ade0a17ecc321fd13a19e81ce82
      * 0x10ed43c718714eb63d5aa57b78b54704e256024e - 115792089237316195...
    (elapsed = 1.42 secs)

The explorer API key is read from ``APPVKEK_BSCSCAN_APIKEY``,
``APPVKEK_ETHERSCAN_APIKEY`` or ``APPVKEK_POLYGONSCAN_APIKEY`` depending on
the chain (a ``.env`` file in the working directory is honoured).
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from typing import List, Mapping, Optional, TextIO

from dotenv import load_dotenv

from appvkek.config import CHAINS, Config, load_config
from appvkek.errors import AppvkekError, UsageError
from appvkek.explorer import ExplorerClient
from appvkek.extractor import extract_approvals
from appvkek.report import format_elapsed, format_report
from appvkek.rpc import EthereumRPC, is_eoa, refresh_allowances, resolve_symbols

PROG = "appvkek"

logger = logging.getLogger("appvkek")


class ArgumentParser(argparse.ArgumentParser):
    """argparse parser that raises UsageError instead of exiting."""

    def error(self, message: str):
        raise UsageError(message)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog=PROG,
        description=(
            "Check the approvals and allowances a wallet has granted to "
            "spenders, grouped by token contract."
        ),
    )
    parser.add_argument(
        "-a",
        "--wallet-address",
        dest="address",
        required=True,
        help="Wallet address to check (0x...).",
    )
    parser.add_argument(
        "-c",
        "--chain",
        required=True,
        choices=sorted(CHAINS),
        help="Chain whose block explorer is queried.",
    )
    parser.add_argument(
        "--execution-time",
        action="store_true",
        help="Print the total execution time after the report.",
    )
    parser.add_argument(
        "--live",
        action="store_true",
        help="Show the allowance currently stored by each token instead of the last approved amount.",
    )
    parser.add_argument(
        "--no-eoa-check",
        dest="check_eoa",
        action="store_false",
        help="Skip verifying that the address is an externally owned account.",
    )
    parser.add_argument(
        "--rpc",
        default=None,
        help="JSON-RPC endpoint overriding the chain's default node.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )
    return parser


def run(
    config: Config,
    explorer: Optional[ExplorerClient] = None,
    rpc: Optional[EthereumRPC] = None,
) -> str:
    """Fetch, extract and format the approvals described by ``config``."""
    explorer = explorer or ExplorerClient(config)
    rpc = rpc or EthereumRPC(config.node_url)

    if config.check_eoa and not is_eoa(rpc, config.address):
        raise UsageError(f"address {config.address} is not an externally owned account")

    logger.info(f"Fetching transactions of {config.address} on {config.chain.name}")
    transactions = explorer.get_transactions(config.address)
    records = extract_approvals(transactions, config.address)
    records = resolve_symbols(rpc, records)
    if config.live:
        records = refresh_allowances(rpc, records, config.address)
    return format_report(records)


def main(
    argv: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    stdout: TextIO = None,
    stderr: TextIO = None,
) -> int:
    start = time.perf_counter()
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr
    try:
        args = build_parser().parse_args(argv)
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(levelname)s:%(name)s:%(message)s",
        )
        if environ is None:
            load_dotenv()
            environ = os.environ
        config = load_config(
            args.chain,
            args.address,
            environ,
            execution_time=args.execution_time,
            live=args.live,
            check_eoa=args.check_eoa,
            rpc_url=args.rpc,
        )
        report = run(config)
    except AppvkekError as e:
        message = " ".join(str(e).split())
        print(f"{PROG}: error: {message}", file=stderr)
        return e.exit_code
    except KeyboardInterrupt:
        print(f"{PROG}: interrupted", file=stderr)
        return 130

    print(report, file=stdout)
    if config.execution_time:
        print(format_elapsed(time.perf_counter() - start), file=stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
