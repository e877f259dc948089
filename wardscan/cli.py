"""CLI for wardscan."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config import ConfigurationError, Settings
from .directory import load_directory
from .etherscan import DeployerLookup
from .harvest import CancelToken, LogHarvester, RunCancelled, install_signal_handlers
from .modes import MODES, RunOptions, Workspace, run_mode
from .rpc import RPCClient
from .snapshot import SnapshotDiffer, format_diff
from .store import CacheStore


_LOGGER = logging.getLogger("wardscan.cli")

CACHE_CHOICES = ("chainlog", "logs", "graph")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wardscan", description="check permissions for DSS")
    parser.add_argument("--mode", "-m", choices=MODES, help="mode: full, oracles, authorities, permissions")
    parser.add_argument("contracts", nargs="*", help="contracts to inspect (address or chainlog name)")
    parser.add_argument("--level", "-l", type=int, default=0, help="maximum depth level (0 = unbounded)")
    parser.add_argument(
        "--cached",
        "-c",
        nargs="*",
        choices=CACHE_CHOICES,
        default=[],
        help="use cached data",
    )
    parser.add_argument("--endpoint", help="Override ETH_RPC_URL")
    parser.add_argument(
        "--notes-path",
        default=".notes/notes.txt",
        help="Path to notes file containing the RPC endpoint",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.level < 0:
        parser.error("--level must be zero or positive")
    if not args.mode:
        args.mode = "authorities" if args.contracts else "full"
    if args.mode not in ("full", "oracles") and not args.contracts:
        parser.error(f"mode '{args.mode}' needs at least one contract")
    return args


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)

    try:
        settings = Settings.from_env(rpc_url=args.endpoint, notes_path=args.notes_path)
        token = CancelToken()
        install_signal_handlers(token)
        client = RPCClient(settings.rpc_url, timeout=settings.timeout, retries=settings.max_retries)
        store = CacheStore(settings.cache_dir, settings.graph_dir)
        directory = load_directory(
            client, store, settings.registry_address, reuse="chainlog" in args.cached
        )
        workspace = Workspace(
            client=client,
            store=store,
            directory=directory,
            harvester=LogHarvester.from_settings(client, store, settings, cancel_token=token),
            snapshots=SnapshotDiffer(settings.report_dir),
            options=RunOptions(
                depth=args.level or None,
                reuse_logs="logs" in args.cached,
                reuse_graphs="graph" in args.cached,
            ),
            deployers=DeployerLookup(settings.etherscan_api_key),
        )
        result = run_mode(workspace, args.mode, args.contracts)
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except RunCancelled as exc:
        _LOGGER.warning("%s", exc)
        return 130
    except KeyboardInterrupt:
        _LOGGER.warning("aborted")
        return 130
    except Exception:
        _LOGGER.exception("Fatal error")
        return 1

    print()
    print(result.text)
    snapshot = result.snapshot
    if snapshot is not None:
        if not snapshot.changed:
            print("no changes since last lookup")
        else:
            print(format_diff(snapshot.diff))
            print(f"changes detected since last lookup; created {snapshot.snapshot_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
