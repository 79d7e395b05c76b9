#!/usr/bin/env python3
"""
Jeetboard - Fumble Leaderboard CLI

Usage:
    jeetboard fumbles 0xabc... --timeframe weekly
    jeetboard leaderboard --timeframe monthly --limit 20
    jeetboard leaderboard --json                # Full snapshot as JSON
    jeetboard rank u1                           # Rank in every timeframe
    jeetboard watch                             # Invalidate wallets on users file changes
    jeetboard config                            # Print configuration summary

All settings come from the environment (see jeetboard/config.py).
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from .config import JeetConfig
from .core.errors import JeetboardError, LeaderboardUnavailable
from .core.leaderboard import LeaderboardAggregator
from .core.models import FumbleResult, LeaderboardSnapshot, Timeframe
from .core.service import FumbleService
from .core.user_directory import FileUserDirectory
from .wallet_watcher import run_watcher


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else JeetConfig.get_log_level()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _timeframe(value: str) -> Timeframe:
    try:
        return Timeframe.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_aggregator(service: FumbleService, users_file: Optional[str]) -> LeaderboardAggregator:
    return LeaderboardAggregator(
        service=service,
        user_directory=FileUserDirectory(users_file),
        cache=service.cache,
        ttl=JeetConfig.get_leaderboard_cache_ttl(),
        max_entries=JeetConfig.get_leaderboard_size(),
        global_concurrency=JeetConfig.get_global_concurrency(),
    )


def print_fumble_result(result: FumbleResult):
    print("=" * 70)
    print(f"Fumbles for {result.wallet_address} [{result.timeframe.value}]")
    print("=" * 70)
    print(f"  Total loss:    ${result.total_loss:,.2f}")
    print(f"  Max possible:  ${result.max_possible_loss:,.2f}")
    print(f"  Jeet Score:    {result.jeet_score}/100")
    print(f"  Rank tier:     {result.rank_tier} ({result.rank_label})")
    print(f"  Sales:         {result.analyzed_sales} analyzed, {result.degraded_sales} degraded")
    if result.degraded:
        print("  ⚠ Some price lookups failed; total loss is a lower bound")

    if result.fumbles:
        print("\n  Fumbles (by loss):")
        for fumble in result.fumbles:
            print(
                f"    {fumble.sale_timestamp:%Y-%m-%d} {fumble.token_symbol:<10} "
                f"sold ${fumble.sale_price:,.4f} peak ${fumble.peak_price:,.4f} "
                f"x{fumble.amount:,.4f} -> -${fumble.loss:,.2f} ({fumble.classification.value})"
                + (" *" if fumble.degraded else "")
            )
    else:
        print("\n  No fumbles. Diamond hands (the real kind).")


def print_leaderboard(snapshot: LeaderboardSnapshot, limit: int):
    print("=" * 70)
    print(
        f"Jeetboard [{snapshot.timeframe.value}] "
        f"{snapshot.window_start:%Y-%m-%d} -> {snapshot.window_end:%Y-%m-%d}"
    )
    print("=" * 70)
    for entry in snapshot.entries[:limit]:
        biggest = (
            f"{entry.biggest_fumble.token_symbol} -${entry.biggest_fumble.loss:,.2f}"
            if entry.biggest_fumble.loss
            else "-"
        )
        flag = " (partial)" if entry.partial else ""
        print(
            f"  #{entry.rank:<4} {entry.display_name:<20} ${entry.total_loss:>14,.2f}  "
            f"score {entry.jeet_score:>3}  biggest {biggest}{flag}"
        )
    if not snapshot.entries:
        print("  No opted-in users yet.")

    stats = snapshot.stats
    print("\n  Stats:")
    print(f"    Users:        {stats.total_users}")
    print(f"    Total loss:   ${stats.total_loss:,.2f}")
    print(f"    Average loss: ${stats.average_loss:,.2f}")
    if snapshot.partial:
        print(f"  ⚠ {len(snapshot.failed_wallets)} wallets failed and were skipped")


async def _run_fumbles(args) -> int:
    service = FumbleService.from_config()
    try:
        result = await service.compute_fumbles(args.address, args.timeframe)
    finally:
        await service.close()
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_fumble_result(result)
    return 0


async def _run_leaderboard(args) -> int:
    service = FumbleService.from_config()
    aggregator = build_aggregator(service, args.users_file)
    try:
        snapshot = await aggregator.compute_leaderboard(args.timeframe)
    finally:
        await service.close()
    if args.json:
        print(json.dumps(snapshot.to_dict(), indent=2))
    else:
        print_leaderboard(snapshot, args.limit)
    return 0


async def _run_rank(args) -> int:
    service = FumbleService.from_config()
    aggregator = build_aggregator(service, args.users_file)
    try:
        ranks = await aggregator.get_user_ranks(args.user_id)
    finally:
        await service.close()
    print(f"Ranks for {args.user_id}:")
    for timeframe, rank in ranks.items():
        print(f"  {timeframe.value:<8} {('#' + str(rank)) if rank else 'unranked'}")
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Jeetboard - fumble detection and leaderboard")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fumbles = subparsers.add_parser("fumbles", help="Detect fumbles for one wallet")
    fumbles.add_argument("address", help="Wallet address")
    fumbles.add_argument("--timeframe", "-t", type=_timeframe, default=Timeframe.ALL_TIME)
    fumbles.add_argument("--json", action="store_true", help="Print the result as JSON")

    leaderboard = subparsers.add_parser("leaderboard", help="Build the leaderboard snapshot")
    leaderboard.add_argument("--timeframe", "-t", type=_timeframe, default=Timeframe.WEEKLY)
    leaderboard.add_argument("--users-file", default=None, help="JSON users file (default: JEET_USERS_FILE)")
    leaderboard.add_argument("--limit", type=int, default=25, help="Entries to print")
    leaderboard.add_argument("--json", action="store_true", help="Print the snapshot as JSON")

    rank = subparsers.add_parser("rank", help="Rank of a user in every timeframe")
    rank.add_argument("user_id")
    rank.add_argument("--users-file", default=None)

    watch = subparsers.add_parser("watch", help="Watch the users file and invalidate changed wallets")
    watch.add_argument("--users-file", default=None)

    subparsers.add_parser("config", help="Print configuration summary")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "config":
        JeetConfig.print_config_summary()
        return 0
    if args.command == "watch":
        run_watcher(args.users_file)
        return 0

    runners = {"fumbles": _run_fumbles, "leaderboard": _run_leaderboard, "rank": _run_rank}
    try:
        return asyncio.run(runners[args.command](args))
    except LeaderboardUnavailable as e:
        print(f"[Jeetboard] ERROR: Leaderboard unavailable: {e}")
        return 2
    except JeetboardError as e:
        print(f"[Jeetboard] ERROR: {e}")
        return 1
    finally:
        print(f"\n[Jeetboard] Finished at: {datetime.now(timezone.utc).isoformat()}", file=sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
