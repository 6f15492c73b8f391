#!/usr/bin/env python3
"""
Cache maintenance commands.

Operates on the durable store only; the memory tier of running servers is
not reachable from here and ages out on its own.

    market-cache list holders
    market-cache stats holders --ttl-ms 30000
    market-cache purge holders
    market-cache invalidate holders tok1:page=1
"""
import argparse
import asyncio
import json
import sys
from typing import List, Optional

from config.logging import configure_logging
from config.settings import CacheSettings
from . import envelope
from .coordinator import build_store
from .tier import CacheTier


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="market-cache", description="Token-market cache maintenance")
    parser.add_argument("--data-dir", help="Override CACHE_DATA_DIR")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List keys of a collection")
    list_parser.add_argument("collection")

    stats_parser = subparsers.add_parser("stats", help="Count fresh and expired records")
    stats_parser.add_argument("collection")
    stats_parser.add_argument("--ttl-ms", type=int, help="Judge freshness with this duration")

    purge_parser = subparsers.add_parser("purge", help="Delete expired records")
    purge_parser.add_argument("collection")
    purge_parser.add_argument("--ttl-ms", type=int, help="Judge freshness with this duration")

    invalidate_parser = subparsers.add_parser("invalidate", help="Delete one record")
    invalidate_parser.add_argument("collection")
    invalidate_parser.add_argument("key")

    return parser


async def collection_stats(tier: CacheTier, collection: str, ttl_ms: Optional[int] = None) -> dict:
    records = await tier.store.list_all(collection)
    now = envelope.now_ms()
    expired = sum(1 for record in records.values() if envelope.is_expired(record, ttl_ms, now=now))
    return {
        "collection": collection,
        "records": len(records),
        "fresh": len(records) - expired,
        "expired": expired
    }


async def run(args: argparse.Namespace, settings: CacheSettings) -> int:
    tier = CacheTier(build_store(settings))
    try:
        if args.command == "list":
            for key in await tier.keys(args.collection):
                print(key)
        elif args.command == "stats":
            print(json.dumps(await collection_stats(tier, args.collection, args.ttl_ms), indent=2))
        elif args.command == "purge":
            purged = await tier.purge_expired(args.collection, args.ttl_ms)
            print(f"Purged {purged} expired records from {args.collection}")
        elif args.command == "invalidate":
            if not await tier.invalidate(args.collection, args.key):
                print(f"Failed to invalidate {args.collection}/{args.key}", file=sys.stderr)
                return 1
            print(f"Invalidated {args.collection}/{args.key}")
    finally:
        await tier.store.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = CacheSettings()
    if args.data_dir:
        settings = settings.model_copy(update={"CACHE_DATA_DIR": args.data_dir})
    configure_logging(settings.LOG_LEVEL, json_logs=not sys.stderr.isatty())
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
