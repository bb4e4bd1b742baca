# src/main.py — v2
"""CLI entry point — cache inspection, cleanup and manifest sync.

Usage:
    gradecache stats
    gradecache owners
    gradecache list <owner_id>
    gradecache purge (--owner ID | --all)
    gradecache evict
    gradecache sync <manifest.json> [--token TOKEN] [--concurrency N]

Backend and paths come from .env / environment (see config/settings.py).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from gradecache import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from gradecache.config.settings import ConfigurationError, load_settings

    try:
        settings = load_settings()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    _setup_logging(settings, args.verbose)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="gradecache",
        description=f"gradecache v{__version__} — Offline submission cache",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- stats ---
    p_stats = subparsers.add_parser("stats", help="Show cache size")
    p_stats.set_defaults(func=_cmd_stats)

    # --- owners ---
    p_owners = subparsers.add_parser("owners", help="List cached owners")
    p_owners.set_defaults(func=_cmd_owners)

    # --- list ---
    p_list = subparsers.add_parser("list", help="List entries of one owner")
    p_list.add_argument("owner_id", help="Owner (assignment) id")
    p_list.set_defaults(func=_cmd_list)

    # --- purge ---
    p_purge = subparsers.add_parser("purge", help="Delete cached entries")
    target = p_purge.add_mutually_exclusive_group(required=True)
    target.add_argument("--owner", dest="owner_id", help="Delete one owner")
    target.add_argument("--all", action="store_true", help="Delete everything")
    p_purge.set_defaults(func=_cmd_purge)

    # --- evict ---
    p_evict = subparsers.add_parser(
        "evict", help="Remove entries older than CACHE_MAX_AGE_DAYS",
    )
    p_evict.set_defaults(func=_cmd_evict)

    # --- sync ---
    p_sync = subparsers.add_parser("sync", help="Cache every document in a manifest")
    p_sync.add_argument("manifest", type=Path, help="Path to manifest JSON")
    p_sync.add_argument(
        "--token", default=os.environ.get("GRADECACHE_TOKEN"),
        help="Bearer token (default: $GRADECACHE_TOKEN)",
    )
    p_sync.add_argument(
        "--concurrency", type=int, default=None,
        help="Concurrent downloads, 0 = no limit (default: manifest or settings)",
    )
    p_sync.set_defaults(func=_cmd_sync)

    return parser


def _open_store(settings):
    from gradecache.cache.cache_factory import create_cache_store

    return create_cache_store(settings)


async def _cmd_stats(args: argparse.Namespace, settings) -> int:
    """Display entry count and bytes on disk."""
    store = _open_store(settings)
    try:
        size = await store.total_size()
        owners = await store.list_owners()
    finally:
        store.close()

    print(f"\nCache ({store.backend_name}):")
    print(f"  Owners:   {len(owners)}")
    print(f"  Entries:  {size.count}")
    print(f"  Size:     {_format_bytes(size.bytes)}")
    return 0


async def _cmd_owners(args: argparse.Namespace, settings) -> int:
    store = _open_store(settings)
    try:
        owners = await store.list_owners()
    finally:
        store.close()

    if not owners:
        print("Cache is empty")
        return 0
    for owner in owners:
        print(
            f"  {owner.owner_id:<12} {owner.owner_label:<32} "
            f"{owner.item_count:>5} items  {_format_bytes(owner.size_bytes):>10}  "
            f"since {owner.cached_at:%Y-%m-%d %H:%M}"
        )
    return 0


async def _cmd_list(args: argparse.Namespace, settings) -> int:
    store = _open_store(settings)
    try:
        entries = await store.list_by_owner(args.owner_id)
    finally:
        store.close()

    if not entries:
        print(f"No entries for owner {args.owner_id}")
        return 1
    for meta in entries:
        print(
            f"  {meta.key.item_id:<12} {_format_bytes(meta.size_bytes):>10}  "
            f"{meta.cached_at:%Y-%m-%d %H:%M}  {meta.source_locator}"
        )
    return 0


async def _cmd_purge(args: argparse.Namespace, settings) -> int:
    store = _open_store(settings)
    try:
        if args.all:
            removed = await store.delete_all()
        else:
            removed = await store.delete_owner(args.owner_id)
    finally:
        store.close()

    print(f"Deleted {removed} entries")
    return 0


async def _cmd_evict(args: argparse.Namespace, settings) -> int:
    from gradecache.api.facade import OfflineCache

    cache = OfflineCache.from_settings(settings, _no_transfer)
    try:
        removed = await cache.evict_expired()
    finally:
        await cache.close()

    print(f"Evicted {removed} entries older than {settings.cache_max_age_days} days")
    return 0


async def _cmd_sync(args: argparse.Namespace, settings) -> int:
    """Download every manifest item not yet cached."""
    from gradecache.api.facade import OfflineCache
    from gradecache.api.models import SyncManifest
    from gradecache.fetch.http_transfer import AiohttpTransfer

    manifest_path: Path = args.manifest
    if not manifest_path.is_file():
        logger.error("Manifest not found: %s", manifest_path)
        return 1

    manifest = SyncManifest.from_file(manifest_path)
    if args.concurrency is not None:
        manifest.concurrency_limit = args.concurrency
    request = manifest.to_request(auth_capability=args.token)

    async with AiohttpTransfer(timeout_s=settings.download_timeout_s) as transfer:
        cache = OfflineCache.from_settings(settings, transfer)
        await cache.open()
        try:
            state = await cache.sync(request)
        finally:
            await cache.close()

    print(f"\nSync complete for owner {state.owner_id}:")
    print(f"  Items:      {state.total}")
    print(f"  Cached:     {state.succeeded}")
    print(f"  Failed:     {state.failed}")
    print(f"  Cancelled:  {state.cancelled}")
    for failure in state.failures:
        print(f"    - {failure.item_ref}: {failure.reason}")
    return 0 if state.failed == 0 else 1


async def _no_transfer(source_locator: str, auth: object) -> bytes:
    raise RuntimeError("downloads are not available in this command")


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def _setup_logging(settings, verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from gradecache.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format="text",
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    # Quiet noisy libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
