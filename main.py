#!/usr/bin/env python3
"""
wallstream: wallpaper aggregation and prefetch streaming.

Usage:
    python main.py collect [--source S] [--force]   # One aggregation run per source
    python main.py stream [--rounds N] [--mode M]   # Drive the prefetch stream
    python main.py list [--source S] [--pinned]     # Show stored wallpapers
    python main.py pin ID                           # Toggle the pinned flag
    python main.py remove ID                        # Delete one wallpaper
    python main.py clear-source S                   # Delete everything from a source
    python main.py stats                            # Show store stats
    python main.py cache {stats,clear,prune}        # Manage the local image cache
    python main.py download ID [--preview]          # Cache an image locally
    python main.py apply ID                         # Hand a wallpaper to the applier
    python main.py serve                            # Start the read-only API server
"""

import argparse
import logging
import sys

from config import Config, load_config
from delivery import create_applier, deliver_cli, deliver_notice
from filters import Deduplicator
from models import Item, Source
from pipeline import Aggregator, StreamMode, StreamScheduler
from providers import NetworkProbe, create_providers
from storage import CacheWriteFailed, ContentStore, DiskCache, DownloadFailed, EvictionPolicy, StorageUnavailable

log = logging.getLogger("wallstream")


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ── Wiring ──

def build_store(config: Config) -> ContentStore:
    return ContentStore(config.db_path)


def build_cache(config: Config) -> DiskCache:
    return DiskCache(
        config.cache_dir,
        ceiling_bytes=config.cache_ceiling_bytes,
        user_agent=config.user_agent,
    )


def build_aggregator(config: Config, store: ContentStore) -> Aggregator:
    return Aggregator(
        store,
        providers=create_providers(config),
        deduplicator=Deduplicator(store, scope=config.dedup_scope),
        eviction=EvictionPolicy(
            store,
            per_source_cap=config.per_source_cap,
            global_cap=config.global_cap,
            enabled=config.auto_clean,
        ),
        sources=config.sources,
        fetch_timeout=config.fetch_timeout,
    )


def build_scheduler(config: Config, aggregator: Aggregator, mode: str | None = None) -> StreamScheduler:
    return StreamScheduler(
        aggregator,
        mode=StreamMode(mode or config.stream_mode),
        prefetch_threshold=config.prefetch_threshold,
        failure_threshold=config.failure_threshold,
        network_probe=NetworkProbe(config.network_probe_url),
        on_notice=deliver_notice,
    )


def _parse_source(value: str) -> Source:
    try:
        return Source(value)
    except ValueError:
        choices = ", ".join(s.value for s in Source)
        raise argparse.ArgumentTypeError(f"unknown source '{value}' (choose from {choices})")


def _require_item(store: ContentStore, item_id: str) -> Item:
    item = store.get(item_id)
    if item is None:
        print(f"No wallpaper with id {item_id}", file=sys.stderr)
        sys.exit(1)
    return item


# ── Commands ──

def cmd_collect(config, store, source: Source | None = None, force: bool = False) -> int:
    """One aggregation run per source. Returns how many items were saved."""
    aggregator = build_aggregator(config, store)
    if not aggregator.sources:
        print("No sources configured.", file=sys.stderr)
        return 0

    if source is not None:
        if source not in aggregator.sources:
            print(f"Source {source.value} is disabled or missing its API key.", file=sys.stderr)
            return 0
        try:
            outcomes = {source: aggregator.run(source, force_refresh=force)}
        except StorageUnavailable as e:
            log.error(f"Collect failed for {source.value}: {e}")
            sys.exit(1)
    else:
        outcomes = aggregator.run_many(force_refresh=force)

    for outcome in outcomes.values():
        deliver_cli(outcome)

    saved = sum(o.saved for o in outcomes.values())
    print(f"Collected: {saved} new, {store.count()} stored")
    return saved


def cmd_stream(config, store, rounds: int = 3, mode: str | None = None):
    """
    Drive the prefetch stream from the terminal. Each time the stream goes
    idle the simulated consumer jumps to the last item, which is what
    triggers the next round.
    """
    aggregator = build_aggregator(config, store)
    if not aggregator.sources:
        print("No sources configured.", file=sys.stderr)
        return

    with build_scheduler(config, aggregator, mode) as scheduler:
        unsubscribe = scheduler.sequence.subscribe(
            lambda index, item: print(f"{index:>4}  {item.source.value:<9} {item.title or item.content_url}")
        )
        try:
            scheduler.request_refresh()
            # The scheduler refills on its own while the buffer is short
            while scheduler.rounds_started < rounds:
                if scheduler.wait_idle(timeout=1.0):
                    if not scheduler.report_position(len(scheduler.sequence) - 1):
                        break
        finally:
            unsubscribe()

    print(f"Streamed {len(scheduler.sequence)} items in {scheduler.rounds_started} rounds")


def cmd_list(config, store, args):
    pinned = True if args.pinned else False if args.unpinned else None
    items = store.query(source=args.source, pinned=pinned, limit=args.limit, offset=args.offset)
    deliver_cli(items)


def cmd_pin(config, store, item_id: str):
    if not store.toggle_pin(item_id):
        print(f"No wallpaper with id {item_id}", file=sys.stderr)
        sys.exit(1)
    item = store.get(item_id)
    print(f"{item_id}: {'pinned' if item.pinned else 'unpinned'}")


def cmd_remove(config, store, item_id: str):
    if not store.delete(item_id):
        print(f"No wallpaper with id {item_id}", file=sys.stderr)
        sys.exit(1)
    print(f"Removed {item_id}")


def cmd_clear_source(config, store, source: Source):
    removed = store.delete_source(source)
    print(f"Removed {removed} items from {source.value}")


def cmd_stats(config, store):
    """Print store stats."""
    stats = store.get_stats()
    print(f"Total items: {stats['total_items']} ({stats['pinned_items']} pinned)")
    for source, count in stats["by_source"].items():
        print(f"  {source}: {count}")


def cmd_cache(config, action: str):
    cache = build_cache(config)
    match action:
        case "stats":
            deliver_cli(cache.stats())
        case "clear":
            cache.clear()
            print("Cache cleared.")
        case "prune":
            removed = cache.prune()
            print(f"Pruned {removed} files.")
            deliver_cli(cache.stats())


def cmd_download(config, store, item_id: str, preview: bool = False):
    item = _require_item(store, item_id)
    cache = build_cache(config)
    url = item.preview_url if preview else item.content_url
    try:
        path = cache.download(url, preview=preview, timeout=config.download_timeout)
    except (DownloadFailed, CacheWriteFailed) as e:
        log.error(f"Download failed: {e}")
        sys.exit(1)

    if preview:
        store.set_local_paths(item.id, local_preview_path=str(path))
    else:
        store.set_local_paths(item.id, local_path=str(path))
    print(path)


def cmd_apply(config, store, item_id: str):
    item = _require_item(store, item_id)
    cache = build_cache(config)
    try:
        path = cache.download(item.content_url, timeout=config.download_timeout)
    except (DownloadFailed, CacheWriteFailed) as e:
        log.error(f"Cannot apply {item_id}: {e}")
        sys.exit(1)
    store.set_local_paths(item.id, local_path=str(path))

    if not create_applier(config).apply(path, item.title):
        sys.exit(1)


def cmd_serve(config, args):
    """Start the read-only API server."""
    from api.server import create_app

    if not config.db_path.exists():
        print(f"No database at {config.db_path}. Run 'collect' first.", file=sys.stderr)
        sys.exit(1)

    app = create_app(db_path=config.db_path)
    print(f"Starting server at http://{args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.verbose)


def cli():
    parser = argparse.ArgumentParser(
        prog="wallstream",
        description="Aggregate wallpapers from several sources into one deduplicated stream",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    sub = parser.add_subparsers(dest="command", help="Command to run")

    collect_parser = sub.add_parser("collect", parents=[common], help="Fetch new wallpapers")
    collect_parser.add_argument("--source", type=_parse_source, default=None, help="Only this source")
    collect_parser.add_argument("--force", action="store_true", help="Ignore the refresh interval")

    stream_parser = sub.add_parser("stream", parents=[common], help="Run the prefetch stream")
    stream_parser.add_argument("--rounds", type=int, default=3, help="Rounds to run (default 3)")
    stream_parser.add_argument(
        "--mode", choices=[m.value for m in StreamMode], default=None,
        help="balanced (one per source per round) or paged",
    )

    list_parser = sub.add_parser("list", parents=[common], help="Show stored wallpapers")
    list_parser.add_argument("--source", type=_parse_source, default=None)
    pin_group = list_parser.add_mutually_exclusive_group()
    pin_group.add_argument("--pinned", action="store_true", help="Only pinned")
    pin_group.add_argument("--unpinned", action="store_true", help="Only unpinned")
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.add_argument("--offset", type=int, default=0)

    pin_parser = sub.add_parser("pin", parents=[common], help="Toggle the pinned flag")
    pin_parser.add_argument("id")

    remove_parser = sub.add_parser("remove", parents=[common], help="Delete one wallpaper")
    remove_parser.add_argument("id")

    clear_parser = sub.add_parser("clear-source", parents=[common], help="Delete a source's wallpapers")
    clear_parser.add_argument("source", type=_parse_source)

    sub.add_parser("stats", parents=[common], help="Show store stats")

    cache_parser = sub.add_parser("cache", parents=[common], help="Manage the image cache")
    cache_parser.add_argument("action", choices=["stats", "clear", "prune"])

    download_parser = sub.add_parser("download", parents=[common], help="Cache an image locally")
    download_parser.add_argument("id")
    download_parser.add_argument("--preview", action="store_true", help="Fetch the preview instead")

    apply_parser = sub.add_parser("apply", parents=[common], help="Set a wallpaper")
    apply_parser.add_argument("id")

    serve_parser = sub.add_parser("serve", parents=[common], help="Start the read-only API server")
    serve_parser.add_argument("--port", type=int, default=5002, help="Port (default 5002)")
    serve_parser.add_argument("--host", type=str, default="127.0.0.1", help="Host (default 127.0.0.1)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose)
    config = load_config()

    # serve and cache don't need the store. serve opens its own read-only connections
    if args.command == "serve":
        cmd_serve(config, args)
        return
    if args.command == "cache":
        cmd_cache(config, args.action)
        return

    store = build_store(config)

    try:
        match args.command:
            case "collect":
                cmd_collect(config, store, args.source, args.force)
            case "stream":
                cmd_stream(config, store, args.rounds, args.mode)
            case "list":
                cmd_list(config, store, args)
            case "pin":
                cmd_pin(config, store, args.id)
            case "remove":
                cmd_remove(config, store, args.id)
            case "clear-source":
                cmd_clear_source(config, store, args.source)
            case "stats":
                cmd_stats(config, store)
            case "download":
                cmd_download(config, store, args.id, args.preview)
            case "apply":
                cmd_apply(config, store, args.id)
            case _:
                parser.print_help()
    finally:
        store.close()


if __name__ == "__main__":
    cli()
