"""
Output delivery. Everything the user sees on the terminal goes through here.

CLI is the primary interface. Notices from the stream scheduler are the
only unsolicited output.
"""

import logging
import sys

from models import AggregationOutcome, CacheStats, Item, Notice

log = logging.getLogger(__name__)

SEPARATOR = "─" * 60

NOTICE_TEXT = {
    Notice.CHECK_NETWORK: "Loading keeps failing. Please check your network connection.",
    Notice.NETWORK_UNREACHABLE: "No network connection. Check your network settings.",
}


def deliver_cli(content: AggregationOutcome | CacheStats | Item | list[Item]):
    """Print to stdout. That's it."""
    if isinstance(content, AggregationOutcome):
        status = "refreshed" if content.is_refreshed else "cached"
        print(f"[{status}] {content.summary()}")

    elif isinstance(content, CacheStats):
        print(f"Cache: {content.path}")
        print(f"  files: {content.file_count}")
        print(f"  size:  {content.size_bytes / 1024 / 1024:.1f} MB / "
              f"{content.ceiling_bytes / 1024 / 1024:.0f} MB"
              f"{'  (full)' if content.is_full else ''}")

    elif isinstance(content, Item):
        print(format_item(content))

    elif isinstance(content, list):
        if not content:
            print("No wallpapers stored.")
            return
        print(SEPARATOR)
        for item in content:
            print(format_item(item))
        print(SEPARATOR)
        print(f"  {len(content)} items")


def format_item(item: Item) -> str:
    pin = "*" if item.pinned else " "
    added = item.added_at.strftime("%Y-%m-%d %H:%M") if item.added_at else "-"
    title = item.title or "(untitled)"
    line = f"{pin} {item.id}  {item.source.value:<9} {added}  {title[:50]}"
    if item.local_path:
        line += f"\n    cached: {item.local_path}"
    return line


def deliver_notice(notice: Notice):
    """User-visible stream notice. Goes to stderr so it doesn't mix with item output."""
    text = NOTICE_TEXT.get(notice, notice.value)
    log.warning(f"Notice: {notice.value}")
    print(f"\n!! {text}\n", file=sys.stderr)
