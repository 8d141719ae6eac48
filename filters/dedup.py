"""
Content-identity dedup. No network, no storage writes, just set logic.

An item is a duplicate if its content_url is already known to the store
or appeared earlier in the same batch. First occurrence in fetch order
wins; no provider is preferred over another.
"""

from dataclasses import dataclass, field

from models import Item, Source
from storage.db import ContentStore

SCOPE_GLOBAL = "global"
SCOPE_SOURCE = "source"


@dataclass
class DedupResult:
    unique: list[Item] = field(default_factory=list)
    duplicates: list[Item] = field(default_factory=list)
    invalid: list[Item] = field(default_factory=list)   # empty content_url


def drop_invalid(items: list[Item]) -> tuple[list[Item], list[Item]]:
    """Split off items with no content URL. Returns (valid, invalid)."""
    valid, invalid = [], []
    for item in items:
        (valid if item.content_url and item.content_url.strip() else invalid).append(item)
    return valid, invalid


def dedupe(candidates: list[Item], known_urls: set[str]) -> DedupResult:
    """Keep the first occurrence of each content_url not in `known_urls`."""
    valid, invalid = drop_invalid(candidates)
    result = DedupResult(invalid=invalid)
    seen = set(known_urls)
    for item in valid:
        if item.content_url in seen:
            result.duplicates.append(item)
            continue
        seen.add(item.content_url)
        result.unique.append(item)
    return result


class Deduplicator:
    """Dedup against the store. Scope decides which stored URLs count."""

    def __init__(self, store: ContentStore, scope: str = SCOPE_GLOBAL):
        if scope not in (SCOPE_GLOBAL, SCOPE_SOURCE):
            raise ValueError(f"Unknown dedup scope: '{scope}'. Use 'global' or 'source'.")
        self._store = store
        self.scope = scope

    def filter(self, candidates: list[Item], source: Source | None = None) -> DedupResult:
        if self.scope == SCOPE_SOURCE and source is not None:
            known = self._store.known_urls(source)
        else:
            known = self._store.known_urls()
        return dedupe(candidates, known)
