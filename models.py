"""
Core data types. No behavior, just shapes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import uuid


class Source(Enum):
    BING = "bing"
    QIHU360 = "qihu360"
    PEXELS = "pexels"
    UNSPLASH = "unsplash"


class Notice(Enum):
    """User-visible signals raised by the stream scheduler."""
    CHECK_NETWORK = "check_network"            # throttled, after N empty rounds
    NETWORK_UNREACHABLE = "network_unreachable"  # immediate, pre-flight failed


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Item:
    """A single wallpaper offered by a source."""
    source: Source
    content_url: str        # full resolution, the content identity
    preview_url: str = ""   # falls back to content_url
    title: str = ""
    attribution: str = ""
    id: str = field(default_factory=_new_id)
    local_path: str | None = None
    local_preview_path: str | None = None
    added_at: datetime | None = None    # set once, on first persistence
    pinned: bool = False

    def __post_init__(self):
        if not self.preview_url:
            self.preview_url = self.content_url

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source.value,
            "content_url": self.content_url,
            "preview_url": self.preview_url,
            "title": self.title,
            "attribution": self.attribution,
            "local_path": self.local_path,
            "local_preview_path": self.local_preview_path,
            "added_at": self.added_at.isoformat() if self.added_at else None,
            "pinned": self.pinned,
        }

    def __repr__(self) -> str:
        return f"Item({self.source.value}, {self.content_url[:60]}, pinned={self.pinned})"


@dataclass
class AggregationOutcome:
    """What one aggregation run did. Returned to the caller, never persisted."""
    source: Source
    is_refreshed: bool = False
    fetched: int = 0            # valid items returned by the provider
    new: int = 0                # left after dedup
    duplicates: int = 0
    saved: int = 0              # actually inserted
    evicted: int = 0
    total: int = 0              # store size after the run
    total_by_source: dict[str, int] = field(default_factory=dict)
    accepted: list[Item] = field(default_factory=list)   # newly persisted, provider order
    stored: list[Item] = field(default_factory=list)     # persisted set for the source

    def summary(self) -> str:
        if not self.is_refreshed:
            return f"{self.source.value}: up to date ({len(self.stored)} stored)"
        return (
            f"{self.source.value}: fetched {self.fetched}, new {self.new}, "
            f"duplicates {self.duplicates}, saved {self.saved}, "
            f"evicted {self.evicted}, total {self.total}"
        )


@dataclass
class CacheStats:
    """Snapshot of the local image cache."""
    size_bytes: int
    file_count: int
    ceiling_bytes: int
    path: str

    @property
    def is_full(self) -> bool:
        return self.size_bytes >= self.ceiling_bytes

    def to_dict(self) -> dict:
        return {
            "size_bytes": self.size_bytes,
            "file_count": self.file_count,
            "ceiling_bytes": self.ceiling_bytes,
            "path": self.path,
            "is_full": self.is_full,
        }
