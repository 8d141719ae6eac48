"""
Settings for wallstream. `Config` fields default to WALL_* environment
variables (a local .env is loaded first). Source-specific knobs live in the
`SourceSettings` table, keyed by `Source`.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

# Auto-load .env file so you don't need `export $(grep ...)` every time
from dotenv import load_dotenv
load_dotenv()

from models import Source


@dataclass
class SourceSettings:
    """Per-source knobs. The only place source-specific behavior lives."""
    enabled: bool = True
    batch_size: int = 1         # items per source per balanced stream round
    page_size: int = 8          # items per source for paged rounds and `collect`
    refresh_interval: timedelta = timedelta(days=7)


def _disabled_sources() -> set[str]:
    raw = os.environ.get("WALL_DISABLED_SOURCES", "")
    return {s.strip().lower() for s in raw.split(",") if s.strip()}


def _default_sources() -> dict[Source, SourceSettings]:
    disabled = _disabled_sources()
    table = {
        # Bing publishes one image a day; everything else is effectively weekly
        Source.BING: SourceSettings(batch_size=1, page_size=8, refresh_interval=timedelta(hours=24)),
        Source.QIHU360: SourceSettings(batch_size=1, page_size=3),
        Source.PEXELS: SourceSettings(batch_size=1, page_size=5),
        Source.UNSPLASH: SourceSettings(batch_size=1, page_size=5),
    }
    for source, settings in table.items():
        if source.value in disabled:
            settings.enabled = False
    return table


@dataclass
class Config:
    # Storage
    db_path: Path = Path(os.environ.get("WALL_DB_PATH", "data/wallpapers.db"))
    cache_dir: Path = Path(os.environ.get("WALL_CACHE_DIR", "data/cache"))
    cache_ceiling_mb: int = int(os.environ.get("WALL_CACHE_CEILING_MB", "500"))

    # Retention. Pinned items are exempt from both caps.
    per_source_cap: int = int(os.environ.get("WALL_PER_SOURCE_CAP", "100"))
    global_cap: int = int(os.environ.get("WALL_GLOBAL_CAP", "200"))
    auto_clean: bool = os.environ.get("WALL_AUTO_CLEAN", "1") not in ("0", "false", "no")

    # Dedup scope: "global" (any source) or "source" (same source only)
    dedup_scope: str = os.environ.get("WALL_DEDUP_SCOPE", "global")

    # Streaming
    stream_mode: str = os.environ.get("WALL_STREAM_MODE", "balanced")  # "balanced" | "paged"
    prefetch_threshold: int = int(os.environ.get("WALL_PREFETCH_THRESHOLD", "5"))
    failure_threshold: int = int(os.environ.get("WALL_FAILURE_THRESHOLD", "3"))

    # Network
    fetch_timeout: float = float(os.environ.get("WALL_FETCH_TIMEOUT", "30"))
    download_timeout: float = float(os.environ.get("WALL_DOWNLOAD_TIMEOUT", "60"))
    network_probe_url: str = os.environ.get("WALL_NETWORK_PROBE_URL", "https://www.bing.com")
    user_agent: str = os.environ.get("WALL_USER_AGENT", "wallstream/0.1")

    # Hand-off to whatever sets the desktop background, e.g. "feh --bg-fill {path}"
    apply_command: str = os.environ.get("WALL_APPLY_COMMAND", "")

    # API keys: read from env only, never stored
    pexels_api_key: str = os.environ.get("PEXELS_API_KEY", "")
    unsplash_access_key: str = os.environ.get("UNSPLASH_ACCESS_KEY", "")

    # Unsplash demo apps get 50 req/h; stay well under it
    unsplash_requests_per_hour: int = int(os.environ.get("WALL_UNSPLASH_REQUESTS_PER_HOUR", "12"))

    sources: dict[Source, SourceSettings] = field(default_factory=_default_sources)

    # ── Bing markets to sample from ──
    bing_markets: list[str] = field(default_factory=lambda: [
        "zh-CN", "en-US", "ja-JP", "en-GB", "de-DE", "fr-FR",
        "en-AU", "en-CA", "es-ES", "it-IT", "pt-BR", "en-IN",
    ])

    # ── 360 wallpaper categories ──
    qihu_categories: dict[str, str] = field(default_factory=lambda: {
        "26": "anime",
        "11": "games",
        "12": "film",
        "15": "cars",
        "9": "sports",
        "30": "abstract",
        "5": "landscape",
        "10": "animals",
        "38": "architecture",
    })

    @property
    def cache_ceiling_bytes(self) -> int:
        return self.cache_ceiling_mb * 1024 * 1024

    def enabled_sources(self) -> list[Source]:
        return [s for s, settings in self.sources.items() if settings.enabled]


def load_config() -> Config:
    return Config()
