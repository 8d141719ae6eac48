"""
Bing daily wallpaper provider. Uses the HPImageArchive JSON endpoint.

Strategy:
- Pick a random market and day offset each call, so consecutive rounds
  don't keep returning the same image of the day
- Full image is the UHD rendition, preview the 1920x1080 one
- No auth required
"""

import logging
import random

import requests

from models import Item, Source
from providers.base import ProviderClient

log = logging.getLogger(__name__)

BING_HOST = "https://www.bing.com"
BING_ARCHIVE_API = f"{BING_HOST}/HPImageArchive.aspx"
MAX_DAYS_BACK = 7       # archive only serves idx 0-7
MAX_PER_REQUEST = 8


class BingProvider(ProviderClient):
    source = Source.BING

    def __init__(
        self,
        markets: list[str],
        session: requests.Session | None = None,
        user_agent: str = "wallstream/0.1",
        rng: random.Random | None = None,
    ):
        super().__init__(session, user_agent)
        self._markets = markets or ["en-US"]
        self._rng = rng or random.Random()

    def fetch(self, batch_size: int, timeout: float = 30) -> list[Item]:
        market = self._rng.choice(self._markets)
        days_back = self._rng.randint(0, MAX_DAYS_BACK)
        data = self._get_json(
            BING_ARCHIVE_API,
            timeout,
            params={
                "format": "js",
                "idx": days_back,
                "n": max(1, min(batch_size, MAX_PER_REQUEST)),
                "mkt": market,
            },
        )

        items = []
        for image in data.get("images", []):
            item = parse_image(image, market)
            if item:
                items.append(item)
        log.debug(f"Bing {market} idx={days_back}: {len(items)} images")
        return items[:batch_size]


def parse_image(image: dict, market: str) -> Item | None:
    """Turn one archive entry into an Item."""
    url_base = image.get("urlbase", "")
    if not url_base:
        return None

    return Item(
        source=Source.BING,
        content_url=f"{BING_HOST}{url_base}_UHD.jpg",
        preview_url=f"{BING_HOST}{url_base}_1920x1080.jpg",
        title=image.get("title") or "Bing daily wallpaper",
        attribution=image.get("copyright") or f"Bing ({market})",
    )
