"""
Pexels curated photos provider.

The curated feed has thousands of photos; each call jumps to a random page.
Landscape photos are always kept. Portrait ones only when they are at
least 4K, since anything smaller looks bad stretched across a desktop.
"""

import logging
import random

import requests

from models import Item, Source
from providers.base import ProviderClient

log = logging.getLogger(__name__)

PEXELS_API = "https://api.pexels.com/v1"
MAX_RANDOM_PAGE = 100


class PexelsProvider(ProviderClient):
    source = Source.PEXELS

    def __init__(
        self,
        api_key: str,
        session: requests.Session | None = None,
        user_agent: str = "wallstream/0.1",
        rng: random.Random | None = None,
    ):
        super().__init__(session, user_agent)
        self._session.headers["Authorization"] = api_key
        self._rng = rng or random.Random()

    def fetch(self, batch_size: int, timeout: float = 30) -> list[Item]:
        page = self._rng.randint(1, MAX_RANDOM_PAGE)
        # Over-ask: portrait photos get filtered out below
        per_page = min(max(batch_size * 3, 5), 80)
        data = self._get_json(
            f"{PEXELS_API}/curated",
            timeout,
            params={"page": page, "per_page": per_page},
        )

        items = []
        for photo in data.get("photos", []):
            item = parse_photo(photo)
            if item:
                items.append(item)
        log.debug(f"Pexels page {page}: {len(items)}/{len(data.get('photos', []))} usable")
        return items[:batch_size]


def is_usable(width: int, height: int) -> bool:
    if width > height:
        return True
    return width >= 2160 or height >= 3840


def parse_photo(photo: dict) -> Item | None:
    src = photo.get("src") or {}
    original = src.get("original", "")
    medium = src.get("medium", "")
    if not original:
        return None
    if not is_usable(photo.get("width", 0), photo.get("height", 0)):
        return None

    photographer = photo.get("photographer") or "Unknown"
    return Item(
        source=Source.PEXELS,
        content_url=original,
        preview_url=medium,
        title=photo.get("alt") or "Pexels curated",
        attribution=f"Photo by {photographer} on Pexels",
    )
