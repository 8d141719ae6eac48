"""
Unsplash random photo provider.

Demo access keys are heavily rate limited, so this client owns a
RequestQuota. When the quota is spent, fetch() returns [] without a
network call. Only landscape photos are kept.
"""

import logging

import requests

from models import Item, Source
from providers.base import ProviderClient
from providers.ratelimit import RequestQuota

log = logging.getLogger(__name__)

UNSPLASH_API = "https://api.unsplash.com"
MAX_PER_REQUEST = 30


class UnsplashProvider(ProviderClient):
    source = Source.UNSPLASH

    def __init__(
        self,
        access_key: str,
        quota: RequestQuota,
        session: requests.Session | None = None,
        user_agent: str = "wallstream/0.1",
    ):
        super().__init__(session, user_agent)
        self._session.headers["Authorization"] = f"Client-ID {access_key}"
        self._session.headers["Accept-Version"] = "v1"
        self.quota = quota

    def fetch(self, batch_size: int, timeout: float = 30) -> list[Item]:
        if not self.quota.try_acquire():
            wait = self.quota.retry_after()
            log.info(
                f"Unsplash quota spent ({self.quota.max_requests}/window), "
                f"skipping; next slot in {int(wait.total_seconds() // 60)} min"
            )
            return []

        data = self._get_json(
            f"{UNSPLASH_API}/photos/random",
            timeout,
            expect=(list, dict),
            params={
                "count": max(1, min(batch_size, MAX_PER_REQUEST)),
                "orientation": "landscape",
            },
        )
        if not isinstance(data, list):
            data = [data]

        items = []
        for photo in data:
            item = parse_photo(photo)
            if item:
                items.append(item)
        log.debug(f"Unsplash: {len(items)}/{len(data)} landscape photos")
        return items[:batch_size]


def parse_photo(photo: dict) -> Item | None:
    urls = photo.get("urls") or {}
    full = urls.get("regular", "")
    if not full:
        return None
    if photo.get("width", 0) < photo.get("height", 0):
        return None

    user = (photo.get("user") or {}).get("name") or "Unknown"
    title = photo.get("description") or photo.get("alt_description") or "Unsplash photo"
    return Item(
        source=Source.UNSPLASH,
        content_url=full,
        preview_url=urls.get("small", ""),
        title=title,
        attribution=f"Photo by {user} on Unsplash",
    )
