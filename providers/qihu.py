"""
360 wallpaper provider (wallpaper.apc.360.cn).

Picks a random category and a random offset inside it. The API returns
1600x900 links; the 2560x1440 rendition lives at the same path with a
different size token.
"""

import logging
import random

import requests

from models import Item, Source
from providers.base import ProviderClient

log = logging.getLogger(__name__)

QIHU_API = "http://wallpaper.apc.360.cn/index.php"
MAX_RANDOM_START = 500


class QihuProvider(ProviderClient):
    source = Source.QIHU360

    def __init__(
        self,
        categories: dict[str, str],
        session: requests.Session | None = None,
        user_agent: str = "wallstream/0.1",
        rng: random.Random | None = None,
    ):
        super().__init__(session, user_agent)
        self._categories = categories or {"5": "landscape"}
        self._rng = rng or random.Random()

    def fetch(self, batch_size: int, timeout: float = 30) -> list[Item]:
        category = self._rng.choice(sorted(self._categories))
        start = self._rng.randint(0, MAX_RANDOM_START)
        data = self._get_json(
            QIHU_API,
            timeout,
            params={
                "c": "WallPaper",
                "a": "getAppsByCategory",
                "cid": category,
                "start": start,
                "count": max(1, batch_size),
                "from": "360chrome",
            },
        )

        entries = data.get("data") or []
        items = []
        for entry in entries:
            item = parse_entry(entry, self._categories.get(category, ""))
            if item:
                items.append(item)
        log.debug(f"360 category {category} @{start}: {len(items)} images")
        return items[:batch_size]


def parse_entry(entry: dict, category_name: str = "") -> Item | None:
    url_1600 = entry.get("img_1600_900", "")
    thumb = entry.get("url_thumb", "")
    if not url_1600 or not thumb:
        return None

    return Item(
        source=Source.QIHU360,
        content_url=url_1600.replace("1600_900_85", "2560_1440_100"),
        preview_url=thumb,
        title=entry.get("utag") or category_name or "360 wallpaper",
        attribution="360 wallpaper",
    )
