"""
Base provider interface. All image sources must implement this.
"""

from abc import ABC, abstractmethod

import requests

from models import Item, Source


class ProviderUnavailable(Exception):
    """A single source's fetch failed or timed out."""
    pass


class RateLimited(ProviderUnavailable):
    """The source's request quota is exhausted."""
    pass


class ProviderClient(ABC):
    """
    A provider pulls candidate wallpapers from one remote source.

    Contract:
    - fetch() never blocks past `timeout` (passed straight to requests).
    - Returning [] is normal (empty page, quota exhausted).
    - Failures raise ProviderUnavailable. Callers treat that as zero items.
    - Providers never touch storage. Dedup happens downstream.
    """

    source: Source

    def __init__(self, session: requests.Session | None = None, user_agent: str = "wallstream/0.1"):
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = user_agent

    @abstractmethod
    def fetch(self, batch_size: int, timeout: float = 30) -> list[Item]:
        """Fetch up to `batch_size` candidate items."""
        ...

    def name(self) -> str:
        """Provider name for logging."""
        return self.source.value

    def _get_json(self, url: str, timeout: float, expect: type | tuple = dict, **kwargs):
        """GET and decode JSON, mapping every failure to ProviderUnavailable (429 to RateLimited)."""
        try:
            resp = self._session.get(url, timeout=timeout, **kwargs)
            if resp.status_code == 429:
                raise RateLimited(f"{self.name()}: rate limited (HTTP 429)")
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise ProviderUnavailable(f"{self.name()}: {e}") from e
        except ValueError as e:
            raise ProviderUnavailable(f"{self.name()}: bad JSON: {e}") from e

        if not isinstance(data, expect):
            raise ProviderUnavailable(f"{self.name()}: unexpected payload {type(data).__name__}")
        return data
