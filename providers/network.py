"""
Network pre-flight. One cheap request before a round, so an offline
machine gets a single clear notice instead of N provider failures.
"""

import logging

import requests

log = logging.getLogger(__name__)


class NetworkUnreachable(Exception):
    """No route to the internet; checked before any provider is called."""
    pass


class NetworkProbe:
    def __init__(self, probe_url: str, timeout: float = 5, session: requests.Session | None = None):
        self._probe_url = probe_url
        self._timeout = timeout
        self._session = session or requests.Session()

    def is_available(self) -> bool:
        try:
            self._session.head(self._probe_url, timeout=self._timeout, allow_redirects=False)
            return True
        except requests.ConnectionError as e:
            log.warning(f"Network probe to {self._probe_url} failed: {e}")
            return False
        except requests.RequestException as e:
            # Reached something; a slow or odd reply still means we're online
            log.debug(f"Network probe got {e}, treating network as up")
            return True

    def ensure(self):
        if not self.is_available():
            raise NetworkUnreachable(f"cannot reach {self._probe_url}")
