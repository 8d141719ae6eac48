"""
Provider factory. Reads config, returns the enabled ProviderClients.
"""

import logging

from config.settings import Config
from models import Source
from providers.base import ProviderClient
from providers.bing import BingProvider
from providers.pexels import PexelsProvider
from providers.qihu import QihuProvider
from providers.ratelimit import RequestQuota
from providers.unsplash import UnsplashProvider

log = logging.getLogger(__name__)


def create_providers(config: Config) -> dict[Source, ProviderClient]:
    """Build one client per enabled source. Sources missing an API key are skipped."""
    providers: dict[Source, ProviderClient] = {}

    for source in config.enabled_sources():
        if source == Source.BING:
            providers[source] = BingProvider(config.bing_markets, user_agent=config.user_agent)
        elif source == Source.QIHU360:
            providers[source] = QihuProvider(config.qihu_categories, user_agent=config.user_agent)
        elif source == Source.PEXELS:
            if not config.pexels_api_key:
                log.warning("PEXELS_API_KEY not set, skipping Pexels")
                continue
            providers[source] = PexelsProvider(config.pexels_api_key, user_agent=config.user_agent)
        elif source == Source.UNSPLASH:
            if not config.unsplash_access_key:
                log.warning("UNSPLASH_ACCESS_KEY not set, skipping Unsplash")
                continue
            providers[source] = UnsplashProvider(
                config.unsplash_access_key,
                quota=RequestQuota(config.unsplash_requests_per_hour),
                user_agent=config.user_agent,
            )

    return providers
