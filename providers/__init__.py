from providers.base import ProviderClient, ProviderUnavailable, RateLimited
from providers.bing import BingProvider
from providers.factory import create_providers
from providers.network import NetworkProbe, NetworkUnreachable
from providers.pexels import PexelsProvider
from providers.qihu import QihuProvider
from providers.ratelimit import RequestQuota
from providers.unsplash import UnsplashProvider

__all__ = [
    "ProviderClient",
    "ProviderUnavailable",
    "RateLimited",
    "BingProvider",
    "PexelsProvider",
    "QihuProvider",
    "UnsplashProvider",
    "RequestQuota",
    "NetworkProbe",
    "NetworkUnreachable",
    "create_providers",
]
