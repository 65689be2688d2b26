"""
Country lookup collaborator.

The service only consumes a country code; accuracy and freshness belong to
whatever geo-IP provider is configured. Lookups never raise: any failure
reads as an unknown country.
"""

import ipaddress
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Optional

import requests

from shortlink_app.config import settings
from shortlink_app.logging_config import get_logger

logger = get_logger(__name__)


def is_public_ip(ip: Optional[str]) -> bool:
    """False for missing, malformed, private, loopback and link-local addresses"""
    if not ip:
        return False
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False


class CountryResolver(ABC):
    """Maps an IP address to an ISO 3166-1 alpha-2 code"""

    @abstractmethod
    def lookup(self, ip: Optional[str]) -> Optional[str]:
        pass


class NullCountryResolver(CountryResolver):
    """No provider configured: every country is unknown"""

    def lookup(self, ip: Optional[str]) -> Optional[str]:
        return None


class HttpCountryResolver(CountryResolver):
    """
    JSON-over-HTTP provider (ip-api.com compatible by default).

    ``url_template`` is formatted with ``ip``; the response must carry
    ``countryCode``. Results are memoized per IP.
    """

    def __init__(self, url_template: str, timeout: float = 2.0, cache_size: int = 10000):
        self.url_template = url_template
        self.timeout = timeout
        self._cached_lookup = lru_cache(maxsize=cache_size)(self._fetch)

    def lookup(self, ip: Optional[str]) -> Optional[str]:
        if not is_public_ip(ip):
            return None
        try:
            return self._cached_lookup(ip)
        except (requests.RequestException, ValueError) as e:
            # Not memoized: lru_cache does not store raised lookups
            logger.warning(f"Geo-IP lookup failed for {ip}: {e}")
            return None

    def _fetch(self, ip: str) -> Optional[str]:
        response = requests.get(self.url_template.format(ip=ip), timeout=self.timeout)
        response.raise_for_status()
        data = response.json()

        if data.get("status", "success") != "success":
            return None
        code = data.get("countryCode")
        if isinstance(code, str) and len(code) == 2:
            return code.upper()
        return None


def create_country_resolver(backend: str = None) -> CountryResolver:
    backend = backend or settings.geoip_backend
    if backend == "http":
        return HttpCountryResolver(settings.geoip_url, timeout=settings.geoip_timeout)
    if backend == "null":
        return NullCountryResolver()
    raise ValueError(f"Unknown geo-IP backend: {backend}")
