"""
Click recording: normalize a raw observation and append it to the event log.

Classification never fails a write. Anything missing or unparseable is
stored as "Unknown" (or "Direct" for the referrer), because a lost click is
worse than an imprecise one.
"""

import asyncio
import ipaddress
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

from shortlink_app.config import settings
from shortlink_app.logging_config import get_logger
from shortlink_app.queue.models import ClickObservation
from shortlink_app.schemas.records import ClickRecord, DIRECT, UNKNOWN
from shortlink_app.services.geo import CountryResolver, NullCountryResolver
from shortlink_app.storage.strategies import StorageStrategy

logger = get_logger(__name__)

MAX_USER_AGENT_LENGTH = 1024
MAX_REFERRER_LENGTH = 255

# (name, markers that must appear, markers that must not appear)
# Chrome-based browsers also send "chrome", and Chrome also sends "safari",
# so each rule excludes the markers of the browsers it would swallow.
BROWSER_RULES: Tuple[Tuple[str, Tuple[str, ...], Tuple[str, ...]], ...] = (
    ("Chrome", ("chrome", "crios"), ("edg", "opr", "opera")),
    ("Firefox", ("firefox", "fxios"), ()),
    ("Safari", ("safari",), ("chrome", "crios", "chromium")),
    ("Edge", ("edg",), ()),
    ("Opera", ("opr", "opera"), ()),
)

# iOS and Android before macOS/Linux: their strings say "like Mac OS X" / "Linux"
OS_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Windows", ("windows",)),
    ("iOS", ("iphone", "ipad", "ipod", "ios")),
    ("Android", ("android",)),
    ("macOS", ("mac",)),
    ("Linux", ("linux",)),
)

MOBILE_MARKERS = ("mobile", "android", "iphone")
TABLET_MARKERS = ("tablet", "ipad")


@dataclass(frozen=True)
class ClientInfo:
    browser: str = UNKNOWN
    os: str = UNKNOWN
    device: str = UNKNOWN


def parse_user_agent(user_agent: Optional[str]) -> ClientInfo:
    """
    Classify a user-agent string with ordered substring rules.

    The first matching rule wins. Device is Mobile, then Tablet, else
    Desktop; an empty string leaves every field Unknown.
    """
    if not user_agent or not user_agent.strip():
        return ClientInfo()
    ua = user_agent.lower()

    browser = UNKNOWN
    for name, required, excluded in BROWSER_RULES:
        if any(marker in ua for marker in required) and not any(marker in ua for marker in excluded):
            browser = name
            break

    os_name = UNKNOWN
    for name, markers in OS_RULES:
        if any(marker in ua for marker in markers):
            os_name = name
            break

    if any(marker in ua for marker in MOBILE_MARKERS):
        device = "Mobile"
    elif any(marker in ua for marker in TABLET_MARKERS):
        device = "Tablet"
    else:
        device = "Desktop"

    return ClientInfo(browser=browser, os=os_name, device=device)


def normalize_referrer(referrer: Optional[str]) -> str:
    """Hostname of the referrer, or "Direct" when absent or unparseable."""
    if not referrer or not referrer.strip():
        return DIRECT
    try:
        hostname = urlparse(referrer.strip()).hostname
    except ValueError:
        return DIRECT
    if not hostname:
        return DIRECT
    return hostname[:MAX_REFERRER_LENGTH]


def normalize_ip(ip: Optional[str], anonymize: bool = False) -> Optional[str]:
    """
    Canonical form of a client IP, or None when it is not an address.

    With ``anonymize`` the host part is zeroed (IPv4 /24, IPv6 /48).
    """
    if not ip:
        return None
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    if anonymize:
        prefix = 24 if address.version == 4 else 48
        network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
        address = network.network_address
    return str(address)


class ClickRecorder:
    """
    Turns ClickObservations into stored ClickRecords.

    After each append the link is marked dirty on the aggregation
    scheduler, which recomputes its snapshot shortly after.
    """

    def __init__(
        self,
        storage: StorageStrategy,
        scheduler=None,
        country_resolver: Optional[CountryResolver] = None,
        anonymize_ip: bool = None
    ):
        """
        Args:
            storage: Where click events are appended
            scheduler: AggregationScheduler notified after each append
            country_resolver: Geo-IP collaborator for observations without a country
            anonymize_ip: Truncate stored IPs (defaults to settings)
        """
        self.storage = storage
        self.scheduler = scheduler
        self.country_resolver = country_resolver or NullCountryResolver()
        self.anonymize_ip = settings.anonymize_ip if anonymize_ip is None else anonymize_ip

    async def record(self, link_id: str, observation: ClickObservation) -> ClickRecord:
        """
        Append one click event for ``link_id``.

        Raises:
            StorageError: the append failed; the caller keeps the
                observation and retries
        """
        click = await self.build_click(link_id, observation)
        stored = await self.storage.append_click(click)
        if self.scheduler is not None:
            self.scheduler.mark_dirty(link_id)
        return stored

    async def build_click(self, link_id: str, observation: ClickObservation) -> ClickRecord:
        client = parse_user_agent(observation.user_agent)
        country = observation.country or await self._lookup_country(observation.ip_address)
        user_agent = observation.user_agent[:MAX_USER_AGENT_LENGTH] if observation.user_agent else None

        return ClickRecord(
            link_id=link_id,
            # The geo lookup uses the full address; only the stored copy is truncated
            ip_address=normalize_ip(observation.ip_address, anonymize=self.anonymize_ip),
            user_agent=user_agent,
            referrer=normalize_referrer(observation.referrer),
            country=country.upper()[:2] if country else None,
            device=client.device,
            browser=client.browser,
            os=client.os,
            clicked_at=observation.timestamp,
        )

    async def _lookup_country(self, ip: Optional[str]) -> Optional[str]:
        if not ip:
            return None
        try:
            # Providers may block on network I/O
            return await asyncio.to_thread(self.country_resolver.lookup, ip)
        except Exception as e:
            logger.warning(f"Country lookup failed for {ip}: {e}")
            return None
