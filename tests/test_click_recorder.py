"""
Tests for click normalization and recording.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from shortlink_app.queue.models import ClickObservation
from shortlink_app.schemas.records import LinkRecord
from shortlink_app.services.analytics_aggregator import AggregationScheduler, AnalyticsAggregator
from shortlink_app.services.click_recorder import (
    ClickRecorder,
    normalize_ip,
    normalize_referrer,
    parse_user_agent,
)
from shortlink_app.services.geo import CountryResolver, HttpCountryResolver, is_public_ip

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/115.0.1901.188"
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:109.0) Gecko/20100101 Firefox/115.0"
IPAD_SAFARI = (
    "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.6 Safari/604.1"
)


class FakeCountryResolver(CountryResolver):
    def __init__(self, country=None, error=None):
        self.country = country
        self.error = error
        self.calls = []

    def lookup(self, ip):
        self.calls.append(ip)
        if self.error:
            raise self.error
        return self.country


class TestParseUserAgent:
    """Test ordered user-agent classification"""

    def test_chrome_wins_over_safari_marker(self):
        info = parse_user_agent("Mozilla/5.0 (Windows NT 10.0) Chrome/115 Safari/537")
        assert info.browser == "Chrome"

    def test_desktop_chrome_on_windows(self):
        info = parse_user_agent(CHROME_WINDOWS)
        assert (info.browser, info.os, info.device) == ("Chrome", "Windows", "Desktop")

    def test_mobile_safari_on_ios(self):
        info = parse_user_agent(SAFARI_IPHONE)
        assert (info.browser, info.os, info.device) == ("Safari", "iOS", "Mobile")

    def test_edge_is_not_chrome(self):
        assert parse_user_agent(EDGE_WINDOWS).browser == "Edge"

    def test_firefox_on_linux(self):
        info = parse_user_agent(FIREFOX_LINUX)
        assert (info.browser, info.os) == ("Firefox", "Linux")

    def test_ipad_is_tablet(self):
        assert parse_user_agent(IPAD_SAFARI).device == "Tablet"

    @pytest.mark.parametrize("ua", [None, "", "   "])
    def test_empty_user_agent_is_unknown(self, ua):
        info = parse_user_agent(ua)
        assert (info.browser, info.os, info.device) == ("Unknown", "Unknown", "Unknown")

    def test_unrecognized_user_agent(self):
        info = parse_user_agent("curl/8.1.2")
        assert (info.browser, info.os, info.device) == ("Unknown", "Unknown", "Desktop")


class TestNormalizeReferrer:
    """Test referrer reduction to a hostname"""

    @pytest.mark.parametrize("referrer", [None, "", "not a url", "/relative/path"])
    def test_missing_or_unparseable_is_direct(self, referrer):
        assert normalize_referrer(referrer) == "Direct"

    def test_keeps_only_hostname(self):
        assert normalize_referrer("https://news.ycombinator.com/item?id=1") == "news.ycombinator.com"


class TestNormalizeIp:
    """Test IP canonicalization"""

    def test_invalid_ip_is_dropped(self):
        assert normalize_ip("not-an-ip") is None

    def test_ipv4_anonymized_to_slash_24(self):
        assert normalize_ip("203.0.113.77", anonymize=True) == "203.0.113.0"

    def test_ipv6_anonymized_to_slash_48(self):
        assert normalize_ip("2001:db8:abcd:12::1", anonymize=True) == "2001:db8:abcd::"

    def test_plain_ip_kept(self):
        assert normalize_ip(" 203.0.113.77 ") == "203.0.113.77"


class TestClickRecorder:
    """Test ClickRecorder.record"""

    @pytest.fixture
    def link(self, storage):
        return asyncio.run(storage.add_link(LinkRecord(original_url="https://example.com/a", short_code="abc123")))

    def test_records_normalized_event(self, storage, link):
        recorder = ClickRecorder(storage, country_resolver=FakeCountryResolver("de"))
        observation = ClickObservation(
            link_id=link.id,
            short_code=link.short_code,
            ip_address="203.0.113.7",
            user_agent=CHROME_WINDOWS,
            referrer="https://twitter.com/post/1",
        )

        asyncio.run(recorder.record(link.id, observation))
        [click] = asyncio.run(storage.list_clicks(link.id))

        assert click.browser == "Chrome"
        assert click.device == "Desktop"
        assert click.referrer == "twitter.com"
        assert click.country == "DE"
        assert click.ip_address == "203.0.113.7"

    def test_absent_referrer_is_direct(self, storage, link):
        recorder = ClickRecorder(storage)
        asyncio.run(recorder.record(link.id, ClickObservation(link_id=link.id, short_code=link.short_code)))
        [click] = asyncio.run(storage.list_clicks(link.id))
        assert click.referrer == "Direct"
        assert click.browser == "Unknown"

    def test_geo_failure_does_not_fail_the_write(self, memory_storage):
        link = asyncio.run(memory_storage.add_link(LinkRecord(original_url="https://example.com", short_code="geo1")))
        recorder = ClickRecorder(memory_storage, country_resolver=FakeCountryResolver(error=RuntimeError("down")))
        observation = ClickObservation(link_id=link.id, short_code="geo1", ip_address="203.0.113.7")

        asyncio.run(recorder.record(link.id, observation))

        [click] = asyncio.run(memory_storage.list_clicks(link.id))
        assert click.country is None

    def test_keeps_observation_timestamp(self, memory_storage):
        link = asyncio.run(memory_storage.add_link(LinkRecord(original_url="https://example.com", short_code="ts01")))
        when = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        observation = ClickObservation(link_id=link.id, short_code="ts01", timestamp=when)

        stored = asyncio.run(ClickRecorder(memory_storage).record(link.id, observation))
        assert stored.clicked_at == when

    def test_marks_link_dirty(self, memory_storage):
        link = asyncio.run(memory_storage.add_link(LinkRecord(original_url="https://example.com", short_code="dirty1")))
        scheduler = AggregationScheduler(AnalyticsAggregator(memory_storage))
        recorder = ClickRecorder(memory_storage, scheduler=scheduler)

        asyncio.run(recorder.record(link.id, ClickObservation(link_id=link.id, short_code="dirty1")))
        assert scheduler.pending == 1


class TestGeo:
    """Test the geo-IP collaborator"""

    def test_private_addresses_are_not_looked_up(self):
        assert not is_public_ip("10.0.0.1")
        assert not is_public_ip("127.0.0.1")
        assert not is_public_ip(None)
        assert is_public_ip("8.8.8.8")

    def test_http_resolver_skips_private_ip(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("no request expected")

        monkeypatch.setattr("shortlink_app.services.geo.requests.get", fail)
        resolver = HttpCountryResolver("http://geo.test/{ip}")
        assert resolver.lookup("192.168.1.1") is None

    def test_http_resolver_reads_country_code(self, monkeypatch):
        class Response:
            def raise_for_status(self):
                pass

            def json(self):
                return {"status": "success", "countryCode": "nl"}

        monkeypatch.setattr("shortlink_app.services.geo.requests.get", lambda url, timeout: Response())
        resolver = HttpCountryResolver("http://geo.test/{ip}")
        assert resolver.lookup("8.8.8.8") == "NL"
