"""
Tests for extraction methods: declarative configs, the JSON-LD routine,
dispatch through extract(), content heuristics, fetching and rate limits.
"""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import requests

from schemas.scraper_config import DeclarativeConfig
from scrapers.base import BaseScraper, get_routine, list_routines, register_routine
from scrapers.content import camp_content_signals, has_camp_content
from scrapers.extraction import (
    ExtractionConfigError,
    NamedRoutine,
    describe_method,
    extract,
    parse_declarative_config,
    resolve_extraction_method,
    run_extraction,
)
from scrapers.fetcher import FetchError, PageFetcher
from scrapers.rate_limiter import ScraperRateLimiter, domain_for_url


LISTING_HTML = """
<html><body>
  <div class="session">
    <h3 class="title">  Lego   Robotics </h3>
    <span class="dates">July 6-10, 2026</span>
    <span class="price">$325</span>
    <a class="register" href="/register/1">Register</a>
  </div>
  <div class="session">
    <h3 class="title">Nature Explorers</h3>
    <span class="dates">July 13-17, 2026</span>
    <span class="price">Spots: 4 left</span>
  </div>
  <div class="session"><span class="dates">no name here</span></div>
</body></html>
"""

CONFIG = {
    "container": "div.session",
    "fields": {
        "name": "h3.title",
        "date_raw": ".dates",
        "price_raw": {"selector": ".price"},
        "registration_url": {"selector": "a.register", "attr": "href"},
    },
    "constants": {"location": "123 Main St, Portland"},
}

JSONLD_HTML = """
<html><head>
<script type="application/ld+json">
{"@context": "https://schema.org", "@graph": [
  {"@type": "Event", "name": "Clay Studio", "identifier": "evt-9",
   "startDate": "2026-06-15T09:00:00", "endDate": "2026-06-19T15:00:00",
   "offers": {"price": "280", "availability": "https://schema.org/InStock"},
   "location": {"@type": "Place", "name": "Art Center",
                "address": {"streetAddress": "9 Elm St", "addressLocality": "Portland"}},
   "remainingAttendeeCapacity": 3,
   "organizer": {"name": "City Arts"}},
  {"@type": "Organization", "name": "Not an event"}
]}
</script>
<script type="application/ld+json">{ not json</script>
</head><body></body></html>
"""


class TestDeclarativeConfig:
    def test_shorthand_fields_expand(self):
        config = DeclarativeConfig.model_validate(CONFIG)
        assert config.selectors["name"].selector == "h3.title"
        assert config.selectors["registration_url"].attr == "href"

    def test_storage_form_uses_fields_key(self):
        stored = parse_declarative_config(CONFIG).to_json()
        assert "fields" in stored
        assert stored["fields"]["name"]["selector"] == "h3.title"

    def test_unknown_field_rejected(self):
        with pytest.raises(ExtractionConfigError):
            parse_declarative_config({"container": "div", "fields": {"name": "h3", "colour": ".c"}})

    def test_name_required(self):
        with pytest.raises(ExtractionConfigError):
            parse_declarative_config({"container": "div", "fields": {"date_raw": ".d"}})

    def test_bad_pattern_rejected(self):
        with pytest.raises(ExtractionConfigError):
            parse_declarative_config({"container": "div", "fields": {"name": {"selector": "h3", "pattern": "("}}})


class TestExtract:
    def test_declarative_extraction(self):
        method = parse_declarative_config(CONFIG)
        result = extract(method, "https://camps.example.org/summer", LISTING_HTML)

        assert result.errors == []
        assert result.pages_fetched == 1
        assert [r["name"] for r in result.sessions] == ["Lego Robotics", "Nature Explorers"]
        first, second = result.sessions
        assert first["registration_url"] == "https://camps.example.org/register/1"
        assert first["location"] == "123 Main St, Portland"
        # Page URL is the fallback registration link
        assert second["registration_url"] == "https://camps.example.org/summer"

    def test_jsonld_routine(self):
        result = extract(NamedRoutine(name="jsonld_events"), "https://arts.example.org/", JSONLD_HTML)

        assert len(result.sessions) == 1
        record = result.sessions[0]
        assert record["name"] == "Clay Studio"
        assert record["source_session_id"] == "evt-9"
        assert record["start_date"] == "2026-06-15"
        assert (record["drop_off_hour"], record["pick_up_hour"]) == (9, 15)
        assert record["price_raw"] == "$280"
        assert record["spots_left"] == 3
        assert record["location"] == "Art Center"
        assert record["organization_name"] == "City Arts"

    def test_jsonld_offer_availability_may_be_null(self):
        html = """<script type="application/ld+json">[
          {"@type": "Event", "name": "Pottery Week", "startDate": "2026-07-06",
           "offers": {"price": 250, "availability": null}},
          {"@type": "Event", "name": "Glaze Lab", "startDate": "2026-07-13",
           "offers": [{"price": 250, "availability": "https://schema.org/SoldOut"}]}
        ]</script>"""

        result = extract(NamedRoutine(name="jsonld_events"), "https://arts.example.org/", html)

        assert result.errors == []
        by_name = {r["name"]: r for r in result.sessions}
        assert set(by_name) == {"Pottery Week", "Glaze Lab"}
        assert "spots_left" not in by_name["Pottery Week"]
        assert by_name["Glaze Lab"]["spots_left"] == 0

    def test_routine_exception_is_captured(self):
        @register_routine
        class ExplodingScraper(BaseScraper):
            ROUTINE_NAME = "exploding_test_routine"

            def parse_page(self, url, html):
                raise RuntimeError("layout changed")

        result = extract(NamedRoutine(name="exploding_test_routine"), "https://x.example.org", "<html/>")
        assert result.sessions == []
        assert "layout changed" in result.errors[0]

    def test_run_extraction_merges_pages(self):
        method = parse_declarative_config(CONFIG)
        result = run_extraction(method, {
            "https://a.example.org/1": LISTING_HTML,
            "https://a.example.org/2": LISTING_HTML,
        })
        assert result.pages_fetched == 2
        assert len(result.sessions) == 4

    def test_registry(self):
        assert "jsonld_events" in list_routines()
        with pytest.raises(KeyError):
            get_routine("nope")

    def test_routine_requires_name(self):
        with pytest.raises(ValueError):
            @register_routine
            class Nameless(BaseScraper):
                def parse_page(self, url, html):
                    return []


class TestResolveExtractionMethod:
    def test_named_routine_wins(self):
        source = SimpleNamespace(id=1, scraper_module="jsonld_events", scraper_config=CONFIG)
        method = resolve_extraction_method(source)
        assert isinstance(method, NamedRoutine)
        assert describe_method(method) == "routine:jsonld_events"

    def test_config(self):
        source = SimpleNamespace(id=1, scraper_module=None, scraper_config=CONFIG)
        assert describe_method(resolve_extraction_method(source)) == "config:div.session"

    def test_neither(self):
        source = SimpleNamespace(id=1, scraper_module=None, scraper_config=None)
        with pytest.raises(ExtractionConfigError):
            resolve_extraction_method(source)


class TestCampContent:
    def test_camp_page(self):
        html = "<p>Summer Camp for ages 6-10. Register now! $250 per week of July 6.</p>"
        assert has_camp_content(html)
        assert "summer camp" in camp_content_signals(html)

    def test_scripts_ignored(self):
        html = "<script>var x = 'summer camp register';</script><p>About us</p>"
        assert not has_camp_content(html)


class TestPageFetcher:
    def _fetcher(self, response=None, side_effect=None):
        limiter = Mock(spec=ScraperRateLimiter)
        fetcher = PageFetcher(rate_limiter=limiter, timeout=5)
        fetcher.session = Mock()
        if side_effect is not None:
            fetcher.session.get.side_effect = side_effect
        else:
            fetcher.session.get.return_value = response
        return fetcher, limiter

    def test_success(self):
        response = Mock(status_code=200, url="https://example.org/final", text="<html>ok</html>")
        fetcher, limiter = self._fetcher(response)

        page = fetcher.fetch("https://example.org/")

        limiter.wait.assert_called_once_with("https://example.org/")
        assert page.final_url == "https://example.org/final"
        assert page.html == "<html>ok</html>"

    def test_http_error_carries_status(self):
        fetcher, _ = self._fetcher(Mock(status_code=429, url="u", text=""))
        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch("https://example.org/")
        assert exc_info.value.is_rate_limited

    def test_network_error(self):
        fetcher, _ = self._fetcher(side_effect=requests.exceptions.ConnectionError("boom"))
        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch("https://example.org/")
        assert exc_info.value.status_code is None

    def test_check_returns_status(self):
        fetcher, _ = self._fetcher(Mock(status_code=404, url="u", text=""))
        assert fetcher.check("https://example.org/gone") == 404


class TestRateLimiter:
    def test_domain_strips_www(self):
        assert domain_for_url("https://www.Example.org/camps") == "example.org"

    def test_domain_overrides_from_yaml(self, tmp_path):
        path = tmp_path / "limits.yaml"
        path.write_text(
            "defaults:\n  requests_per_minute: 5\n"
            "domains:\n  slow.org:\n    requests_per_minute: 1\n"
        )
        limiter = ScraperRateLimiter(config_path=str(path))
        assert limiter.get_limits("slow.org")["requests_per_minute"] == 1
        assert limiter.get_limits("other.org")["requests_per_minute"] == 5
        assert limiter.get_limits("other.org")["requests_per_hour"] == 200

    def test_missing_config_uses_defaults(self, tmp_path):
        limiter = ScraperRateLimiter(config_path=str(tmp_path / "missing.yaml"))
        assert limiter.get_limits("x.org") == {"requests_per_minute": 10, "requests_per_hour": 200}

    def test_wait_blocks_when_window_full(self, tmp_path):
        path = tmp_path / "limits.yaml"
        path.write_text("defaults:\n  requests_per_minute: 1\n")
        sleeps = []
        limiter = ScraperRateLimiter(config_path=str(path), sleep=sleeps.append)

        limiter.wait("https://a.org/1")
        assert sleeps == []

        with pytest.raises(RuntimeError):
            limiter.wait("https://a.org/2")
        assert len(sleeps) == 60

        # Other domains have their own window
        limiter.wait("https://b.org/1")
