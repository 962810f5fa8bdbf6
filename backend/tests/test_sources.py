"""
Tests for the source registry: creation, activation, scraper versions,
URL history and denormalized counts.
"""

from datetime import datetime

import pytest

from scrapers.models import ScraperAlert, ScraperVersion
from services.errors import ValidationError
from services.sources import (
    activate_source,
    add_additional_url,
    create_source,
    deactivate_source,
    list_sources,
    record_url_check,
    update_scraper_config,
    update_source_counts,
)

CONFIG = {"container": "li.camp", "fields": {"name": "h4"}}


class TestCreateSource:
    def test_defaults(self, make):
        city = make.city()
        source = create_source("Parks Camps", "https://parks.example.org/camps", city.id)

        assert source.is_active is False
        assert source.consecutive_failures == 0
        assert source.scraper_version == 0
        assert source.next_scheduled_scrape <= datetime.utcnow()

    def test_activate_requires_extraction_method(self, make):
        with pytest.raises(ValidationError) as exc_info:
            create_source("X", "https://x.example.org", make.city().id, activate=True)
        assert exc_info.value.code == "NO_EXTRACTION_METHOD"

    def test_activate_with_config(self, make):
        source = create_source("X", "https://x.example.org", make.city().id,
                               scraper_config=CONFIG, activate=True)
        assert source.is_active is True
        assert source.scraper_version == 1
        assert source.scraper_config["fields"]["name"]["selector"] == "h4"

    def test_rejects_unknown_routine(self, make):
        with pytest.raises(ValidationError) as exc_info:
            create_source("X", "https://x.example.org", make.city().id, scraper_module="nope")
        assert exc_info.value.field == "scraper_module"

    def test_rejects_bad_url_and_frequency(self, make):
        city = make.city()
        with pytest.raises(ValidationError):
            create_source("X", "ftp://x.example.org", city.id)
        with pytest.raises(ValidationError):
            create_source("X", "https://x.example.org", city.id, scrape_frequency_hours=0)


class TestLifecycle:
    def test_activate_clears_closure(self, make):
        source = make.source(is_active=False, closed_by="system", closure_reason="404", consecutive_failures=10)
        activate_source(source)
        assert source.is_active is True
        assert source.closed_by is None
        assert source.consecutive_failures == 0

    def test_activate_without_method_fails(self, make):
        source = make.source(scraper_module=None, is_active=False)
        with pytest.raises(ValidationError):
            activate_source(source)

    def test_deactivate(self, make):
        source = deactivate_source(make.source(), "Provider closed", "admin@example.com")
        assert (source.is_active, source.closed_by) == (False, "admin@example.com")

    def test_update_config_bumps_version(self, make):
        source = make.source(scraper_version=1, needs_regeneration=True, consecutive_zero_results=3)
        version = update_scraper_config(source, scraper_config=CONFIG, change_reason="layout changed")

        assert source.scraper_version == 2
        assert version.version == 2
        assert source.needs_regeneration is False
        assert source.consecutive_zero_results == 0
        assert ScraperVersion.query.filter_by(source_id=source.id).count() == 1

    def test_update_config_needs_method(self, make):
        with pytest.raises(ValidationError):
            update_scraper_config(make.source())


class TestUrls:
    def test_additional_urls_are_unique(self, make):
        source = make.source()
        add_additional_url(source, "https://x.example.org/page2")
        add_additional_url(source, "https://x.example.org/page2")
        add_additional_url(source, source.url)
        assert source.additional_urls == ["https://x.example.org/page2"]
        assert source.all_urls[0] == source.url

    def test_consecutive_404s_disable_source(self, make, db_session):
        source = make.source()
        for _ in range(4):
            assert record_url_check(source, source.url, "404") is False
        assert record_url_check(source, source.url, "404") is True
        db_session.commit()

        assert source.is_active is False
        assert ScraperAlert.query.filter_by(source_id=source.id, alert_type="scraper_disabled").count() == 1

    def test_valid_check_breaks_streak(self, make):
        source = make.source()
        for status in ["404", "404", "404", "valid", "404", "404"]:
            record_url_check(source, source.url, status)
        assert source.is_active is True

    def test_404_on_additional_url_is_ignored(self, make):
        source = make.source()
        for _ in range(6):
            record_url_check(source, "https://elsewhere.example.org", "404")
        assert source.is_active is True


class TestCounts:
    def test_counts_and_quality(self, make):
        source = make.source()
        camp = make.camp()
        make.session(camp, source_id=source.id, completeness_score=100)
        make.session(camp, source_id=source.id, completeness_score=80, status="draft")

        update_source_counts(source)
        assert (source.session_count, source.active_session_count) == (2, 1)
        assert (source.data_quality_score, source.quality_tier) == (90, "high")

    def test_auto_activates_quality_source(self, make):
        source = make.source(is_active=False)
        make.session(source_id=source.id, completeness_score=95)
        update_source_counts(source)
        assert source.is_active is True

    def test_closed_source_stays_closed(self, make):
        source = make.source(is_active=False, closed_by="admin@example.com")
        make.session(source_id=source.id, completeness_score=95)
        update_source_counts(source)
        assert source.is_active is False

    def test_list_needs_attention(self, make):
        city = make.city()
        make.source(city, name="A healthy")
        broken = make.source(city, name="B broken", consecutive_failures=2)
        assert list_sources(city_id=city.id, needs_attention=True) == [broken]
        assert len(list_sources(city_id=city.id, active=True)) == 2
