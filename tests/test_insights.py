# tests/test_insights.py
from datetime import timedelta

import httpx
import pytest

from conftest import FakeDirectory, make_listing, mock_client
from marketplace_analytics.models.activity import EventType
from marketplace_analytics.models.listing import Category
from marketplace_analytics.services.competitor_analysis import CompetitorAnalysisService
from marketplace_analytics.services.geolocation import GeolocationService
from marketplace_analytics.services.insights import InsightComposer
from marketplace_analytics.services.metrics import MetricsAggregator


def provider(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"city": "Curitiba", "region": "Paraná", "country_name": "Brazil", "country_code": "BR"})


@pytest.fixture
def directory():
    return FakeDirectory(
        [make_listing("s", user_id="me"), make_listing("p1", user_id="rival")],
        [Category(id="cat", name="Chácaras")],
    )


@pytest.fixture
def composer(event_log, directory, clock):
    aggregator = MetricsAggregator(event_log, directory, clock=clock)
    geolocation = GeolocationService("https://ipapi.co", client=mock_client(provider, "https://ipapi.co"), clock=clock)
    competitor = CompetitorAnalysisService(directory, aggregator, clock=clock)
    return InsightComposer(aggregator, geolocation, competitor)


async def test_listing_premium_metrics_include_all_sections(composer, event_log, clock):
    event_log.add("s", EventType.VIEW, clock.now - timedelta(hours=1), count=4, ip="200.10.10.10")
    event_log.add("p1", EventType.VIEW, clock.now - timedelta(hours=1), count=2)

    metrics = await composer.get_listing_metrics_with_premium_insights("s")

    assert metrics.total_views == 4
    assert metrics.daily_metrics == []
    assert metrics.geographic_insights.top_cities[0].city == "Curitiba, Paraná"
    assert [insight.listing_id for insight in metrics.competitive_insights] == ["s"]


async def test_failed_competitive_analysis_leaves_empty_list(composer, directory, event_log, clock):
    event_log.add("s", EventType.VIEW, clock.now - timedelta(hours=1))
    directory.failing.add("get_listing")

    metrics = await composer.get_listing_metrics_with_premium_insights("s")

    assert metrics.total_views == 1
    assert metrics.competitive_insights == []


async def test_no_recent_events_means_no_geography(composer):
    metrics = await composer.get_listing_metrics_with_premium_insights("s")

    assert metrics.geographic_insights is None


async def test_user_premium_metrics(composer, event_log, clock):
    event_log.add("s", EventType.CONTACT_WHATSAPP, clock.now - timedelta(hours=2), count=2)

    metrics = await composer.get_user_metrics_with_premium_insights("me")

    assert metrics.total_contacts == 2
    assert len(metrics.competitive_insights) == 1


async def test_user_without_listings_gets_empty_premium_metrics(composer, event_log):
    metrics = await composer.get_user_metrics_with_premium_insights("nobody")

    assert metrics.total_views == 0
    assert metrics.competitive_insights == []
    assert event_log.queries == []


async def test_camel_case_serialization(composer, event_log, clock):
    event_log.add("s", EventType.VIEW, clock.now - timedelta(hours=1))

    payload = (await composer.get_listing_metrics_with_premium_insights("s")).model_dump(by_alias=True)

    assert {"totalViews", "recentEvents", "geographicInsights", "competitiveInsights"} <= payload.keys()
    assert "engagementRate" in payload["competitiveInsights"][0]["userMetrics"]
