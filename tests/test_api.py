# tests/test_api.py
from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeDirectory, FakeEventLog, MutableClock, make_listing, mock_client
from marketplace_analytics.core.config import settings
from marketplace_analytics.main import app
from marketplace_analytics.models.activity import EventType
from marketplace_analytics.models.listing import Category
from marketplace_analytics.services.competitor_analysis import CompetitorAnalysisService
from marketplace_analytics.services.event_collector import EventCollector
from marketplace_analytics.services.geolocation import GeolocationService
from marketplace_analytics.services.insights import InsightComposer
from marketplace_analytics.services.metrics import MetricsAggregator

PREFIX = settings.API_V1_STR
SERVICE_NAMES = ("event_collector", "metrics_aggregator", "geolocation_service", "competitor_service", "insight_composer")


def no_geolocation(request: httpx.Request) -> httpx.Response:
    return httpx.Response(429, json={"error": True, "reason": "RateLimited"})


@pytest.fixture
def wired():
    """Собирает сервисы на фейках и кладет их в app.state без запуска lifespan."""
    clock = MutableClock()
    event_log = FakeEventLog()
    directory = FakeDirectory(
        [make_listing("s", user_id="me"), make_listing("p1", user_id="rival")],
        [Category(id="cat", name="Salões de festa")],
    )
    aggregator = MetricsAggregator(event_log, directory, clock=clock)
    geolocation = GeolocationService("https://ipapi.co", client=mock_client(no_geolocation, "https://ipapi.co"), clock=clock)
    competitor = CompetitorAnalysisService(directory, aggregator, clock=clock)

    app.state.event_collector = EventCollector(event_log, clock=clock)
    app.state.metrics_aggregator = aggregator
    app.state.geolocation_service = geolocation
    app.state.competitor_service = competitor
    app.state.insight_composer = InsightComposer(aggregator, geolocation, competitor)
    yield {"clock": clock, "event_log": event_log, "directory": directory}
    for name in SERVICE_NAMES:
        if hasattr(app.state, name):
            delattr(app.state, name)


@pytest.fixture
def client():
    return TestClient(app)


def test_health_check(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_track_event_is_accepted_with_request_context(client, wired):
    response = client.post(
        f"{PREFIX}/events",
        json={"listing_id": "s", "event_type": "contact_whatsapp", "metadata": {"source": "card"}},
        headers={"User-Agent": "Mozilla/5.0", "Referer": "https://google.com", "X-Forwarded-For": "200.1.1.1"},
    )

    assert response.status_code == 202
    queued = app.state.event_collector.pending_events
    assert len(queued) == 1
    assert queued[0].metadata == {
        "source": "card",
        "user_agent": "Mozilla/5.0",
        "referrer": "https://google.com",
        "ip": "200.1.1.1",
    }


def test_track_event_rejects_unknown_type(client, wired):
    response = client.post(f"{PREFIX}/events", json={"listing_id": "s", "event_type": "teleport"})

    assert response.status_code == 422
    assert app.state.event_collector.queue_size == 0


def test_listing_metrics_use_camel_case(client, wired):
    wired["event_log"].add("s", EventType.VIEW, wired["clock"].now - timedelta(hours=1), count=3)

    body = client.get(f"{PREFIX}/listings/s/metrics").json()

    assert body["totalViews"] == 3
    assert body["dailyMetrics"] == []
    assert len(body["recentEvents"]) == 3
    assert "competitiveInsights" not in body


def test_premium_listing_metrics(client, wired):
    wired["event_log"].add("s", EventType.VIEW, wired["clock"].now - timedelta(hours=1), ip="200.1.1.1")

    body = client.get(f"{PREFIX}/listings/s/metrics", params={"premium": "true"}).json()

    assert body["competitiveInsights"][0]["listingId"] == "s"
    assert body["geographicInsights"]["totalViews"] == 0


def test_user_metrics_for_user_without_listings(client, wired):
    body = client.get(f"{PREFIX}/users/nobody/metrics").json()

    assert body["totalViews"] == 0
    assert wired["event_log"].queries == []


def test_competitive_insights_404_for_unknown_listing(client, wired):
    assert client.get(f"{PREFIX}/listings/ghost/competitive-insights").status_code == 404
    assert client.get(f"{PREFIX}/listings/s/competitive-insights").json()["category"] == "Salões de festa"


def test_category_benchmark(client, wired):
    response = client.get(f"{PREFIX}/categories/cat/benchmark", params={"exclude_listing_id": "s"})

    assert response.status_code == 200
    assert response.json()["metrics"]["totalListings"] == 1
    assert client.get(f"{PREFIX}/categories/nope/benchmark").status_code == 404


def test_services_missing_from_state_give_503(client):
    response = client.get(f"{PREFIX}/listings/s/metrics")

    assert response.status_code == 503


def test_admin_endpoints_require_key(client, wired, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "secret")

    assert client.get(f"{PREFIX}/admin/analytics/queue").status_code == 403
    assert client.get(f"{PREFIX}/admin/analytics/queue", headers={"X-Admin-API-Key": "wrong"}).status_code == 403

    client.post(f"{PREFIX}/events", json={"listing_id": "s", "event_type": "view"})
    headers = {"X-Admin-API-Key": "secret"}
    assert client.get(f"{PREFIX}/admin/analytics/queue", headers=headers).json()["queue_size"] == 1

    flushed = client.post(f"{PREFIX}/admin/analytics/flush", headers=headers).json()
    assert flushed["submitted"] == 1 and flushed["queue_size"] == 0

    client.get(f"{PREFIX}/categories/cat/benchmark")
    cleared = client.post(f"{PREFIX}/admin/analytics/cache/clear", headers=headers).json()
    assert cleared["cleared"]["benchmarks"] == 1
