# tests/test_competitor_analysis.py
from datetime import timedelta

import pytest

from conftest import FakeDirectory, make_listing
from marketplace_analytics.models.activity import EventType
from marketplace_analytics.models.competitive import (
    ComparisonStatus,
    CompetitorMetrics,
    MetricComparison,
    OverallRanking,
    PerformanceBreakdown,
    TrendImpact,
)
from marketplace_analytics.models.listing import Category
from marketplace_analytics.services.competitor_analysis import (
    POSITIVE_RECOMMENDATIONS,
    VIEWS_RECOMMENDATIONS,
    CompetitorAnalysisService,
    build_market_trends,
    build_recommendations,
    calculate_percentile,
    compare_metric,
    comparison_percentage,
    comparison_status,
    position_label,
)
from marketplace_analytics.services.metrics import MetricsAggregator


@pytest.fixture
def market(event_log, clock):
    directory = FakeDirectory(
        [
            make_listing("p1", user_id="rival"),
            make_listing("p2", user_id="rival"),
            make_listing("p3", user_id="rival"),
            make_listing("s", user_id="me"),
            make_listing("off", user_id="rival", status="inactive"),
        ],
        [Category(id="cat", name="Salões de festa")],
    )
    yesterday = clock.now - timedelta(days=1)
    for listing_id, views in (("p1", 10), ("p2", 20), ("p3", 30), ("s", 25), ("off", 500)):
        event_log.add(listing_id, EventType.VIEW, yesterday, count=views)
    return directory


@pytest.fixture
def service(market, event_log, clock):
    aggregator = MetricsAggregator(event_log, market, clock=clock)
    return CompetitorAnalysisService(market, aggregator, clock=clock)


async def test_listing_is_compared_with_category_without_itself(service):
    insight = await service.analyze_listing_competitive_performance("s")

    assert insight.category == "Salões de festa"
    assert insight.category_averages.average_views == 20
    assert insight.category_averages.total_listings == 3
    views = insight.performance.views_comparison
    assert (views.value, views.percentage, views.status) == (5, 25, ComparisonStatus.ABOVE)
    assert insight.user_metrics.views == 25


async def test_missing_listing_gives_none(service):
    assert await service.analyze_listing_competitive_performance("ghost") is None


async def test_directory_failure_gives_none(service, market):
    market.failing.add("get_category")

    assert await service.analyze_listing_competitive_performance("s") is None
    assert service.cache_size == 0


async def test_benchmark_is_cached_for_six_hours(service, clock):
    first = await service.get_category_benchmark("cat")
    clock.advance(hours=5, minutes=59)
    second = await service.get_category_benchmark("cat")

    assert second.last_updated == first.last_updated

    clock.advance(minutes=1)
    third = await service.get_category_benchmark("cat")
    assert third.last_updated == clock.now
    assert third.last_updated > first.last_updated


async def test_benchmark_cache_key_includes_exclusion(service):
    everyone = await service.get_category_benchmark("cat")
    without_s = await service.get_category_benchmark("cat", exclude_listing_id="s")

    assert everyone.metrics.total_listings == 4
    assert without_s.metrics.total_listings == 3
    assert service.cache_size == 2


async def test_expired_benchmarks_are_evicted(service, clock):
    await service.get_category_benchmark("cat", exclude_listing_id="s")
    await service.get_category_benchmark("cat", exclude_listing_id="p1")
    clock.advance(hours=7)

    await service.get_category_benchmark("cat")

    assert service.cache_size == 1
    assert len(service._cache._entries) == 1


async def test_benchmark_top_performers(service):
    benchmark = await service.get_category_benchmark("cat")

    assert [performer.listing_id for performer in benchmark.top_performers] == ["p3", "s", "p2", "p1"]
    assert benchmark.top_performers[0].score == 10.0


async def test_unknown_category_benchmark_is_none(service):
    assert await service.get_category_benchmark("nope") is None
    assert service.cache_size == 0


async def test_category_without_peers_averages_zero(event_log, clock):
    directory = FakeDirectory([make_listing("only")], [Category(id="cat", name="Chácaras")])
    service = CompetitorAnalysisService(directory, MetricsAggregator(event_log, directory, clock=clock), clock=clock)
    event_log.add("only", EventType.VIEW, clock.now, count=3)

    insight = await service.analyze_listing_competitive_performance("only")

    assert insight.category_averages.total_listings == 0
    assert insight.category_averages.average_views == 0
    assert insight.performance.views_comparison.percentage == 100
    assert insight.performance.overall_ranking.percentile == 100
    assert any("Low competition" in trend.description for trend in insight.market_trends)


async def test_calculate_category_averages_is_not_cached(service):
    averages = await service.calculate_category_averages("cat", "s")

    assert averages.average_views == 20
    assert service.cache_size == 0


async def test_user_insights_cover_active_listings_and_skip_failures(service, market, clock):
    market.listings["s2"] = make_listing("s2", user_id="me", category_id="missing")
    market.listings["s3"] = make_listing("s3", user_id="me", status="inactive")

    insights = await service.get_user_competitive_insights("me")

    assert [insight.listing_id for insight in insights] == ["s"]


async def test_user_insights_empty_when_directory_down(service, market):
    market.failing.add("get_listings_by_owner")

    assert await service.get_user_competitive_insights("me") == []


@pytest.mark.parametrize("own, status", [
    (22, ComparisonStatus.AVERAGE),
    (23, ComparisonStatus.ABOVE),
    (18, ComparisonStatus.AVERAGE),
    (17, ComparisonStatus.BELOW),
    (20, ComparisonStatus.AVERAGE),
])
def test_comparison_status_dead_zone(own, status):
    assert comparison_status(own, 20) is status


def test_comparison_status_with_zero_average():
    assert comparison_status(0, 0) is ComparisonStatus.AVERAGE
    assert comparison_status(1, 0) is ComparisonStatus.ABOVE


def test_comparison_percentage_edges():
    assert comparison_percentage(0, 0) == 0
    assert comparison_percentage(5, 0) == 100
    assert comparison_percentage(10, 20) == -50
    assert comparison_percentage(25, 20) == 25


def test_percentile():
    assert calculate_percentile(10, 10) == 75
    assert calculate_percentile(0, 10) == 25
    assert calculate_percentile(100, 10) == 100
    assert calculate_percentile(0, 0) == 25
    assert calculate_percentile(3, 0) == 100


@pytest.mark.parametrize("percentile, label", [
    (95, "top 10%"), (90, "top 10%"), (75, "top 25%"), (60, "average"), (50, "average"), (49, "below average"),
])
def test_position_label(percentile, label):
    assert position_label(percentile) == label


def breakdown(views, contacts, favorites):
    return PerformanceBreakdown(
        views_comparison=compare_metric(*views),
        contacts_comparison=compare_metric(*contacts),
        favorites_comparison=compare_metric(*favorites),
        overall_ranking=OverallRanking(percentile=50, position="average"),
    )


def test_recommendations_for_weak_views():
    recommendations = build_recommendations(breakdown((5, 20), (10, 10), (10, 10)), engagement_rate=20)

    assert recommendations == VIEWS_RECOMMENDATIONS


def test_recommendations_flag_low_engagement():
    recommendations = build_recommendations(breakdown((20, 20), (10, 10), (10, 10)), engagement_rate=4)

    assert len(recommendations) == 1
    assert "rarely contact" in recommendations[0]


def test_positive_recommendations_when_nothing_is_wrong():
    assert build_recommendations(breakdown((30, 20), (10, 10), (10, 10)), engagement_rate=50) == POSITIVE_RECOMMENDATIONS


def test_market_trends():
    busy = build_market_trends(CompetitorMetrics(average_views=150, average_contacts=20, total_listings=60))
    quiet = build_market_trends(CompetitorMetrics(average_views=50, average_contacts=1, total_listings=3))

    assert [trend.impact for trend in busy] == [TrendImpact.POSITIVE, TrendImpact.NEGATIVE, TrendImpact.POSITIVE]
    assert "High competition" in busy[1].description
    assert not busy[2].actionable
    assert len(quiet) == 1 and "Low competition" in quiet[0].description


def test_metric_comparison_value_is_difference():
    assert compare_metric(7, 10) == MetricComparison(value=-3, percentage=-30, status=ComparisonStatus.BELOW)
