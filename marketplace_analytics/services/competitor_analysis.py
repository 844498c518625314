# marketplace_analytics/services/competitor_analysis.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional

from marketplace_analytics.core.cache import TTLCache
from marketplace_analytics.core.clock import Clock, utc_now
from marketplace_analytics.core.constants import ACTIVE_PERIOD_LABEL, BENCHMARK_CACHE_TTL, TOP_PERFORMERS_LIMIT
from marketplace_analytics.core.result import ServiceResult
from marketplace_analytics.core.utils import round_half_up
from marketplace_analytics.models.competitive import (
    CategoryBenchmark,
    CompetitiveInsight,
    CompetitorMetrics,
    ComparisonStatus,
    ListingMetricsSnapshot,
    MarketTrend,
    MetricComparison,
    OverallRanking,
    PerformanceBreakdown,
    TopPerformer,
    TrendImpact,
)
from marketplace_analytics.models.listing import Category, Listing
from marketplace_analytics.services.marketplace import ListingDirectory
from marketplace_analytics.services.metrics import ListingCounts, MetricsAggregator

logger = logging.getLogger(__name__)

ALL_LISTINGS = "all"
LOW_ENGAGEMENT_THRESHOLD = 5
HIGH_DEMAND_VIEWS = 100
LOW_COMPETITION_LISTINGS = 10
HIGH_COMPETITION_LISTINGS = 50
HIGH_CONVERSION_RATE = 0.1

VIEWS_RECOMMENDATIONS = [
    "Improve your listing title with the words renters actually search for",
    "Add more high-quality photos to attract more visitors",
    "Use relevant keywords in the description to show up in more searches",
]
CONTACTS_RECOMMENDATIONS = [
    "Make sure your contact information is complete and up to date",
    "Review your pricing against similar listings in this category",
]
FAVORITES_RECOMMENDATIONS = [
    "Invest in professional-quality photos of your space",
    "Highlight what sets your listing apart from the competition",
]
LOW_ENGAGEMENT_RECOMMENDATION = (
    "Visitors rarely contact or save your listing after viewing it. "
    "Review your description and make the next step obvious"
)
POSITIVE_RECOMMENDATIONS = [
    "Great job! Your listing performs at or above the category average",
    "Keep photos and information up to date to hold your position",
]


class BenchmarkKey(NamedTuple):
    category_id: str
    exclude_listing_id: str


# --- Чистые правила сравнения ---

def comparison_status(own: int, average: int) -> ComparisonStatus:
    """above, если own > average * 1.1; below, если own < average * 0.9; иначе average."""
    # Целочисленная форма тех же неравенств, без погрешности float на границе
    if own * 10 > average * 11:
        return ComparisonStatus.ABOVE
    if own * 10 < average * 9:
        return ComparisonStatus.BELOW
    return ComparisonStatus.AVERAGE


def comparison_percentage(own: int, average: int) -> int:
    if average == 0:
        return 100 if own > 0 else 0
    return round_half_up(100 * (own - average) / average)


def compare_metric(own: int, average: int) -> MetricComparison:
    return MetricComparison(
        value=own - average,
        percentage=comparison_percentage(own, average),
        status=comparison_status(own, average),
    )


def calculate_percentile(score: float, peer_average_score: float) -> int:
    """
    Оценка позиции 0-100: паритет с категорией дает 75.
    Если у категории нулевая активность, любая активность дает 100, а ее отсутствие 25.
    """
    if peer_average_score <= 0:
        return 100 if score > 0 else 25
    return min(round_half_up(score / peer_average_score * 50) + 25, 100)


def position_label(percentile: int) -> str:
    if percentile >= 90:
        return "top 10%"
    if percentile >= 75:
        return "top 25%"
    if percentile >= 50:
        return "average"
    return "below average"


def build_recommendations(performance: PerformanceBreakdown, engagement_rate: int) -> List[str]:
    recommendations: List[str] = []
    if performance.views_comparison.status is ComparisonStatus.BELOW:
        recommendations.extend(VIEWS_RECOMMENDATIONS)
    if performance.contacts_comparison.status is ComparisonStatus.BELOW:
        recommendations.extend(CONTACTS_RECOMMENDATIONS)
    if performance.favorites_comparison.status is ComparisonStatus.BELOW:
        recommendations.extend(FAVORITES_RECOMMENDATIONS)
    if engagement_rate < LOW_ENGAGEMENT_THRESHOLD:
        recommendations.append(LOW_ENGAGEMENT_RECOMMENDATION)
    return recommendations or list(POSITIVE_RECOMMENDATIONS)


def build_market_trends(averages: CompetitorMetrics) -> List[MarketTrend]:
    trends: List[MarketTrend] = []
    if averages.average_views > HIGH_DEMAND_VIEWS:
        trends.append(MarketTrend(
            description=f"High demand: listings in this category average {averages.average_views} views in {averages.active_period}",
            impact=TrendImpact.POSITIVE,
            actionable=True,
        ))
    if averages.total_listings < LOW_COMPETITION_LISTINGS:
        trends.append(MarketTrend(
            description=f"Low competition: only {averages.total_listings} other active listings in this category",
            impact=TrendImpact.POSITIVE,
            actionable=True,
        ))
    elif averages.total_listings > HIGH_COMPETITION_LISTINGS:
        trends.append(MarketTrend(
            description=f"High competition: {averages.total_listings} active listings in this category",
            impact=TrendImpact.NEGATIVE,
            actionable=True,
        ))
    if averages.average_views > 0 and averages.average_contacts / averages.average_views > HIGH_CONVERSION_RATE:
        trends.append(MarketTrend(
            description="High conversion: visitors in this category contact advertisers often",
            impact=TrendImpact.POSITIVE,
            actionable=False,
        ))
    return trends


@dataclass(frozen=True)
class _Averages:
    metrics: CompetitorMetrics
    counts: Dict[str, ListingCounts]


class CompetitorAnalysisService:
    """
    Сравнение объявления со средними по его категории.

    Бенчмарк категории кэшируется на 6 часов по ключу
    (category_id, exclude_listing_id | "all") и пересчитывается лениво при
    первом обращении после истечения. Исключение самого объявления дает
    сравнение без его собственного вклада, поэтому у каждого объявления
    категории своя запись в кэше.
    """

    def __init__(
        self,
        directory: ListingDirectory,
        metrics: MetricsAggregator,
        *,
        clock: Clock = utc_now,
        cache_ttl=BENCHMARK_CACHE_TTL,
    ):
        self._directory = directory
        self._metrics = metrics
        self._clock = clock
        self._cache: TTLCache[BenchmarkKey, CategoryBenchmark] = TTLCache(cache_ttl, clock=clock)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Benchmark cache cleared.")

    # --- Средние по категории ---

    async def _compute_averages(self, category_id: str, exclude_listing_id: Optional[str]) -> ServiceResult[_Averages]:
        try:
            peers = await self._directory.get_active_listings_by_category(category_id, exclude_listing_id)
        except Exception as e:
            return ServiceResult.from_exception(e, f"load listings of category {category_id}")
        peers = [peer for peer in peers if peer.id != exclude_listing_id]

        if not peers:
            return ServiceResult.success(_Averages(CompetitorMetrics(total_listings=0, active_period=ACTIVE_PERIOD_LABEL), {}))

        counts_result = await self._metrics.count_events_by_listing([peer.id for peer in peers])
        if not counts_result:
            return ServiceResult(outcome=counts_result.outcome, error=counts_result.error)
        counts = counts_result.data

        total = len(peers)
        metrics = CompetitorMetrics(
            average_views=round_half_up(sum(c.views for c in counts.values()) / total),
            average_contacts=round_half_up(sum(c.contacts for c in counts.values()) / total),
            average_favorites=round_half_up(sum(c.favorites for c in counts.values()) / total),
            average_reviews=round_half_up(sum(c.reviews for c in counts.values()) / total),
            total_listings=total,
            active_period=ACTIVE_PERIOD_LABEL,
        )
        return ServiceResult.success(_Averages(metrics, counts))

    async def calculate_category_averages(
        self, category_id: str, exclude_listing_id: Optional[str] = None
    ) -> CompetitorMetrics:
        """Средние 30-дневные метрики активных объявлений категории; без кэша."""
        result = await self._compute_averages(str(category_id), exclude_listing_id)
        if not result:
            result.log_failure(logger, f"Category averages for {category_id}")
            return CompetitorMetrics(total_listings=0, active_period=ACTIVE_PERIOD_LABEL)
        return result.data.metrics

    # --- Бенчмарк с кэшем ---

    async def _get_benchmark(
        self,
        category_id: str,
        exclude_listing_id: Optional[str] = None,
        category: Optional[Category] = None,
    ) -> ServiceResult[CategoryBenchmark]:
        key = BenchmarkKey(category_id, exclude_listing_id or ALL_LISTINGS)
        cached = self._cache.get(key)
        if cached is not None:
            return ServiceResult.success(cached, cached=True)

        if category is None:
            try:
                category = await self._directory.get_category(category_id)
            except Exception as e:
                return ServiceResult.from_exception(e, f"load category {category_id}")
            if category is None:
                return ServiceResult.not_found("Category", category_id)

        averages = await self._compute_averages(category_id, exclude_listing_id)
        if not averages:
            return ServiceResult(outcome=averages.outcome, error=averages.error)

        ranked = sorted(averages.data.counts.items(), key=lambda item: item[1].composite_score, reverse=True)
        benchmark = CategoryBenchmark(
            category_id=category_id,
            category_name=category.name,
            metrics=averages.data.metrics,
            top_performers=[
                TopPerformer(listing_id=listing_id, score=round(counts.composite_score, 2))
                for listing_id, counts in ranked[:TOP_PERFORMERS_LIMIT]
            ],
            last_updated=self._clock(),
        )
        self._cache.set(key, benchmark)
        logger.debug(f"Benchmark computed for {key} ({benchmark.metrics.total_listings} peers).")
        return ServiceResult.success(benchmark, cached=False)

    async def get_category_benchmark(
        self, category_id: str, exclude_listing_id: Optional[str] = None
    ) -> Optional[CategoryBenchmark]:
        result = await self._get_benchmark(str(category_id), exclude_listing_id)
        result.log_failure(logger, f"Benchmark for category {category_id}")
        return result.unwrap_or(None)

    # --- Анализ объявления ---

    async def _analyze_listing(self, listing_id: str) -> ServiceResult[CompetitiveInsight]:
        try:
            listing: Optional[Listing] = await self._directory.get_listing(listing_id)
        except Exception as e:
            return ServiceResult.from_exception(e, f"load listing {listing_id}")
        if listing is None:
            return ServiceResult.not_found("Listing", listing_id)

        try:
            category = await self._directory.get_category(listing.category_id)
        except Exception as e:
            return ServiceResult.from_exception(e, f"load category {listing.category_id}")
        if category is None:
            return ServiceResult.not_found("Category", listing.category_id)

        # Чтения не транзакционны между собой: результат может отражать немного разные моменты
        own_result, benchmark_result = await asyncio.gather(
            self._metrics.count_events_by_listing([listing.id]),
            self._get_benchmark(category.id, exclude_listing_id=listing.id, category=category),
        )
        if not own_result:
            return ServiceResult(outcome=own_result.outcome, error=own_result.error)
        if not benchmark_result:
            return ServiceResult(outcome=benchmark_result.outcome, error=benchmark_result.error)

        own = own_result.data.get(listing.id, ListingCounts())
        benchmark = benchmark_result.data
        averages = benchmark.metrics

        peer_average_score = (averages.average_views + averages.average_contacts + averages.average_favorites) / 3
        percentile = calculate_percentile(own.composite_score, peer_average_score)
        performance = PerformanceBreakdown(
            views_comparison=compare_metric(own.views, averages.average_views),
            contacts_comparison=compare_metric(own.contacts, averages.average_contacts),
            favorites_comparison=compare_metric(own.favorites, averages.average_favorites),
            overall_ranking=OverallRanking(percentile=percentile, position=position_label(percentile)),
        )

        return ServiceResult.success(CompetitiveInsight(
            listing_id=listing.id,
            category=category.name,
            user_metrics=ListingMetricsSnapshot(
                views=own.views,
                contacts=own.contacts,
                favorites=own.favorites,
                reviews=own.reviews,
                engagement_rate=own.engagement_rate,
            ),
            category_averages=averages,
            performance=performance,
            recommendations=build_recommendations(performance, own.engagement_rate),
            market_trends=build_market_trends(averages),
            benchmark_updated_at=benchmark.last_updated,
        ))

    async def analyze_listing_competitive_performance(self, listing_id: str) -> Optional[CompetitiveInsight]:
        result = await self._analyze_listing(str(listing_id))
        result.log_failure(logger, f"Competitive analysis for listing {listing_id}")
        return result.unwrap_or(None)

    async def get_user_competitive_insights(self, user_id: str) -> List[CompetitiveInsight]:
        """Анализ по всем активным объявлениям пользователя; сбой по одному объявлению пропускается."""
        try:
            listings = await self._directory.get_listings_by_owner(user_id, active_only=True)
        except Exception as e:
            logger.error(f"Failed to load active listings of user {user_id}: {e}")
            return []

        insights = await asyncio.gather(*(
            self.analyze_listing_competitive_performance(listing.id)
            for listing in listings if listing.is_active
        ))
        return [insight for insight in insights if insight is not None]
