# marketplace_analytics/services/insights.py
import asyncio
import logging
from typing import List, Optional

from marketplace_analytics.models.activity import RealTimeMetrics
from marketplace_analytics.models.competitive import CompetitiveInsight
from marketplace_analytics.models.geolocation import GeographicInsight
from marketplace_analytics.services.competitor_analysis import CompetitorAnalysisService
from marketplace_analytics.services.geolocation import GeolocationService
from marketplace_analytics.services.metrics import MetricsAggregator

logger = logging.getLogger(__name__)


class InsightComposer:
    """
    Собирает метрики, географию и конкурентный анализ в структуру для дашборда.
    Каждая необязательная часть при сбое просто отсутствует.
    """

    def __init__(self, metrics: MetricsAggregator, geolocation: GeolocationService, competitor: CompetitorAnalysisService):
        self._metrics = metrics
        self._geolocation = geolocation
        self._competitor = competitor

    async def _geographic(self, metrics: RealTimeMetrics) -> Optional[GeographicInsight]:
        if not metrics.recent_events:
            return None
        listing_ids = list(dict.fromkeys(event.listing_id for event in metrics.recent_events))
        try:
            return await self._geolocation.get_user_geographic_insights(listing_ids, metrics.recent_events)
        except Exception as e:
            logger.error(f"Geographic insights failed: {e}", exc_info=True)
            return None

    async def get_listing_metrics_with_premium_insights(self, listing_id: str) -> RealTimeMetrics:
        metrics, insight = await asyncio.gather(
            self._metrics.get_listing_metrics(listing_id),
            self._competitor.analyze_listing_competitive_performance(listing_id),
        )
        geographic = await self._geographic(metrics)
        return metrics.model_copy(update={
            "daily_metrics": [],
            "geographic_insights": geographic,
            "competitive_insights": [insight] if insight else [],
        })

    async def get_user_metrics_with_premium_insights(self, user_id: str) -> RealTimeMetrics:
        metrics, insights = await asyncio.gather(
            self._metrics.get_user_metrics(user_id),
            self._competitor.get_user_competitive_insights(user_id),
        )
        competitive: List[CompetitiveInsight] = insights or []
        geographic = await self._geographic(metrics)
        return metrics.model_copy(update={
            "daily_metrics": [],
            "geographic_insights": geographic,
            "competitive_insights": competitive,
        })
