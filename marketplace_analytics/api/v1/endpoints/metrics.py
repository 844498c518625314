# marketplace_analytics/api/v1/endpoints/metrics.py
from fastapi import APIRouter, Depends, Query

from marketplace_analytics.dependencies import get_insight_composer, get_metrics_aggregator
from marketplace_analytics.models.activity import RealTimeMetrics
from marketplace_analytics.services.insights import InsightComposer
from marketplace_analytics.services.metrics import MetricsAggregator

router = APIRouter()


@router.get(
    "/listings/{listing_id}/metrics",
    response_model=RealTimeMetrics,
    response_model_exclude_none=True,
    summary="Метрики объявления",
)
async def get_listing_metrics(
    listing_id: str,
    premium: bool = Query(False, description="Добавить географию и конкурентный анализ"),
    aggregator: MetricsAggregator = Depends(get_metrics_aggregator),
    composer: InsightComposer = Depends(get_insight_composer),
):
    """Счетчики за 30 дней и лента событий за последние 24 часа."""
    if premium:
        return await composer.get_listing_metrics_with_premium_insights(listing_id)
    return await aggregator.get_listing_metrics(listing_id)


@router.get(
    "/users/{user_id}/metrics",
    response_model=RealTimeMetrics,
    response_model_exclude_none=True,
    summary="Сводные метрики пользователя",
)
async def get_user_metrics(
    user_id: str,
    premium: bool = Query(False, description="Добавить географию и конкурентный анализ"),
    aggregator: MetricsAggregator = Depends(get_metrics_aggregator),
    composer: InsightComposer = Depends(get_insight_composer),
):
    if premium:
        return await composer.get_user_metrics_with_premium_insights(user_id)
    return await aggregator.get_user_metrics(user_id)
