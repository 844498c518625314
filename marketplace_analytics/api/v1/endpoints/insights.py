# marketplace_analytics/api/v1/endpoints/insights.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from marketplace_analytics.dependencies import (
    get_competitor_service,
    get_geolocation_service,
    get_metrics_aggregator,
)
from marketplace_analytics.models.competitive import CategoryBenchmark, CompetitiveInsight
from marketplace_analytics.models.geolocation import GeographicInsight
from marketplace_analytics.services.competitor_analysis import CompetitorAnalysisService
from marketplace_analytics.services.geolocation import GeolocationService
from marketplace_analytics.services.metrics import MetricsAggregator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/listings/{listing_id}/competitive-insights",
    response_model=CompetitiveInsight,
    summary="Сравнение объявления с категорией",
)
async def get_listing_competitive_insights(
    listing_id: str,
    competitor: CompetitorAnalysisService = Depends(get_competitor_service),
):
    insight = await competitor.analyze_listing_competitive_performance(listing_id)
    if insight is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Аналитика для объявления недоступна.")
    return insight


@router.get(
    "/users/{user_id}/competitive-insights",
    response_model=List[CompetitiveInsight],
    summary="Сравнение всех активных объявлений пользователя",
)
async def get_user_competitive_insights(
    user_id: str,
    competitor: CompetitorAnalysisService = Depends(get_competitor_service),
):
    return await competitor.get_user_competitive_insights(user_id)


@router.get(
    "/listings/{listing_id}/geographic-insights",
    response_model=GeographicInsight,
    summary="География просмотров объявления",
)
async def get_listing_geographic_insights(
    listing_id: str,
    aggregator: MetricsAggregator = Depends(get_metrics_aggregator),
    geolocation: GeolocationService = Depends(get_geolocation_service),
):
    metrics = await aggregator.get_listing_metrics(listing_id)
    return await geolocation.get_listing_geographic_insights(listing_id, metrics.recent_events)


@router.get(
    "/categories/{category_id}/benchmark",
    response_model=CategoryBenchmark,
    summary="Средние показатели категории",
)
async def get_category_benchmark(
    category_id: str,
    exclude_listing_id: Optional[str] = Query(None, description="Объявление, исключаемое из выборки"),
    competitor: CompetitorAnalysisService = Depends(get_competitor_service),
):
    benchmark = await competitor.get_category_benchmark(category_id, exclude_listing_id)
    if benchmark is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Категория не найдена или бенчмарк недоступен.")
    return benchmark
