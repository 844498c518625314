# marketplace_analytics/models/competitive.py
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ComparisonStatus(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    AVERAGE = "average"


class TrendImpact(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CompetitorMetrics(CamelModel):
    """Средние 30-дневные метрики объявлений категории."""
    average_views: int = 0
    average_contacts: int = 0
    average_favorites: int = 0
    average_reviews: int = 0
    total_listings: int = 0
    active_period: str = "30 days"


class TopPerformer(BaseModel):
    listing_id: str
    score: float


class CategoryBenchmark(CamelModel):
    category_id: str
    category_name: str
    metrics: CompetitorMetrics
    top_performers: List[TopPerformer] = []
    last_updated: datetime


class MetricComparison(BaseModel):
    value: int
    percentage: int
    status: ComparisonStatus


class OverallRanking(BaseModel):
    percentile: int
    position: str  # 'top 10%', 'top 25%', 'average', 'below average'


class PerformanceBreakdown(CamelModel):
    views_comparison: MetricComparison
    contacts_comparison: MetricComparison
    favorites_comparison: MetricComparison
    overall_ranking: OverallRanking


class ListingMetricsSnapshot(CamelModel):
    views: int = 0
    contacts: int = 0
    favorites: int = 0
    reviews: int = 0
    engagement_rate: int = 0


class MarketTrend(BaseModel):
    description: str
    impact: TrendImpact
    actionable: bool


class CompetitiveInsight(CamelModel):
    listing_id: str
    category: str
    user_metrics: ListingMetricsSnapshot
    category_averages: CompetitorMetrics
    performance: PerformanceBreakdown
    recommendations: List[str] = Field(default_factory=list)
    market_trends: List[MarketTrend] = Field(default_factory=list)
    benchmark_updated_at: Optional[datetime] = None
