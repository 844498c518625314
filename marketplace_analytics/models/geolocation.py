# marketplace_analytics/models/geolocation.py
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class GeolocationRecord(BaseModel):
    """Нормализованный ответ провайдера геолокации."""
    ip: str
    city: str
    region: str
    country: str
    country_code: str
    latitude: float
    longitude: float
    timezone: str
    org: Optional[str] = None


class CityStat(BaseModel):
    city: str  # "город, регион"
    region: str
    count: int
    percentage: int


class RegionStat(BaseModel):
    region: str
    count: int
    percentage: int


class CountryStat(BaseModel):
    country: str
    country_code: str
    count: int
    percentage: int


class GeoTrend(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    period: str
    growth: int
    new_locations: int


class GeographicInsight(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_views: int = 0
    top_cities: List[CityStat] = []
    top_regions: List[RegionStat] = []
    country_distribution: List[CountryStat] = []
    trends: GeoTrend
