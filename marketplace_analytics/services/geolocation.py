# marketplace_analytics/services/geolocation.py
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from marketplace_analytics.core.cache import TTLCache
from marketplace_analytics.core.clock import Clock, utc_now
from marketplace_analytics.core.config import settings
from marketplace_analytics.core.constants import (
    GEO_TREND_PERIOD_LABEL,
    GEO_TREND_WINDOW,
    GEOLOCATION_CACHE_TTL,
    TOP_CITIES_LIMIT,
    TOP_REGIONS_LIMIT,
)
from marketplace_analytics.core.result import ServiceResult
from marketplace_analytics.core.utils import is_public_ip, round_half_up
from marketplace_analytics.models.activity import ActivityEvent
from marketplace_analytics.models.geolocation import (
    CityStat,
    CountryStat,
    GeographicInsight,
    GeolocationRecord,
    GeoTrend,
    RegionStat,
)

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
DEFAULT_COUNTRY_CODE = "BR"
DEFAULT_TIMEZONE = "America/Sao_Paulo"


class GeolocationServiceError(Exception):
    """Ошибка провайдера геолокации (сеть, HTTP-статус, некорректный ответ)."""
    def __init__(self, message="Ошибка при обращении к провайдеру геолокации", status_code=None, details=None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class GeolocationService:
    """
    Определение местоположения по IP с кэшем на 24 часа и обогащение событий.

    Провайдер считается ненадежным: один запрос на IP без повторов, любой
    сбой дает None. Неудачные ответы не кэшируются, следующий вызов
    повторит запрос. Частные и loopback адреса провайдеру не отправляются.
    """

    def __init__(
        self,
        base_url: str = settings.GEOLOCATION_API_URL,
        *,
        client: Optional[httpx.AsyncClient] = None,
        clock: Clock = utc_now,
        cache_ttl=GEOLOCATION_CACHE_TTL,
    ):
        self.base_url = base_url.rstrip('/')
        timeouts = httpx.Timeout(5.0, connect=3.0)
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeouts)
        self._clock = clock
        self._cache: TTLCache[str, GeolocationRecord] = TTLCache(cache_ttl, clock=clock)
        logger.info(f"GeolocationService initialized for URL: {self.base_url}")

    async def close_client(self):
        if self._client:
            await self._client.aclose()
            logger.info("Geolocation HTTP client closed.")

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Geolocation cache cleared.")

    # --- Запрос к провайдеру ---

    async def _fetch(self, ip: str) -> Dict[str, Any]:
        try:
            response = await self._client.get(f"/{ip}/json/")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise GeolocationServiceError(
                f"HTTP ошибка {e.response.status_code} от провайдера геолокации",
                status_code=e.response.status_code,
                details=e.response.text[:500],
            ) from e
        except httpx.RequestError as e:
            raise GeolocationServiceError("Ошибка сети при обращении к провайдеру геолокации") from e
        except ValueError as e:
            raise GeolocationServiceError("Провайдер геолокации вернул не JSON") from e
        if not isinstance(data, dict):
            raise GeolocationServiceError("Некорректный формат ответа провайдера геолокации", details=str(data)[:200])
        return data

    @staticmethod
    def _parse_record(ip: str, data: Dict[str, Any]) -> ServiceResult[GeolocationRecord]:
        if data.get("error"):
            return ServiceResult.transient(
                "Geolocation provider reported an error",
                details={"reason": data.get("reason"), "ip": ip},
            )
        if not any(data.get(key) for key in ("city", "region", "country_name")):
            return ServiceResult.invalid("Geolocation payload has no location fields", details={"ip": ip})
        try:
            record = GeolocationRecord(
                ip=ip,
                city=data.get("city") or UNKNOWN,
                region=data.get("region") or UNKNOWN,
                country=data.get("country_name") or UNKNOWN,
                country_code=data.get("country_code") or DEFAULT_COUNTRY_CODE,
                latitude=data.get("latitude") or 0,
                longitude=data.get("longitude") or 0,
                timezone=data.get("timezone") or DEFAULT_TIMEZONE,
                org=data.get("org"),
            )
        except ValidationError as e:
            return ServiceResult.invalid("Malformed geolocation payload", details={"ip": ip, "errors": e.error_count()})
        return ServiceResult.success(record)

    async def lookup(self, ip: Optional[str]) -> ServiceResult[GeolocationRecord]:
        """Определение местоположения с явным исходом (для логов и тестов)."""
        if not is_public_ip(ip):
            return ServiceResult.invalid("IP address is empty, private or loopback", details={"ip": ip})
        ip = ip.strip()

        cached = self._cache.get(ip)
        if cached is not None:
            return ServiceResult.success(cached, cached=True)

        try:
            data = await self._fetch(ip)
        except GeolocationServiceError as e:
            return ServiceResult.from_exception(e, f"look up location for {ip}")

        result = self._parse_record(ip, data)
        if result.is_success:
            self._cache.set(ip, result.data)
        return result

    async def get_location_from_ip(self, ip: Optional[str]) -> Optional[GeolocationRecord]:
        result = await self.lookup(ip)
        # Частные адреса - ожидаемый случай, в лог не пишем
        if not result and is_public_ip(ip):
            result.log_failure(logger, f"Geolocation lookup for {ip}")
        return result.unwrap_or(None)

    # --- Обогащение событий ---

    async def enrich_event_with_location(self, event: ActivityEvent) -> ActivityEvent:
        """Добавляет metadata.location, не трогая остальные ключи metadata."""
        if not event.ip or event.location is not None:
            return event
        record = await self.get_location_from_ip(event.ip)
        if record is None:
            return event
        location = {
            "city": record.city,
            "region": record.region,
            "country": record.country,
            "country_code": record.country_code,
            "coordinates": {"lat": record.latitude, "lng": record.longitude},
            "timezone": record.timezone,
        }
        return event.model_copy(update={"metadata": {**event.metadata, "location": location}})

    async def analyze_geographic_patterns(self, events: Sequence[ActivityEvent]) -> GeographicInsight:
        """
        Частоты по городам, регионам и странам плюс тренд за 7 дней.

        События, для которых местоположение не определилось, просто не
        участвуют в подсчете; на остальные это не влияет.
        """
        located: List[ActivityEvent] = []
        for event in events:
            if event.location is None and event.ip:
                event = await self.enrich_event_with_location(event)
            if event.location is not None:
                located.append(event)

        total = len(located)

        def percentage(count: int) -> int:
            return round_half_up(count / total * 100) if total else 0

        city_counts: Counter = Counter()
        city_regions: Dict[str, str] = {}
        region_counts: Counter = Counter()
        country_counts: Counter = Counter()
        country_codes: Dict[str, str] = {}
        for event in located:
            location = event.location
            city = location.get("city") or UNKNOWN
            region = location.get("region") or UNKNOWN
            country = location.get("country") or UNKNOWN
            city_key = f"{city}, {region}"
            city_counts[city_key] += 1
            city_regions.setdefault(city_key, region)
            region_counts[region] += 1
            country_counts[country] += 1
            country_codes.setdefault(country, location.get("country_code") or DEFAULT_COUNTRY_CODE)

        # most_common сохраняет порядок первого появления при равных значениях
        top_cities = [
            CityStat(city=key, region=city_regions[key], count=count, percentage=percentage(count))
            for key, count in city_counts.most_common(TOP_CITIES_LIMIT)
        ]
        top_regions = [
            RegionStat(region=region, count=count, percentage=percentage(count))
            for region, count in region_counts.most_common(TOP_REGIONS_LIMIT)
        ]
        country_distribution = [
            CountryStat(country=country, country_code=country_codes[country], count=count, percentage=percentage(count))
            for country, count in country_counts.most_common()
        ]

        return GeographicInsight(
            total_views=total,
            top_cities=top_cities,
            top_regions=top_regions,
            country_distribution=country_distribution,
            trends=self._calculate_trend(located),
        )

    def _calculate_trend(self, located: Sequence[ActivityEvent]) -> GeoTrend:
        week_ago = self._clock() - GEO_TREND_WINDOW
        recent = [event for event in located if event.created_at > week_ago]
        older = [event for event in located if event.created_at <= week_ago]

        if older:
            growth = round_half_up((len(recent) - len(older)) / len(older) * 100)
        else:
            growth = 100 if recent else 0

        recent_cities = {event.location.get("city") for event in recent}
        older_cities = {event.location.get("city") for event in older}
        return GeoTrend(
            period=GEO_TREND_PERIOD_LABEL,
            growth=growth,
            new_locations=max(0, len(recent_cities) - len(older_cities)),
        )

    async def get_listing_geographic_insights(self, listing_id: str, events: Sequence[ActivityEvent]) -> GeographicInsight:
        return await self.analyze_geographic_patterns([event for event in events if event.listing_id == listing_id])

    async def get_user_geographic_insights(
        self, listing_ids: Sequence[str], events: Sequence[ActivityEvent]
    ) -> GeographicInsight:
        wanted = set(listing_ids)
        return await self.analyze_geographic_patterns([event for event in events if event.listing_id in wanted])
