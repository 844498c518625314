# marketplace_analytics/services/metrics.py
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from marketplace_analytics.core.clock import Clock, utc_now
from marketplace_analytics.core.constants import RECENT_EVENTS_LIMIT, RECENT_WINDOW, TOTALS_WINDOW
from marketplace_analytics.core.result import ServiceResult
from marketplace_analytics.core.utils import round_half_up
from marketplace_analytics.models.activity import CONTACT_EVENT_TYPES, ActivityEvent, EventType, RealTimeMetrics
from marketplace_analytics.services.event_log import EventLog
from marketplace_analytics.services.marketplace import ListingDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListingCounts:
    """Логические 30-дневные метрики, свернутые из сырых типов событий."""
    views: int = 0
    contacts: int = 0
    favorites: int = 0
    reviews: int = 0
    shares: int = 0

    @classmethod
    def from_type_counts(cls, counts: Counter) -> "ListingCounts":
        return cls(
            views=counts.get(EventType.VIEW, 0),
            contacts=sum(counts.get(t, 0) for t in CONTACT_EVENT_TYPES),
            # Удаления из избранного не вычитаются
            favorites=counts.get(EventType.FAVORITE_ADD, 0),
            reviews=counts.get(EventType.REVIEW, 0),
            shares=counts.get(EventType.SHARE, 0),
        )

    @classmethod
    def from_events(cls, events: Iterable[ActivityEvent]) -> "ListingCounts":
        return cls.from_type_counts(Counter(EventType(event.event_type) for event in events))

    @property
    def engagement_rate(self) -> int:
        """Доля контактов и добавлений в избранное от просмотров, в процентах."""
        if self.views == 0:
            return 0
        return round_half_up(100 * (self.contacts + self.favorites) / self.views)

    @property
    def composite_score(self) -> float:
        return (self.views + self.contacts + self.favorites) / 3


class MetricsAggregator:
    """
    Оконные метрики по объявлению или по всем объявлениям пользователя.

    Всегда пересчитываются из журнала событий при чтении; сохраненных
    дневных агрегатов нет, поэтому daily_metrics пуст.
    """

    def __init__(self, event_log: EventLog, directory: ListingDirectory, *, clock: Clock = utc_now):
        self._event_log = event_log
        self._directory = directory
        self._clock = clock

    async def get_listing_metrics(self, listing_id: str) -> RealTimeMetrics:
        result = await self._collect_metrics([listing_id])
        result.log_failure(logger, f"Metrics for listing {listing_id}")
        return result.unwrap_or(RealTimeMetrics.empty())

    async def get_user_metrics(self, user_id: str) -> RealTimeMetrics:
        ids_result = await self.resolve_user_listing_ids(user_id)
        if not ids_result:
            ids_result.log_failure(logger, f"Listing lookup for user {user_id}")
            return RealTimeMetrics.empty()
        if not ids_result.data:
            logger.debug(f"User {user_id} has no listings, returning empty metrics.")
            return RealTimeMetrics.empty()

        result = await self._collect_metrics(ids_result.data)
        result.log_failure(logger, f"Metrics for user {user_id}")
        return result.unwrap_or(RealTimeMetrics.empty())

    async def resolve_user_listing_ids(self, user_id: str) -> ServiceResult[List[str]]:
        try:
            listings = await self._directory.get_listings_by_owner(user_id)
        except Exception as e:
            return ServiceResult.from_exception(e, f"load listings of user {user_id}")
        return ServiceResult.success([listing.id for listing in listings])

    async def count_events_by_listing(self, listing_ids: Sequence[str]) -> ServiceResult[Dict[str, ListingCounts]]:
        """30-дневные метрики по каждому объявлению одним запросом к журналу."""
        if not listing_ids:
            return ServiceResult.success({})
        since = self._clock() - TOTALS_WINDOW
        try:
            events = await self._event_log.query_events(listing_ids, since=since)
        except Exception as e:
            return ServiceResult.from_exception(e, "query activity events for benchmark")

        per_listing: Dict[str, Counter] = {listing_id: Counter() for listing_id in listing_ids}
        for event in events:
            if event.listing_id in per_listing:
                per_listing[event.listing_id][EventType(event.event_type)] += 1
        return ServiceResult.success({
            listing_id: ListingCounts.from_type_counts(counts) for listing_id, counts in per_listing.items()
        })

    async def _collect_metrics(self, listing_ids: Sequence[str]) -> ServiceResult[RealTimeMetrics]:
        now = self._clock()
        try:
            recent, window = await asyncio.gather(
                self._event_log.query_events(listing_ids, since=now - RECENT_WINDOW, limit=RECENT_EVENTS_LIMIT),
                self._event_log.query_events(listing_ids, since=now - TOTALS_WINDOW),
            )
        except Exception as e:
            return ServiceResult.from_exception(e, "query activity events")

        recent_events = sorted(recent, key=lambda event: event.created_at, reverse=True)[:RECENT_EVENTS_LIMIT]
        counts = ListingCounts.from_events(window)
        return ServiceResult.success(RealTimeMetrics(
            total_views=counts.views,
            total_contacts=counts.contacts,
            total_favorites=counts.favorites,
            total_reviews=counts.reviews,
            recent_events=recent_events,
            daily_metrics=[],
        ))
