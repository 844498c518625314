# tests/conftest.py
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from marketplace_analytics.models.activity import ActivityEvent, EventType
from marketplace_analytics.models.listing import Category, Listing
from marketplace_analytics.services.event_log import EventLogError

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class MutableClock:
    """Часы, которые двигаются только вручную."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeEventLog:
    """In-memory журнал событий с режимом отказа и записью вызовов."""

    def __init__(self):
        self.events: List[ActivityEvent] = []
        self.batches: List[List[ActivityEvent]] = []
        self.queries: List[dict] = []
        self.fail_inserts = False
        self.fail_queries = False
        self.insert_gate: Optional[asyncio.Event] = None

    async def insert_batch(self, events):
        if self.insert_gate is not None:
            await self.insert_gate.wait()
        if self.fail_inserts:
            raise EventLogError("insert failed")
        self.batches.append(list(events))
        self.events.extend(events)

    async def query_events(self, listing_ids, since, event_types=None, limit=None):
        self.queries.append({"listing_ids": list(listing_ids), "since": since, "event_types": event_types, "limit": limit})
        if self.fail_queries:
            raise EventLogError("query failed")
        wanted = set(listing_ids)
        found = [
            event for event in self.events
            if event.listing_id in wanted
            and event.created_at >= since
            and (not event_types or event.event_type in event_types)
        ]
        found.sort(key=lambda event: event.created_at, reverse=True)
        return found[:limit] if limit is not None else found

    def add(self, listing_id: str, event_type: EventType, created_at: datetime, count: int = 1, **metadata):
        for _ in range(count):
            self.events.append(ActivityEvent(
                listing_id=listing_id,
                event_type=event_type,
                created_at=created_at,
                metadata=dict(metadata),
            ))


class FakeDirectory:
    """Каталог объявлений в памяти."""

    def __init__(self, listings: Optional[List[Listing]] = None, categories: Optional[List[Category]] = None):
        self.listings: Dict[str, Listing] = {listing.id: listing for listing in listings or []}
        self.categories: Dict[str, Category] = {category.id: category for category in categories or []}
        self.calls: List[str] = []
        self.failing: set = set()

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")

    async def get_listing(self, listing_id):
        self._enter("get_listing")
        return self.listings.get(str(listing_id))

    async def get_category(self, category_id):
        self._enter("get_category")
        return self.categories.get(str(category_id))

    async def get_active_listings_by_category(self, category_id, exclude_listing_id=None):
        self._enter("get_active_listings_by_category")
        return [
            listing for listing in self.listings.values()
            if listing.category_id == str(category_id) and listing.is_active and listing.id != exclude_listing_id
        ]

    async def get_listings_by_owner(self, user_id, active_only=False):
        self._enter("get_listings_by_owner")
        return [
            listing for listing in self.listings.values()
            if listing.user_id == str(user_id) and (listing.is_active or not active_only)
        ]


def make_listing(listing_id: str, user_id: str = "owner", category_id: str = "cat", status: str = "active") -> Listing:
    return Listing(id=listing_id, user_id=user_id, category_id=category_id, title=f"Listing {listing_id}", status=status)


def mock_client(handler: Callable[[httpx.Request], httpx.Response], base_url: str = "http://test") -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def event_log() -> FakeEventLog:
    return FakeEventLog()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory(categories=[Category(id="cat", name="Salões de festa")])
